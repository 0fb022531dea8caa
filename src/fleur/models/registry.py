from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, StrictStr


class RuntimeKind(StrEnum):
    NPX = "npx"
    UVX = "uvx"
    OTHER = "other"


class AppLaunchConfig(BaseModel):
    """The ``config`` object of a registry entry."""

    model_config = ConfigDict(populate_by_name=True)

    mcp_key: StrictStr = Field(alias="mcpKey")
    runtime: StrictStr
    args: list[StrictStr]

    @property
    def runtime_kind(self) -> RuntimeKind:
        try:
            return RuntimeKind(self.runtime)
        except ValueError:
            return RuntimeKind.OTHER


class AppRegistryEntry(BaseModel):
    """Single entry in apps.json.

    Display fields (description, icon, category, ...) are ignored here; the
    raw registry keeps them for the host UI.
    """

    name: StrictStr
    config: AppLaunchConfig


class ResolvedAppConfig(BaseModel):
    """How the host should launch an app, with toolchain paths filled in."""

    mcp_key: str
    command: str  # Shim path, absolute uvx path, or the literal runtime
    args: list[str]
