from __future__ import annotations

from pydantic import BaseModel


class ServerEntry(BaseModel):
    """One entry under ``mcpServers`` in the desktop client config."""

    command: str
    args: list[str]
    env: dict[str, str] | None = None

    def to_json(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)


class AppStatuses(BaseModel):
    """Parallel per-app maps returned by get_app_statuses."""

    installed: dict[str, bool] = {}
    configured: dict[str, bool] = {}
