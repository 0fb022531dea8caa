"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (FLEUR__TOOLCHAIN__NODE_VERSION=v20.9.0)
  2. fleur.yaml             (searched in cwd, then platform config dir)
  3. Hardcoded defaults

The config file is optional; every field has a default.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("fleur", appauthor=False)
_DEFAULT_SHIM_PATH = str(Path(_DEFAULT_DATA_DIR) / "bin" / "npx-fleur")

# Where the desktop client reads its MCP server list from:
#   macOS   ~/Library/Application Support/Claude
#   Windows %APPDATA%\Claude
#   Linux   ~/.config/Claude
_DEFAULT_HOST_CONFIG_PATH = str(
    Path(platformdirs.user_config_dir("Claude", appauthor=False, roaming=True))
    / "claude_desktop_config.json"
)

NODE_VERSION = "v20.9.0"


def _find_config_file() -> str | None:
    """Return the path of the first fleur.yaml found, or None."""
    candidates = [
        Path("fleur.yaml"),
        Path(platformdirs.user_config_dir("fleur", appauthor=False)) / "fleur.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class RegistrySettings(BaseModel):
    url: str = "https://raw.githubusercontent.com/fleuristes/app-registry/refs/heads/main/apps.json"


class HostSettings(BaseModel):
    # None means the per-OS default location of the desktop client config.
    config_path: str | None = None

    def resolved_config_path(self) -> Path:
        return Path(self.config_path or _DEFAULT_HOST_CONFIG_PATH).expanduser()


class ToolchainSettings(BaseModel):
    node_version: str = NODE_VERSION
    nvm_dir: str = "~/.nvm"
    nvm_install_url: str = "https://raw.githubusercontent.com/nvm-sh/nvm/v0.40.1/install.sh"
    uv_install_url: str = "https://astral.sh/uv/install.sh"
    shim_path: str = _DEFAULT_SHIM_PATH
    npm_command: str = "npm"


class PreloadSettings(BaseModel):
    enabled: bool = True
    packages: list[str] = ["@modelcontextprotocol/server-puppeteer", "mcp-server-time"]


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: FLEUR__HOST__CONFIG_PATH=/tmp/c.json
        env_prefix="FLEUR__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    registry: RegistrySettings = RegistrySettings()
    host: HostSettings = HostSettings()
    toolchain: ToolchainSettings = ToolchainSettings()
    preload: PreloadSettings = PreloadSettings()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
            # dotenv and file secrets intentionally excluded
        )
