from __future__ import annotations

from fleur.models.host import AppStatuses, ServerEntry
from fleur.models.registry import (
    AppLaunchConfig,
    AppRegistryEntry,
    ResolvedAppConfig,
    RuntimeKind,
)

__all__ = [
    # registry
    "AppRegistryEntry",
    "AppLaunchConfig",
    "ResolvedAppConfig",
    "RuntimeKind",
    # host config
    "ServerEntry",
    "AppStatuses",
]
