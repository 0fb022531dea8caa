from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    TOOLING_MISSING = "TOOLING_MISSING"
    INSTALL_FAILED = "INSTALL_FAILED"
    SHIM_FAILED = "SHIM_FAILED"
    REGISTRY_FETCH_FAILED = "REGISTRY_FETCH_FAILED"
    REGISTRY_INVALID_JSON = "REGISTRY_INVALID_JSON"
    REGISTRY_INVALID_ENTRY = "REGISTRY_INVALID_ENTRY"
    CONFIG_INVALID = "CONFIG_INVALID"
    CONFIG_WRITE_FAILED = "CONFIG_WRITE_FAILED"
    APP_NOT_FOUND = "APP_NOT_FOUND"
    APP_NOT_INSTALLED = "APP_NOT_INSTALLED"
    INVALID_INPUT = "INVALID_INPUT"


class FleurError(Exception):
    """Raised for every expected failure of an app or environment operation.

    The code is for logs and tests only. Across the tool boundary the caller
    sees nothing but ``message``, so it has to read well on its own.
    """

    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def wrap(self, context: str) -> FleurError:
        """Return a copy of this error with ``context`` prefixed to the message."""
        return FleurError(self.code, f"{context}: {self.message}")
