from __future__ import annotations

from typing import Any, Optional


class EngineError(Exception):
    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class MissingProviderError(EngineError):
    """Scene graph or dataset unavailable; the operation produces no result."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__("MISSING_PROVIDER", message, details)


class MalformedPropertyError(EngineError):
    """A provider payload did not have the expected element/property shape."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__("MALFORMED_PROPERTY", message, details)


class ProviderFetchError(EngineError):
    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(code, message, details)


class ScanCancelledError(EngineError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__("SCAN_CANCELLED", message, details)


class SettingsValidationError(EngineError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__("INVALID_SETTINGS", message, details)


class DatasetError(EngineError):
    pass
