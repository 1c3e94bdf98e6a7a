"""Error taxonomy shared by the services and the HTTP boundary."""

from __future__ import annotations

from typing import Any, Dict


class RelayError(Exception):
    """Base class for failures that map onto a JSON error response."""

    status_code: int = 500
    default_code: str = "relay_error"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        extra: Dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.extra = extra or {}

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message}
        if self.extra:
            payload["details"] = self.extra
        return payload


class ValidationError(RelayError):
    """Raised for malformed request bodies or missing files."""

    status_code = 400
    default_code = "validation_error"


class NotFoundError(RelayError):
    """Raised when a group, item or upload job cannot be resolved."""

    status_code = 404
    default_code = "not_found"


class StorageError(RelayError):
    """Raised when the object store rejects or fails an upload."""

    default_code = "storage_error"


class RegistrationError(RelayError):
    """Raised on registrar transport failures or an error field in its reply."""

    default_code = "registration_error"


class PersistenceError(RelayError):
    """Raised when the checklist store cannot complete a read or write."""

    default_code = "persistence_error"


class ConcurrentUpdateError(PersistenceError):
    """Raised when a group kept changing underneath a read-modify-write."""

    status_code = 409
    default_code = "concurrent_update"


class PayloadTooLargeError(ValidationError):
    """Raised when an uploaded file exceeds the configured size limit."""

    status_code = 413
    default_code = "payload_too_large"


__all__ = [
    "ConcurrentUpdateError",
    "NotFoundError",
    "PayloadTooLargeError",
    "PersistenceError",
    "RegistrationError",
    "RelayError",
    "StorageError",
    "ValidationError",
]
