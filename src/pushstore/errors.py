"""Storage error taxonomy for pushstore.

Every store and backend raises one of these; raw backend exceptions are
mapped to UnavailableError at the backend boundary. Each code carries the
status the HTTP layer reports for it.
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """Kind of storage failure."""

    NOT_FOUND = "NotFound"
    CONFLICT = "Conflict"
    FORBIDDEN = "Forbidden"
    INVALID_ARGUMENT = "InvalidArgument"
    UNAVAILABLE = "Unavailable"

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self]


_STATUS_CODES = {
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.CONFLICT: 409,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.INVALID_ARGUMENT: 400,
    ErrorCode.UNAVAILABLE: 503,
}


class StorageError(Exception):
    """Base exception for storage failures."""

    code: ErrorCode = ErrorCode.UNAVAILABLE

    def __init__(self, message: str | None = None):
        self.message = message or self.code.value
        super().__init__(self.message)

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary for JSON responses."""
        return {"code": self.code.value, "message": self.message}


class NotFoundError(StorageError):
    """Entity id, key or email has no match."""

    code = ErrorCode.NOT_FOUND

    @classmethod
    def for_entity(cls, entity_type: str, identifier: str) -> NotFoundError:
        return cls(f"{entity_type} '{identifier}' not found")


class ConflictError(StorageError):
    """Uniqueness violation or lost label race."""

    code = ErrorCode.CONFLICT

    @classmethod
    def for_entity(cls, entity_type: str, identifier: str) -> ConflictError:
        return cls(f"{entity_type} '{identifier}' already exists")


class ForbiddenError(StorageError):
    """Caller lacks the required permission."""

    code = ErrorCode.FORBIDDEN


class AccessKeyExpiredError(ForbiddenError):
    """The access key exists but its expiry has passed."""

    def __init__(self, message: str | None = None):
        super().__init__(message or "The access key has expired.")


class InvalidArgumentError(StorageError):
    """Malformed ttl, rollout out of range, insufficient history and the like."""

    code = ErrorCode.INVALID_ARGUMENT


class UnavailableError(StorageError):
    """Transient backend failure (network, timeout)."""

    code = ErrorCode.UNAVAILABLE


class LabelConflict(ConflictError):
    """A concurrent commit advanced the deployment past the expected version.

    Raised by metadata backends from the compare-and-swap append; the
    release store retries on it.
    """

    def __init__(self, deployment_id: str, expected_version: int):
        self.deployment_id = deployment_id
        self.expected_version = expected_version
        super().__init__(
            f"Deployment '{deployment_id}' moved past version {expected_version}"
        )
