"""Tests for the storage error taxonomy."""

from __future__ import annotations

import pytest

from pushstore.errors import (
    AccessKeyExpiredError,
    ConflictError,
    ErrorCode,
    ForbiddenError,
    InvalidArgumentError,
    LabelConflict,
    NotFoundError,
    StorageError,
    UnavailableError,
)


@pytest.mark.parametrize(
    ("error", "code", "status"),
    [
        (NotFoundError, ErrorCode.NOT_FOUND, 404),
        (ConflictError, ErrorCode.CONFLICT, 409),
        (ForbiddenError, ErrorCode.FORBIDDEN, 403),
        (InvalidArgumentError, ErrorCode.INVALID_ARGUMENT, 400),
        (UnavailableError, ErrorCode.UNAVAILABLE, 503),
    ],
)
def test_codes_and_status(error: type[StorageError], code: ErrorCode, status: int) -> None:
    exc = error("boom")
    assert exc.code == code
    assert exc.code.status_code == status
    assert exc.to_dict() == {"code": code.value, "message": "boom"}


def test_default_message_is_code() -> None:
    assert str(NotFoundError()) == "NotFound"


def test_for_entity_messages() -> None:
    assert NotFoundError.for_entity("App", "MyApp").message == "App 'MyApp' not found"
    assert ConflictError.for_entity("App", "MyApp").message == "App 'MyApp' already exists"


def test_access_key_expired_is_forbidden() -> None:
    exc = AccessKeyExpiredError()
    assert isinstance(exc, ForbiddenError)
    assert exc.code == ErrorCode.FORBIDDEN
    assert "expired" in exc.message


def test_label_conflict_is_conflict() -> None:
    exc = LabelConflict("dep-1", 3)
    assert isinstance(exc, ConflictError)
    assert exc.deployment_id == "dep-1"
    assert exc.expected_version == 3
