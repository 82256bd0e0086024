"""Accounts, access keys and collaborator entries."""

from __future__ import annotations

from enum import Enum

from pydantic import Field, field_validator

from pushstore.core.model import StrictModel


class Permission(str, Enum):
    """Role of an account on an app."""

    OWNER = "Owner"
    COLLABORATOR = "Collaborator"


class Account(StrictModel):
    """A registered user, keyed naturally by email."""

    id: str | None = None
    email: str = Field(..., min_length=1)
    name: str = ""
    linked_providers: list[str] = Field(default_factory=list, alias="linkedProviders")
    created_time: int | None = Field(default=None, alias="createdTime")

    @field_validator("linked_providers")
    @classmethod
    def _dedupe_providers(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(value))


class AccessKey(StrictModel):
    """A stored access key.

    `name` is the secret token clients present; `id` is the handle used to
    manage the key.
    """

    id: str | None = None
    name: str | None = None
    friendly_name: str = Field(default="", alias="friendlyName")
    description: str | None = None
    created_by: str = Field(default="", alias="createdBy")
    created_time: int | None = Field(default=None, alias="createdTime")
    expires: int | None = None
    is_session: bool = Field(default=False, alias="isSession")

    def is_expired(self, now_ms: int) -> bool:
        return self.expires is not None and now_ms >= self.expires


class AccessKeyRequest(StrictModel):
    """Caller input for creating an access key. `ttl` is in milliseconds."""

    name: str | None = None
    friendly_name: str | None = Field(default=None, alias="friendlyName")
    description: str | None = None
    created_by: str = Field(default="", alias="createdBy")
    is_session: bool = Field(default=False, alias="isSession")
    ttl: int | None = None


class CollaboratorProperties(StrictModel):
    """One entry of an app's collaborator map."""

    account_id: str = Field(..., alias="accountId")
    permission: Permission
    # Computed per request, never persisted
    is_current_account: bool | None = Field(default=None, alias="isCurrentAccount")
