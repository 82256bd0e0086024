"""Identity & access store.

Accounts, access keys and the permission check the release store runs
before every mutation. Access key secrets (`AccessKey.name`) are generated
here and resolve back to their account through
`get_account_id_from_access_key`.
"""

from __future__ import annotations

import logging

from pushstore.config import Settings
from pushstore.core.ids import epoch_millis, generate_id, generate_secure_key
from pushstore.core.model import (
    AccessKey,
    AccessKeyRequest,
    Account,
    App,
    CollaboratorProperties,
    Permission,
)
from pushstore.errors import (
    AccessKeyExpiredError,
    ForbiddenError,
    InvalidArgumentError,
    NotFoundError,
)
from pushstore.persistence.base import MetadataBackend

logger = logging.getLogger(__name__)


def _validate_ttl(ttl: int) -> int:
    if ttl <= 0:
        raise InvalidArgumentError(f"Access key ttl must be a positive number of ms, got {ttl}")
    return ttl


class IdentityStore:
    """Accounts, access keys and collaborator permission checks."""

    def __init__(self, backend: MetadataBackend, settings: Settings) -> None:
        self._backend = backend
        self._settings = settings

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    async def add_account(self, account: Account) -> str:
        """Register an account and return its generated id.

        Raises:
            ConflictError: If an account with this email (any case) exists
        """
        stored = account.model_copy(
            update={"id": generate_id(), "created_time": epoch_millis()}, deep=True
        )
        await self._backend.insert_account(stored)
        logger.info(f"Added account {stored.id}")
        assert stored.id is not None
        return stored.id

    async def get_account(self, account_id: str) -> Account:
        return await self._backend.get_account(account_id)

    async def get_account_by_email(self, email: str) -> Account:
        return await self._backend.get_account_by_email(email)

    async def update_account(
        self,
        account_id: str,
        name: str | None = None,
        linked_providers: list[str] | None = None,
    ) -> Account:
        account = await self._backend.get_account(account_id)
        if name is not None:
            account.name = name
        if linked_providers is not None:
            account.linked_providers = list(dict.fromkeys(linked_providers))
        await self._backend.update_account(account)
        return account

    # -------------------------------------------------------------------------
    # Access keys
    # -------------------------------------------------------------------------

    async def add_access_key(self, account_id: str, request: AccessKeyRequest) -> AccessKey:
        """Create an access key for an account.

        `request.ttl` is in milliseconds; without it the key lives for
        `settings.access_key_default_ttl_ms`.

        Raises:
            InvalidArgumentError: If ttl is zero or negative
            NotFoundError: If the account does not exist
            ConflictError: If an explicit key name is already taken
        """
        ttl = (
            _validate_ttl(request.ttl)
            if request.ttl is not None
            else self._settings.access_key_default_ttl_ms
        )
        now = epoch_millis()
        access_key = AccessKey(
            id=generate_id(),
            name=request.name or generate_secure_key(account_id),
            friendly_name=request.friendly_name or "",
            description=request.description,
            created_by=request.created_by,
            created_time=now,
            expires=now + ttl,
            is_session=request.is_session,
        )
        await self._backend.insert_access_key(account_id, access_key)
        logger.info(f"Added access key {access_key.id} for account {account_id}")
        return access_key

    async def get_access_key(self, account_id: str, access_key_id: str) -> AccessKey:
        return await self._backend.get_access_key(account_id, access_key_id)

    async def get_access_key_by_name(self, account_id: str, name: str) -> AccessKey:
        """Find one of the account's keys by its secret name."""
        owner_id, access_key = await self._backend.find_access_key_by_name(name)
        if owner_id != account_id:
            raise NotFoundError("Access key not found")
        return access_key

    async def get_access_keys(self, account_id: str) -> list[AccessKey]:
        return await self._backend.list_access_keys(account_id)

    async def update_access_key(
        self,
        account_id: str,
        access_key_id: str,
        friendly_name: str | None = None,
        description: str | None = None,
        ttl: int | None = None,
    ) -> AccessKey:
        """Rename, describe or extend a key. A new ttl counts from now."""
        access_key = await self._backend.get_access_key(account_id, access_key_id)
        if friendly_name is not None:
            access_key.friendly_name = friendly_name
        if description is not None:
            access_key.description = description
        if ttl is not None:
            access_key.expires = epoch_millis() + _validate_ttl(ttl)
        await self._backend.update_access_key(account_id, access_key)
        return access_key

    async def remove_access_key(self, account_id: str, access_key_id: str) -> None:
        await self._backend.delete_access_key(account_id, access_key_id)
        logger.info(f"Removed access key {access_key_id} for account {account_id}")

    async def remove_sessions(self, account_id: str, created_by: str) -> None:
        """Delete the session keys an account created from one machine.

        Raises:
            NotFoundError: If there are no such sessions
        """
        sessions = [
            key
            for key in await self._backend.list_access_keys(account_id)
            if key.is_session and key.created_by == created_by
        ]
        if not sessions:
            raise NotFoundError(f"There are no sessions associated with {created_by}")
        for key in sessions:
            assert key.id is not None
            await self._backend.delete_access_key(account_id, key.id)
        logger.info(f"Removed {len(sessions)} session(s) for account {account_id}")

    async def get_account_id_from_access_key(self, name: str) -> str:
        """Resolve a secret key to its account.

        Raises:
            NotFoundError: If no key has this name
            AccessKeyExpiredError: If the key has expired
        """
        account_id, access_key = await self._backend.find_access_key_by_name(name)
        if access_key.is_expired(epoch_millis()):
            raise AccessKeyExpiredError()
        return account_id

    # -------------------------------------------------------------------------
    # Permissions
    # -------------------------------------------------------------------------

    def require_permission(
        self,
        account_id: str,
        app: App,
        permission: Permission = Permission.COLLABORATOR,
    ) -> tuple[str, CollaboratorProperties]:
        """Check an account's role on an app.

        Returns the (email, properties) collaborator entry.

        Raises:
            NotFoundError: If the account is not a collaborator (app invisible)
            ForbiddenError: If Owner is required and the account is a Collaborator
        """
        entry = app.collaborator_for(account_id)
        if entry is None:
            raise NotFoundError.for_entity("App", app.name)
        if permission == Permission.OWNER and entry[1].permission != Permission.OWNER:
            raise ForbiddenError(f"This operation requires Owner permission on app '{app.name}'")
        return entry
