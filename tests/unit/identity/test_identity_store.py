"""Tests for accounts, access keys and permission checks."""

from __future__ import annotations

import pytest

from pushstore.config import DEFAULT_ACCESS_KEY_TTL_MS
from pushstore.core.ids import epoch_millis
from pushstore.core.model import (
    AccessKeyRequest,
    Account,
    App,
    CollaboratorProperties,
    Permission,
)
from pushstore.errors import (
    AccessKeyExpiredError,
    ConflictError,
    ForbiddenError,
    InvalidArgumentError,
    NotFoundError,
)
from pushstore.identity import IdentityStore


@pytest.fixture
def identity(backend, settings) -> IdentityStore:
    return IdentityStore(backend, settings)


@pytest.fixture
async def ada(identity: IdentityStore) -> str:
    return await identity.add_account(Account(email="Ada@Example.com", name="Ada"))


class TestAccounts:
    async def test_add_assigns_id_and_time(self, identity: IdentityStore, ada: str) -> None:
        account = await identity.get_account(ada)
        assert account.id == ada
        assert account.created_time is not None

    async def test_email_lookup_ignores_case(self, identity: IdentityStore, ada: str) -> None:
        assert (await identity.get_account_by_email("ada@example.COM")).id == ada

    async def test_email_conflict_ignores_case(self, identity: IdentityStore, ada: str) -> None:
        with pytest.raises(ConflictError):
            await identity.add_account(Account(email="ADA@example.com"))

    async def test_update(self, identity: IdentityStore, ada: str) -> None:
        updated = await identity.update_account(
            ada, name="Ada L.", linked_providers=["GitHub", "GitHub", "Microsoft"]
        )
        assert updated.name == "Ada L."
        assert updated.linked_providers == ["GitHub", "Microsoft"]
        assert (await identity.get_account(ada)).linked_providers == ["GitHub", "Microsoft"]

    async def test_unknown_account(self, identity: IdentityStore) -> None:
        with pytest.raises(NotFoundError):
            await identity.get_account("missing")


class TestAccessKeys:
    async def test_default_ttl(self, identity: IdentityStore, ada: str) -> None:
        key = await identity.add_access_key(ada, AccessKeyRequest(friendly_name="laptop"))

        assert key.name
        assert key.name.endswith(ada)
        assert key.created_time is not None and key.expires is not None
        assert key.expires - key.created_time == DEFAULT_ACCESS_KEY_TTL_MS
        assert key.friendly_name == "laptop"

    async def test_explicit_ttl(self, identity: IdentityStore, ada: str) -> None:
        key = await identity.add_access_key(ada, AccessKeyRequest(ttl=1000))
        assert key.expires is not None and key.created_time is not None
        assert key.expires - key.created_time == 1000

    @pytest.mark.parametrize("ttl", [0, -1])
    async def test_non_positive_ttl_rejected(
        self, identity: IdentityStore, ada: str, ttl: int
    ) -> None:
        with pytest.raises(InvalidArgumentError):
            await identity.add_access_key(ada, AccessKeyRequest(ttl=ttl))
        assert await identity.get_access_keys(ada) == []

    async def test_resolve_account_from_key(self, identity: IdentityStore, ada: str) -> None:
        key = await identity.add_access_key(ada, AccessKeyRequest())
        assert key.name is not None
        assert await identity.get_account_id_from_access_key(key.name) == ada

    async def test_expired_key(self, identity: IdentityStore, backend, ada: str) -> None:
        key = await identity.add_access_key(ada, AccessKeyRequest())
        assert key.id is not None and key.name is not None
        key.expires = epoch_millis() - 1
        await backend.update_access_key(ada, key)

        with pytest.raises(AccessKeyExpiredError) as exc_info:
            await identity.get_account_id_from_access_key(key.name)
        assert isinstance(exc_info.value, ForbiddenError)

    async def test_unknown_key(self, identity: IdentityStore) -> None:
        with pytest.raises(NotFoundError):
            await identity.get_account_id_from_access_key("nope")

    async def test_get_by_name_scoped_to_account(self, identity: IdentityStore, ada: str) -> None:
        other = await identity.add_account(Account(email="bea@example.com"))
        key = await identity.add_access_key(ada, AccessKeyRequest(name="secret"))

        assert (await identity.get_access_key_by_name(ada, "secret")).id == key.id
        with pytest.raises(NotFoundError):
            await identity.get_access_key_by_name(other, "secret")

    async def test_duplicate_name(self, identity: IdentityStore, ada: str) -> None:
        await identity.add_access_key(ada, AccessKeyRequest(name="secret"))
        with pytest.raises(ConflictError):
            await identity.add_access_key(ada, AccessKeyRequest(name="secret"))

    async def test_update(self, identity: IdentityStore, ada: str) -> None:
        key = await identity.add_access_key(ada, AccessKeyRequest(ttl=1000))
        assert key.id is not None and key.expires is not None

        updated = await identity.update_access_key(
            ada, key.id, friendly_name="ci", description="build bot", ttl=10_000_000
        )

        assert updated.friendly_name == "ci"
        assert updated.description == "build bot"
        assert updated.expires is not None and updated.expires > key.expires
        assert updated.name == key.name

    async def test_update_rejects_bad_ttl(self, identity: IdentityStore, ada: str) -> None:
        key = await identity.add_access_key(ada, AccessKeyRequest())
        assert key.id is not None
        with pytest.raises(InvalidArgumentError):
            await identity.update_access_key(ada, key.id, ttl=-5)

    async def test_remove(self, identity: IdentityStore, ada: str) -> None:
        key = await identity.add_access_key(ada, AccessKeyRequest())
        assert key.id is not None and key.name is not None

        await identity.remove_access_key(ada, key.id)

        with pytest.raises(NotFoundError):
            await identity.get_account_id_from_access_key(key.name)

    async def test_remove_sessions(self, identity: IdentityStore, ada: str) -> None:
        await identity.add_access_key(ada, AccessKeyRequest(is_session=True, created_by="laptop"))
        await identity.add_access_key(ada, AccessKeyRequest(is_session=True, created_by="laptop"))
        await identity.add_access_key(ada, AccessKeyRequest(is_session=True, created_by="desk"))
        await identity.add_access_key(ada, AccessKeyRequest(created_by="laptop"))

        await identity.remove_sessions(ada, "laptop")

        remaining = await identity.get_access_keys(ada)
        assert sorted((k.is_session, k.created_by) for k in remaining) == [
            (False, "laptop"),
            (True, "desk"),
        ]
        with pytest.raises(NotFoundError):
            await identity.remove_sessions(ada, "laptop")


class TestPermissions:
    @pytest.fixture
    def app(self) -> App:
        return App(
            id="app-1",
            name="MyApp",
            collaborators={
                "owner@x.com": CollaboratorProperties(
                    account_id="owner", permission=Permission.OWNER
                ),
                "collab@x.com": CollaboratorProperties(
                    account_id="collab", permission=Permission.COLLABORATOR
                ),
            },
        )

    def test_owner_passes_both_levels(self, identity: IdentityStore, app: App) -> None:
        email, props = identity.require_permission("owner", app, Permission.OWNER)
        assert email == "owner@x.com"
        assert props.permission == Permission.OWNER
        identity.require_permission("owner", app)

    def test_collaborator_needs_owner(self, identity: IdentityStore, app: App) -> None:
        identity.require_permission("collab", app)
        with pytest.raises(ForbiddenError):
            identity.require_permission("collab", app, Permission.OWNER)

    def test_stranger_sees_not_found(self, identity: IdentityStore, app: App) -> None:
        with pytest.raises(NotFoundError):
            identity.require_permission("stranger", app)
        with pytest.raises(NotFoundError):
            identity.require_permission("stranger", app, Permission.OWNER)
