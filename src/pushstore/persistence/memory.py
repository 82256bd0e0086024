"""In-memory metadata backend.

The reference backend: plain dictionaries plus secondary indexes, with a
per-deployment asyncio.Lock around the compare-and-swap append. Every
value that leaves the backend is a deep copy.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict

from pushstore.core.model import AccessKey, Account, App, Deployment, Package
from pushstore.errors import ConflictError, LabelConflict, NotFoundError
from pushstore.persistence.base import (
    DeploymentRecord,
    MetadataBackend,
    package_blob_urls,
)

logger = logging.getLogger(__name__)


class MemoryMetadataBackend(MetadataBackend):
    """Metadata backend keeping all state in process memory."""

    backend_type = "memory"

    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}
        self._email_index: dict[str, str] = {}

        self._access_keys: dict[str, AccessKey] = {}
        self._access_key_owner: dict[str, str] = {}
        self._access_key_names: dict[str, str] = {}

        self._apps: dict[str, App] = {}

        self._deployments: dict[str, Deployment] = {}
        self._deployment_versions: dict[str, int] = {}
        self._deployment_keys: dict[str, str] = {}
        self._histories: dict[str, list[Package]] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    async def insert_account(self, account: Account) -> None:
        assert account.id is not None
        email_key = account.email.lower()
        if email_key in self._email_index or account.id in self._accounts:
            raise ConflictError.for_entity("Account", account.email)
        self._accounts[account.id] = account.snapshot()
        self._email_index[email_key] = account.id

    async def get_account(self, account_id: str) -> Account:
        account = self._accounts.get(account_id)
        if account is None:
            raise NotFoundError.for_entity("Account", account_id)
        return account.snapshot()

    async def get_account_by_email(self, email: str) -> Account:
        account_id = self._email_index.get(email.lower())
        if account_id is None:
            raise NotFoundError.for_entity("Account", email)
        return self._accounts[account_id].snapshot()

    async def update_account(self, account: Account) -> None:
        assert account.id is not None
        stored = self._accounts.get(account.id)
        if stored is None:
            raise NotFoundError.for_entity("Account", account.id)
        self._accounts[account.id] = account.model_copy(
            update={"email": stored.email, "created_time": stored.created_time}, deep=True
        )

    # -------------------------------------------------------------------------
    # Access keys
    # -------------------------------------------------------------------------

    async def insert_access_key(self, account_id: str, access_key: AccessKey) -> None:
        assert access_key.id is not None and access_key.name is not None
        if account_id not in self._accounts:
            raise NotFoundError.for_entity("Account", account_id)
        if access_key.name in self._access_key_names or access_key.id in self._access_keys:
            raise ConflictError("An access key with this name already exists")
        self._access_keys[access_key.id] = access_key.snapshot()
        self._access_key_owner[access_key.id] = account_id
        self._access_key_names[access_key.name] = access_key.id

    def _owned_key(self, account_id: str, access_key_id: str) -> AccessKey:
        if self._access_key_owner.get(access_key_id) != account_id:
            raise NotFoundError.for_entity("Access key", access_key_id)
        return self._access_keys[access_key_id]

    async def get_access_key(self, account_id: str, access_key_id: str) -> AccessKey:
        return self._owned_key(account_id, access_key_id).snapshot()

    async def find_access_key_by_name(self, name: str) -> tuple[str, AccessKey]:
        access_key_id = self._access_key_names.get(name)
        if access_key_id is None:
            raise NotFoundError("Access key not found")
        return (
            self._access_key_owner[access_key_id],
            self._access_keys[access_key_id].snapshot(),
        )

    async def list_access_keys(self, account_id: str) -> list[AccessKey]:
        if account_id not in self._accounts:
            raise NotFoundError.for_entity("Account", account_id)
        return [
            key.snapshot()
            for key_id, key in self._access_keys.items()
            if self._access_key_owner[key_id] == account_id
        ]

    async def update_access_key(self, account_id: str, access_key: AccessKey) -> None:
        assert access_key.id is not None
        stored = self._owned_key(account_id, access_key.id)
        # The secret itself is immutable
        self._access_keys[access_key.id] = access_key.model_copy(
            update={"name": stored.name}, deep=True
        )

    async def delete_access_key(self, account_id: str, access_key_id: str) -> None:
        stored = self._owned_key(account_id, access_key_id)
        del self._access_keys[access_key_id]
        del self._access_key_owner[access_key_id]
        if stored.name is not None:
            self._access_key_names.pop(stored.name, None)

    # -------------------------------------------------------------------------
    # Apps
    # -------------------------------------------------------------------------

    async def insert_app(self, app: App) -> None:
        assert app.id is not None
        if app.id in self._apps:
            raise ConflictError.for_entity("App", app.id)
        stored = app.snapshot().clear_current_account()
        stored.deployments = []
        self._apps[app.id] = stored

    def _app(self, app_id: str) -> App:
        app = self._apps.get(app_id)
        if app is None:
            raise NotFoundError.for_entity("App", app_id)
        return app

    async def get_app(self, app_id: str) -> App:
        return self._app(app_id).snapshot()

    async def list_apps(self, account_id: str) -> list[App]:
        return [
            app.snapshot()
            for app in self._apps.values()
            if app.collaborator_for(account_id) is not None
        ]

    async def update_app(self, app: App) -> None:
        assert app.id is not None
        stored = self._app(app.id)
        updated = app.snapshot().clear_current_account()
        updated.deployments = list(stored.deployments)
        updated.created_time = stored.created_time
        self._apps[app.id] = updated

    async def delete_app(self, app_id: str) -> None:
        app = self._app(app_id)
        for deployment_id in [
            d.id for d in self._deployments.values() if d.app_id == app_id and d.id
        ]:
            self._drop_deployment(deployment_id)
        del self._apps[app.id or app_id]

    # -------------------------------------------------------------------------
    # Deployments
    # -------------------------------------------------------------------------

    async def insert_deployment(self, app_id: str, deployment: Deployment) -> None:
        assert deployment.id is not None and deployment.key is not None
        app = self._app(app_id)
        if deployment.name in app.deployments:
            raise ConflictError.for_entity("Deployment", deployment.name)
        if deployment.key in self._deployment_keys:
            raise ConflictError("Deployment key already in use")

        stored = deployment.model_copy(update={"app_id": app_id, "package": None}, deep=True)
        self._deployments[deployment.id] = stored
        self._deployment_versions[deployment.id] = 0
        self._deployment_keys[deployment.key] = deployment.id
        self._histories[deployment.id] = []
        app.deployments.append(deployment.name)

    def _deployment(self, deployment_id: str) -> Deployment:
        deployment = self._deployments.get(deployment_id)
        if deployment is None:
            raise NotFoundError.for_entity("Deployment", deployment_id)
        return deployment

    async def get_deployment(self, deployment_id: str) -> DeploymentRecord:
        deployment = self._deployment(deployment_id)
        return DeploymentRecord(
            deployment=deployment.snapshot(),
            version=self._deployment_versions[deployment_id],
        )

    async def get_deployment_by_key(self, deployment_key: str) -> DeploymentRecord:
        deployment_id = self._deployment_keys.get(deployment_key)
        if deployment_id is None:
            raise NotFoundError("Deployment key not found")
        return await self.get_deployment(deployment_id)

    async def list_deployments(self, app_id: str) -> list[Deployment]:
        app = self._app(app_id)
        by_name = {
            d.name: d for d in self._deployments.values() if d.app_id == app_id
        }
        return [by_name[name].snapshot() for name in app.deployments if name in by_name]

    async def update_deployment(self, deployment: Deployment) -> None:
        assert deployment.id is not None
        stored = self._deployment(deployment.id)
        app = self._app(stored.app_id or "")

        if deployment.name != stored.name and deployment.name in app.deployments:
            raise ConflictError.for_entity("Deployment", deployment.name)
        if deployment.key and deployment.key != stored.key:
            if deployment.key in self._deployment_keys:
                raise ConflictError("Deployment key already in use")
            if stored.key:
                del self._deployment_keys[stored.key]
            self._deployment_keys[deployment.key] = deployment.id
            stored.key = deployment.key

        if deployment.name != stored.name:
            app.deployments[app.deployments.index(stored.name)] = deployment.name
            stored.name = deployment.name

    async def delete_deployment(self, deployment_id: str) -> None:
        deployment = self._deployment(deployment_id)
        app = self._apps.get(deployment.app_id or "")
        if app is not None and deployment.name in app.deployments:
            app.deployments.remove(deployment.name)
        self._drop_deployment(deployment_id)

    def _drop_deployment(self, deployment_id: str) -> None:
        deployment = self._deployments.pop(deployment_id)
        if deployment.key:
            self._deployment_keys.pop(deployment.key, None)
        self._deployment_versions.pop(deployment_id, None)
        self._histories.pop(deployment_id, None)
        self._locks.pop(deployment_id, None)

    # -------------------------------------------------------------------------
    # Package histories
    # -------------------------------------------------------------------------

    async def get_package_history(self, deployment_id: str) -> list[Package]:
        self._deployment(deployment_id)
        return [package.snapshot() for package in self._histories[deployment_id]]

    async def append_package(
        self, deployment_id: str, package: Package, expected_version: int
    ) -> Package:
        self._deployment(deployment_id)
        async with self._locks[deployment_id]:
            # No awaits below: check, append and repoint happen as one step
            deployment = self._deployment(deployment_id)
            if self._deployment_versions[deployment_id] != expected_version:
                raise LabelConflict(deployment_id, expected_version)

            stored = package.snapshot()
            self._histories[deployment_id].append(stored)
            self._deployment_versions[deployment_id] = expected_version + 1
            deployment.package = stored.snapshot()

        logger.debug(f"Appended {stored.label} to deployment {deployment_id}")
        return stored.snapshot()

    async def clear_package_history(self, deployment_id: str) -> None:
        deployment = self._deployment(deployment_id)
        async with self._locks[deployment_id]:
            self._histories[deployment_id] = []
            deployment.package = None

    async def is_blob_url_referenced(self, blob_url: str) -> bool:
        return any(
            blob_url in package_blob_urls(package)
            for history in self._histories.values()
            for package in history
        )

    async def ping(self) -> bool:
        return True
