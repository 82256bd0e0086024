"""Storage facade: the single entry point of the storage engine.

Exposes the blob, identity and release operations behind one object. Every
call runs under a deadline (`timeout=` per call, `settings.operation_timeout`
by default) and inside a LogContext naming the operation. The optional Redis
cache serves package histories by deployment key and is invalidated after
every history mutation.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from pushstore.cache.redis import PackageHistoryCache
from pushstore.config import Settings
from pushstore.core.model import (
    AccessKey,
    AccessKeyRequest,
    Account,
    App,
    CollaboratorProperties,
    Deployment,
    DeploymentInfo,
    Package,
    PackageInfo,
)
from pushstore.core.rollout import resolve_rollout
from pushstore.errors import ForbiddenError, NotFoundError, StorageError, UnavailableError
from pushstore.identity import IdentityStore
from pushstore.observability.logging import LogContext
from pushstore.persistence.base import MetadataBackend
from pushstore.releases import ReleaseStore
from pushstore.storage.base import BlobStorage
from pushstore.storage.streams import BlobContent

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StorageFacade:
    """Union of blob, identity and release operations with deadlines."""

    def __init__(
        self,
        backend: MetadataBackend,
        blobs: BlobStorage,
        settings: Settings,
        cache: PackageHistoryCache | None = None,
    ) -> None:
        self.backend = backend
        self.blobs = blobs
        self.cache = cache
        self.settings = settings
        self.identity = IdentityStore(backend, settings)
        self.releases = ReleaseStore(backend, blobs, self.identity, settings)

    async def _run(
        self,
        operation: str,
        call: Callable[[], Awaitable[T]],
        timeout: float | None,
        account_id: str | None = None,
    ) -> T:
        limit = self.settings.operation_timeout if timeout is None else timeout
        with LogContext(operation=operation, account_id=account_id):
            try:
                return await asyncio.wait_for(call(), limit)
            except TimeoutError as exc:
                logger.warning(f"{operation} timed out after {limit}s")
                raise UnavailableError(f"{operation} timed out after {limit}s") from exc

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def initialize(self) -> None:
        await self.backend.initialize()

    async def close(self) -> None:
        await self.backend.close()
        await self.blobs.close()
        if self.cache is not None:
            await self.cache.close()

    async def check_health(self, timeout: float | None = None) -> bool:
        """True only if every configured backend answers. Never raises."""
        checks: list[Awaitable[bool]] = [self.backend.ping(), self.blobs.ping()]
        if self.cache is not None:
            checks.append(self.cache.health_check())
        limit = self.settings.operation_timeout if timeout is None else timeout
        try:
            results = await asyncio.wait_for(asyncio.gather(*checks), limit)
        except Exception as exc:
            logger.warning(f"Health check failed: {exc}")
            return False
        return all(results)

    # -------------------------------------------------------------------------
    # Cache
    # -------------------------------------------------------------------------

    async def _mutate_history(
        self,
        operation: str,
        resolve_keys: Callable[[], Awaitable[list[str | None]]],
        mutation: Callable[[], Awaitable[T]],
        timeout: float | None,
        account_id: str,
    ) -> T:
        """Run a history mutation, then drop the cached histories it touched.

        Deployment keys are resolved before the mutation. Invalidation runs
        after the deadline-bound call and its failures are only logged.
        """

        async def call() -> tuple[T, list[str | None]]:
            deployment_keys = await resolve_keys()
            return await mutation(), deployment_keys

        result, deployment_keys = await self._run(operation, call, timeout, account_id)
        with LogContext(operation=operation, account_id=account_id):
            await self._invalidate(deployment_keys, timeout)
        return result

    async def _invalidate(self, deployment_keys: list[str | None], timeout: float | None) -> None:
        keys = [key for key in deployment_keys if key]
        if self.cache is None or not keys:
            return
        limit = self.settings.operation_timeout if timeout is None else timeout
        try:
            await asyncio.wait_for(self.cache.invalidate(*keys), limit)
        except (StorageError, TimeoutError) as exc:
            # Entries expire after cache_ttl at the latest
            logger.error(f"Failed to invalidate cached histories: {exc!r}")

    async def _deployment_keys(
        self, account_id: str, app_id: str, deployment_id: str
    ) -> list[str | None]:
        deployment = await self.releases.get_deployment(account_id, app_id, deployment_id)
        return [deployment.key]

    async def _cached_history(self, deployment_key: str) -> list[Package]:
        if self.cache is not None:
            try:
                cached = await self.cache.get_history(deployment_key)
            except StorageError as exc:
                logger.warning(f"Cache unavailable, reading history from backend: {exc}")
                cached = None
            if cached is not None:
                return cached

        history = await self.releases.get_package_history_from_deployment_key(deployment_key)
        if self.cache is not None:
            try:
                await self.cache.set_history(deployment_key, history)
            except StorageError as exc:
                logger.warning(f"Failed to cache history: {exc}")
        return history

    # -------------------------------------------------------------------------
    # Blobs
    # -------------------------------------------------------------------------

    async def add_blob(
        self, content: BlobContent, length: int | None = None, *, timeout: float | None = None
    ) -> str:
        return await self._run("add_blob", lambda: self.blobs.add(content, length), timeout)

    async def get_blob_url(self, blob_id: str, *, timeout: float | None = None) -> str:
        return await self._run("get_blob_url", lambda: self.blobs.get_url(blob_id), timeout)

    async def remove_blob(self, blob_id: str, *, timeout: float | None = None) -> None:
        """Remove a blob unless a live package still references it.

        Raises:
            ForbiddenError: If any package history references the blob
        """

        async def call() -> None:
            try:
                url = await self.blobs.get_url(blob_id)
            except NotFoundError:
                return
            if await self.releases.is_blob_referenced(url):
                raise ForbiddenError(f"Blob '{blob_id}' is referenced by a release")
            await self.blobs.remove(blob_id)

        await self._run("remove_blob", call, timeout)

    # -------------------------------------------------------------------------
    # Accounts and access keys
    # -------------------------------------------------------------------------

    async def add_account(self, account: Account, *, timeout: float | None = None) -> str:
        return await self._run("add_account", lambda: self.identity.add_account(account), timeout)

    async def get_account(self, account_id: str, *, timeout: float | None = None) -> Account:
        return await self._run(
            "get_account", lambda: self.identity.get_account(account_id), timeout, account_id
        )

    async def get_account_by_email(self, email: str, *, timeout: float | None = None) -> Account:
        return await self._run(
            "get_account_by_email", lambda: self.identity.get_account_by_email(email), timeout
        )

    async def update_account(
        self, account_id: str, *, timeout: float | None = None, **changes: Any
    ) -> Account:
        return await self._run(
            "update_account",
            lambda: self.identity.update_account(account_id, **changes),
            timeout,
            account_id,
        )

    async def add_access_key(
        self, account_id: str, request: AccessKeyRequest, *, timeout: float | None = None
    ) -> AccessKey:
        return await self._run(
            "add_access_key",
            lambda: self.identity.add_access_key(account_id, request),
            timeout,
            account_id,
        )

    async def get_access_key(
        self, account_id: str, access_key_id: str, *, timeout: float | None = None
    ) -> AccessKey:
        return await self._run(
            "get_access_key",
            lambda: self.identity.get_access_key(account_id, access_key_id),
            timeout,
            account_id,
        )

    async def get_access_key_by_name(
        self, account_id: str, name: str, *, timeout: float | None = None
    ) -> AccessKey:
        return await self._run(
            "get_access_key_by_name",
            lambda: self.identity.get_access_key_by_name(account_id, name),
            timeout,
            account_id,
        )

    async def get_access_keys(
        self, account_id: str, *, timeout: float | None = None
    ) -> list[AccessKey]:
        return await self._run(
            "get_access_keys",
            lambda: self.identity.get_access_keys(account_id),
            timeout,
            account_id,
        )

    async def update_access_key(
        self,
        account_id: str,
        access_key_id: str,
        *,
        timeout: float | None = None,
        **changes: Any,
    ) -> AccessKey:
        return await self._run(
            "update_access_key",
            lambda: self.identity.update_access_key(account_id, access_key_id, **changes),
            timeout,
            account_id,
        )

    async def remove_access_key(
        self, account_id: str, access_key_id: str, *, timeout: float | None = None
    ) -> None:
        await self._run(
            "remove_access_key",
            lambda: self.identity.remove_access_key(account_id, access_key_id),
            timeout,
            account_id,
        )

    async def remove_sessions(
        self, account_id: str, created_by: str, *, timeout: float | None = None
    ) -> None:
        await self._run(
            "remove_sessions",
            lambda: self.identity.remove_sessions(account_id, created_by),
            timeout,
            account_id,
        )

    async def get_account_id_from_access_key(
        self, name: str, *, timeout: float | None = None
    ) -> str:
        return await self._run(
            "get_account_id_from_access_key",
            lambda: self.identity.get_account_id_from_access_key(name),
            timeout,
        )

    # -------------------------------------------------------------------------
    # Apps and collaborators
    # -------------------------------------------------------------------------

    async def add_app(
        self,
        account_id: str,
        app: App,
        manually_provision_deployments: bool = False,
        *,
        timeout: float | None = None,
    ) -> App:
        return await self._run(
            "add_app",
            lambda: self.releases.add_app(account_id, app, manually_provision_deployments),
            timeout,
            account_id,
        )

    async def get_apps(self, account_id: str, *, timeout: float | None = None) -> list[App]:
        return await self._run(
            "get_apps", lambda: self.releases.get_apps(account_id), timeout, account_id
        )

    async def get_app(self, account_id: str, app_id: str, *, timeout: float | None = None) -> App:
        return await self._run(
            "get_app", lambda: self.releases.get_app(account_id, app_id), timeout, account_id
        )

    async def update_app(
        self, account_id: str, app_id: str, name: str | None = None, *, timeout: float | None = None
    ) -> App:
        return await self._run(
            "update_app",
            lambda: self.releases.update_app(account_id, app_id, name=name),
            timeout,
            account_id,
        )

    async def remove_app(
        self, account_id: str, app_id: str, *, timeout: float | None = None
    ) -> None:
        async def resolve_keys() -> list[str | None]:
            deployments = await self.releases.get_deployments(account_id, app_id)
            return [deployment.key for deployment in deployments]

        await self._mutate_history(
            "remove_app",
            resolve_keys,
            lambda: self.releases.remove_app(account_id, app_id),
            timeout,
            account_id,
        )

    async def transfer_app(
        self, account_id: str, app_id: str, email: str, *, timeout: float | None = None
    ) -> None:
        await self._run(
            "transfer_app",
            lambda: self.releases.transfer_app(account_id, app_id, email),
            timeout,
            account_id,
        )

    async def add_collaborator(
        self, account_id: str, app_id: str, email: str, *, timeout: float | None = None
    ) -> None:
        await self._run(
            "add_collaborator",
            lambda: self.releases.add_collaborator(account_id, app_id, email),
            timeout,
            account_id,
        )

    async def get_collaborators(
        self, account_id: str, app_id: str, *, timeout: float | None = None
    ) -> dict[str, CollaboratorProperties]:
        return await self._run(
            "get_collaborators",
            lambda: self.releases.get_collaborators(account_id, app_id),
            timeout,
            account_id,
        )

    async def remove_collaborator(
        self, account_id: str, app_id: str, email: str, *, timeout: float | None = None
    ) -> None:
        await self._run(
            "remove_collaborator",
            lambda: self.releases.remove_collaborator(account_id, app_id, email),
            timeout,
            account_id,
        )

    # -------------------------------------------------------------------------
    # Deployments
    # -------------------------------------------------------------------------

    async def add_deployment(
        self, account_id: str, app_id: str, deployment: Deployment, *, timeout: float | None = None
    ) -> Deployment:
        return await self._run(
            "add_deployment",
            lambda: self.releases.add_deployment(account_id, app_id, deployment),
            timeout,
            account_id,
        )

    async def get_deployment(
        self, account_id: str, app_id: str, deployment_id: str, *, timeout: float | None = None
    ) -> Deployment:
        return await self._run(
            "get_deployment",
            lambda: self.releases.get_deployment(account_id, app_id, deployment_id),
            timeout,
            account_id,
        )

    async def get_deployments(
        self, account_id: str, app_id: str, *, timeout: float | None = None
    ) -> list[Deployment]:
        return await self._run(
            "get_deployments",
            lambda: self.releases.get_deployments(account_id, app_id),
            timeout,
            account_id,
        )

    async def update_deployment(
        self,
        account_id: str,
        app_id: str,
        deployment_id: str,
        name: str | None = None,
        *,
        timeout: float | None = None,
    ) -> Deployment:
        return await self._run(
            "update_deployment",
            lambda: self.releases.update_deployment(account_id, app_id, deployment_id, name=name),
            timeout,
            account_id,
        )

    async def remove_deployment(
        self, account_id: str, app_id: str, deployment_id: str, *, timeout: float | None = None
    ) -> None:
        await self._mutate_history(
            "remove_deployment",
            lambda: self._deployment_keys(account_id, app_id, deployment_id),
            lambda: self.releases.remove_deployment(account_id, app_id, deployment_id),
            timeout,
            account_id,
        )

    async def get_deployment_info(
        self, deployment_key: str, *, timeout: float | None = None
    ) -> DeploymentInfo:
        return await self._run(
            "get_deployment_info",
            lambda: self.releases.get_deployment_info(deployment_key),
            timeout,
        )

    async def get_package_history_from_deployment_key(
        self, deployment_key: str, *, timeout: float | None = None
    ) -> list[Package]:
        return await self._run(
            "get_package_history_from_deployment_key",
            lambda: self._cached_history(deployment_key),
            timeout,
        )

    async def get_release_for_client(
        self, deployment_key: str, client_unique_id: str, *, timeout: float | None = None
    ) -> Package | None:
        """The package a device should run, honouring staged rollouts."""

        async def call() -> Package | None:
            history = await self._cached_history(deployment_key)
            return resolve_rollout(history, client_unique_id)

        return await self._run("get_release_for_client", call, timeout)

    # -------------------------------------------------------------------------
    # Packages
    # -------------------------------------------------------------------------

    async def commit_package(
        self,
        account_id: str,
        app_id: str,
        deployment_id: str,
        info: PackageInfo,
        payload: BlobContent | None = None,
        payload_size: int | None = None,
        blob_id: str | None = None,
        *,
        timeout: float | None = None,
    ) -> Package:
        return await self._mutate_history(
            "commit_package",
            lambda: self._deployment_keys(account_id, app_id, deployment_id),
            lambda: self.releases.commit_package(
                account_id,
                app_id,
                deployment_id,
                info,
                payload=payload,
                payload_size=payload_size,
                blob_id=blob_id,
            ),
            timeout,
            account_id,
        )

    async def get_package_history(
        self, account_id: str, app_id: str, deployment_id: str, *, timeout: float | None = None
    ) -> list[Package]:
        return await self._run(
            "get_package_history",
            lambda: self.releases.get_package_history(account_id, app_id, deployment_id),
            timeout,
            account_id,
        )

    async def clear_package_history(
        self, account_id: str, app_id: str, deployment_id: str, *, timeout: float | None = None
    ) -> None:
        await self._mutate_history(
            "clear_package_history",
            lambda: self._deployment_keys(account_id, app_id, deployment_id),
            lambda: self.releases.clear_package_history(account_id, app_id, deployment_id),
            timeout,
            account_id,
        )

    async def promote(
        self,
        account_id: str,
        app_id: str,
        source_deployment_id: str,
        target_deployment_id: str,
        info: PackageInfo | None = None,
        *,
        timeout: float | None = None,
    ) -> Package:
        return await self._mutate_history(
            "promote",
            lambda: self._deployment_keys(account_id, app_id, target_deployment_id),
            lambda: self.releases.promote(
                account_id, app_id, source_deployment_id, target_deployment_id, info
            ),
            timeout,
            account_id,
        )

    async def rollback(
        self,
        account_id: str,
        app_id: str,
        deployment_id: str,
        target_label: str | None = None,
        *,
        timeout: float | None = None,
    ) -> Package:
        return await self._mutate_history(
            "rollback",
            lambda: self._deployment_keys(account_id, app_id, deployment_id),
            lambda: self.releases.rollback(account_id, app_id, deployment_id, target_label),
            timeout,
            account_id,
        )
