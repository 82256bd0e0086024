"""Release store: apps, deployments and package histories.

Every mutation first resolves the app, checks the caller's role through the
identity store and only then touches the metadata backend. Package commits
stream the payload into the blob store before any metadata is written, then
append to the deployment history with an optimistic compare-and-swap on the
deployment's version counter, retrying lost races a bounded number of times.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from pushstore.config import Settings
from pushstore.core.ids import epoch_millis, generate_id, generate_secure_key
from pushstore.core.model import (
    App,
    CollaboratorProperties,
    Deployment,
    DeploymentInfo,
    Package,
    PackageInfo,
    Permission,
    ReleaseMethod,
    format_label,
)
from pushstore.core.rollout import FULL_ROLLOUT, is_unfinished_rollout
from pushstore.errors import (
    ConflictError,
    ForbiddenError,
    InvalidArgumentError,
    LabelConflict,
    NotFoundError,
    StorageError,
)
from pushstore.identity import IdentityStore
from pushstore.persistence.base import DeploymentRecord, MetadataBackend
from pushstore.storage.base import BlobStorage
from pushstore.storage.streams import BlobContent, HashingStream

logger = logging.getLogger(__name__)

DEFAULT_DEPLOYMENTS = ("Staging", "Production")


def validate_rollout(rollout: float | None) -> None:
    if rollout is not None and not 0 <= rollout <= FULL_ROLLOUT:
        raise InvalidArgumentError(f"Rollout must be between 0 and 100, got {rollout}")


def _find_label(history: Sequence[Package], label: str) -> Package | None:
    for package in reversed(history):
        if package.label == label:
            return package
    return None


def _last_hash_for_app_version(history: Sequence[Package], app_version: str) -> str | None:
    for package in reversed(history):
        if package.app_version == app_version:
            return package.package_hash
    return None


def _find_collaborator(app: App, email: str) -> str | None:
    """Return the collaborator map key matching an email, ignoring case."""
    wanted = email.lower()
    for key in app.collaborators:
        if key.lower() == wanted:
            return key
    return None


class ReleaseStore:
    """Apps, deployments and the package history engine."""

    def __init__(
        self,
        backend: MetadataBackend,
        blobs: BlobStorage,
        identity: IdentityStore,
        settings: Settings,
    ) -> None:
        self._backend = backend
        self._blobs = blobs
        self._identity = identity
        self._settings = settings

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _app_for(
        self,
        account_id: str,
        app_id: str,
        permission: Permission = Permission.COLLABORATOR,
    ) -> App:
        app = await self._backend.get_app(app_id)
        self._identity.require_permission(account_id, app, permission)
        return app

    async def _deployment_in(self, app: App, deployment_id: str) -> DeploymentRecord:
        record = await self._backend.get_deployment(deployment_id)
        if record.deployment.app_id != app.id:
            raise NotFoundError.for_entity("Deployment", deployment_id)
        return record

    async def _check_name_free(self, account_id: str, name: str, app_id: str | None = None) -> None:
        for app in await self._backend.list_apps(account_id):
            if app.name == name and app.id != app_id:
                raise ConflictError.for_entity("App", name)

    async def _released_by(self, account_id: str) -> str:
        return (await self._identity.get_account(account_id)).email

    async def _append(self, deployment_id: str, package: Package) -> Package:
        """Label and append a package, retrying lost compare-and-swap races."""
        attempts = max(1, self._settings.commit_max_attempts)
        for attempt in range(1, attempts + 1):
            record = await self._backend.get_deployment(deployment_id)
            candidate = package.model_copy(update={"label": format_label(record.version + 1)})
            try:
                return await self._backend.append_package(deployment_id, candidate, record.version)
            except LabelConflict:
                logger.debug(
                    f"Label race lost on deployment {deployment_id} "
                    f"(attempt {attempt}/{attempts})"
                )
                await asyncio.sleep(0)
        raise ConflictError(
            f"Could not assign a label in deployment '{deployment_id}' "
            f"after {attempts} attempts"
        )

    # -------------------------------------------------------------------------
    # Apps
    # -------------------------------------------------------------------------

    async def add_app(
        self,
        account_id: str,
        app: App,
        manually_provision_deployments: bool = False,
    ) -> App:
        """Create an app owned by the caller.

        Unless `manually_provision_deployments` is set, "Staging" and
        "Production" deployments are created with it.

        Raises:
            ConflictError: If the caller already sees an app with this name
        """
        account = await self._identity.get_account(account_id)
        await self._check_name_free(account_id, app.name)

        stored = App(
            id=generate_id(),
            name=app.name,
            collaborators={
                account.email: CollaboratorProperties(
                    account_id=account_id, permission=Permission.OWNER
                )
            },
            created_time=epoch_millis(),
        )
        await self._backend.insert_app(stored)
        assert stored.id is not None
        logger.info(f"Added app {stored.id} for account {account_id}")

        if not manually_provision_deployments:
            try:
                for name in DEFAULT_DEPLOYMENTS:
                    await self.add_deployment(account_id, stored.id, Deployment(name=name))
            except BaseException:
                logger.warning(f"Provisioning deployments failed, removing app {stored.id}")
                await self._backend.delete_app(stored.id)
                raise

        return await self.get_app(account_id, stored.id)

    async def get_apps(self, account_id: str) -> list[App]:
        apps = await self._backend.list_apps(account_id)
        return [app.mark_current_account(account_id) for app in apps]

    async def get_app(self, account_id: str, app_id: str) -> App:
        app = await self._app_for(account_id, app_id)
        return app.mark_current_account(account_id)

    async def update_app(self, account_id: str, app_id: str, name: str | None = None) -> App:
        """Rename an app (Owner only)."""
        app = await self._app_for(account_id, app_id, Permission.OWNER)
        if name is not None and name != app.name:
            for props in app.collaborators.values():
                await self._check_name_free(props.account_id, name, app_id)
            app.name = name
            await self._backend.update_app(app)
        return app.mark_current_account(account_id)

    async def remove_app(self, account_id: str, app_id: str) -> None:
        """Delete an app with its deployments and histories (Owner only)."""
        await self._app_for(account_id, app_id, Permission.OWNER)
        await self._backend.delete_app(app_id)
        logger.info(f"Removed app {app_id}")

    async def transfer_app(self, account_id: str, app_id: str, email: str) -> None:
        """Make another account the owner; the previous owner stays as Collaborator.

        Raises:
            NotFoundError: If no account has the target email
            ConflictError: If the target already owns the app or sees an app
                with the same name
        """
        app = await self._app_for(account_id, app_id, Permission.OWNER)
        target = await self._identity.get_account_by_email(email)
        assert target.id is not None
        if target.id == account_id:
            raise ConflictError("The app is already owned by this account")

        existing_key = _find_collaborator(app, target.email)
        if existing_key is None:
            await self._check_name_free(target.id, app.name, app_id)
        else:
            del app.collaborators[existing_key]

        for props in app.collaborators.values():
            if props.permission == Permission.OWNER:
                props.permission = Permission.COLLABORATOR
        app.collaborators[target.email] = CollaboratorProperties(
            account_id=target.id, permission=Permission.OWNER
        )
        await self._backend.update_app(app)
        logger.info(f"Transferred app {app_id} to account {target.id}")

    async def add_collaborator(self, account_id: str, app_id: str, email: str) -> None:
        """Give another account Collaborator access (Owner only)."""
        app = await self._app_for(account_id, app_id, Permission.OWNER)
        if _find_collaborator(app, email) is not None:
            raise ConflictError(f"The given account is already a collaborator for app '{app.name}'")
        target = await self._identity.get_account_by_email(email)
        assert target.id is not None
        await self._check_name_free(target.id, app.name, app_id)

        app.collaborators[target.email] = CollaboratorProperties(
            account_id=target.id, permission=Permission.COLLABORATOR
        )
        await self._backend.update_app(app)

    async def get_collaborators(
        self, account_id: str, app_id: str
    ) -> dict[str, CollaboratorProperties]:
        app = await self.get_app(account_id, app_id)
        return app.collaborators

    async def remove_collaborator(self, account_id: str, app_id: str, email: str) -> None:
        """Remove a collaborator.

        The owner may remove anyone but themselves; a collaborator may only
        remove themselves.
        """
        app = await self._app_for(account_id, app_id)
        key = _find_collaborator(app, email)
        if key is None:
            raise NotFoundError.for_entity("Collaborator", email)

        target = app.collaborators[key]
        if target.permission == Permission.OWNER:
            raise ForbiddenError("The owner of an app cannot be removed")
        if target.account_id != account_id:
            self._identity.require_permission(account_id, app, Permission.OWNER)

        del app.collaborators[key]
        await self._backend.update_app(app)

    # -------------------------------------------------------------------------
    # Deployments
    # -------------------------------------------------------------------------

    async def add_deployment(
        self, account_id: str, app_id: str, deployment: Deployment
    ) -> Deployment:
        """Create a deployment; a secure key is generated unless one is given.

        Raises:
            ConflictError: If the name exists in the app or the key anywhere
        """
        await self._app_for(account_id, app_id)
        stored = Deployment(
            id=generate_id(),
            app_id=app_id,
            name=deployment.name,
            key=deployment.key or generate_secure_key(account_id),
            created_time=epoch_millis(),
        )
        await self._backend.insert_deployment(app_id, stored)
        logger.info(f"Added deployment {stored.name} to app {app_id}")
        return stored

    async def get_deployment(self, account_id: str, app_id: str, deployment_id: str) -> Deployment:
        app = await self._app_for(account_id, app_id)
        return (await self._deployment_in(app, deployment_id)).deployment

    async def get_deployments(self, account_id: str, app_id: str) -> list[Deployment]:
        await self._app_for(account_id, app_id)
        return await self._backend.list_deployments(app_id)

    async def update_deployment(
        self,
        account_id: str,
        app_id: str,
        deployment_id: str,
        name: str | None = None,
    ) -> Deployment:
        """Rename a deployment (Owner only)."""
        app = await self._app_for(account_id, app_id, Permission.OWNER)
        deployment = (await self._deployment_in(app, deployment_id)).deployment
        if name is not None and name != deployment.name:
            deployment.name = name
            await self._backend.update_deployment(deployment)
        return deployment

    async def remove_deployment(self, account_id: str, app_id: str, deployment_id: str) -> None:
        app = await self._app_for(account_id, app_id, Permission.OWNER)
        await self._deployment_in(app, deployment_id)
        await self._backend.delete_deployment(deployment_id)
        logger.info(f"Removed deployment {deployment_id} from app {app_id}")

    async def get_deployment_info(self, deployment_key: str) -> DeploymentInfo:
        """Resolve a client-facing deployment key."""
        deployment = (await self._backend.get_deployment_by_key(deployment_key)).deployment
        assert deployment.app_id is not None and deployment.id is not None
        return DeploymentInfo(app_id=deployment.app_id, deployment_id=deployment.id)

    async def get_package_history_from_deployment_key(self, deployment_key: str) -> list[Package]:
        record = await self._backend.get_deployment_by_key(deployment_key)
        assert record.deployment.id is not None
        return await self._backend.get_package_history(record.deployment.id)

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
    ) -> Package:
        """Release a new package to a deployment.

        With `payload`, the bytes are streamed into the blob store and the
        package hash is their sha256; a caller-supplied `info.package_hash`
        must match it. Without a payload, `blob_id` names content that is
        already stored, and `info.package_hash` and `payload_size` describe it.

        Raises:
            InvalidArgumentError: Bad rollout, missing app version, hash mismatch
            NotFoundError: If `blob_id` is not in the blob store
            ConflictError: If the label race could not be won
        """
        app = await self._app_for(account_id, app_id)
        await self._deployment_in(app, deployment_id)
        validate_rollout(info.rollout)
        if not info.app_version:
            raise InvalidArgumentError("An app version is required to release a package")
        released_by = await self._released_by(account_id)

        uploaded: str | None = None
        if payload is not None:
            stream = HashingStream(payload)
            uploaded = await self._blobs.add(stream, payload_size)
            try:
                package_hash = stream.hexdigest()
                if info.package_hash and info.package_hash != package_hash:
                    raise InvalidArgumentError(
                        "The supplied package hash does not match the uploaded content"
                    )
                blob_url = await self._blobs.get_url(uploaded)
            except StorageError:
                await self._discard_blob(uploaded)
                raise
            size = stream.size
        elif blob_id is not None and info.package_hash and payload_size is not None:
            if payload_size < 0:
                raise InvalidArgumentError("payload_size must not be negative")
            package_hash = info.package_hash
            blob_url = await self._blobs.get_url(blob_id)
            size = payload_size
        else:
            raise InvalidArgumentError(
                "A package needs either a payload or an existing blob id, package hash and size"
            )

        package = Package(
            app_version=info.app_version,
            blob_url=blob_url,
            description=info.description,
            diff_package_map=info.diff_package_map,
            is_disabled=bool(info.is_disabled),
            is_mandatory=bool(info.is_mandatory),
            manifest_blob_url=info.manifest_blob_url,
            package_hash=package_hash,
            released_by=released_by,
            release_method=ReleaseMethod.UPLOAD,
            rollout=info.rollout,
            size=size,
            upload_time=epoch_millis(),
        )
        try:
            committed = await self._append(deployment_id, package)
        except Exception:
            if uploaded is not None:
                await self._discard_blob(uploaded)
            raise

        logger.info(f"Committed {committed.label} to deployment {deployment_id}")
        return committed

    async def _discard_blob(self, blob_id: str) -> None:
        try:
            await self._blobs.remove(blob_id)
        except StorageError as exc:
            logger.warning(f"Failed to remove orphaned blob {blob_id}: {exc}")

    async def get_package_history(
        self, account_id: str, app_id: str, deployment_id: str
    ) -> list[Package]:
        app = await self._app_for(account_id, app_id)
        await self._deployment_in(app, deployment_id)
        return await self._backend.get_package_history(deployment_id)

    async def clear_package_history(self, account_id: str, app_id: str, deployment_id: str) -> None:
        """Drop a deployment's history (Owner only). Labels keep counting up."""
        app = await self._app_for(account_id, app_id, Permission.OWNER)
        await self._deployment_in(app, deployment_id)
        await self._backend.clear_package_history(deployment_id)
        logger.info(f"Cleared package history of deployment {deployment_id}")

    async def promote(
        self,
        account_id: str,
        app_id: str,
        source_deployment_id: str,
        target_deployment_id: str,
        info: PackageInfo | None = None,
    ) -> Package:
        """Release a source deployment's package to a target deployment.

        The payload is not uploaded again: hash and blob url are copied.
        `info.label` selects a specific source release; other `info` fields
        override the copied metadata.

        Raises:
            NotFoundError: If the source has no (matching) release
            ConflictError: If the target is mid-rollout, or already runs this
                package for the same app version
        """
        info = info or PackageInfo()
        app = await self._app_for(account_id, app_id)
        source = (await self._deployment_in(app, source_deployment_id)).deployment
        target = (await self._deployment_in(app, target_deployment_id)).deployment
        validate_rollout(info.rollout)

        if info.label:
            source_history = await self._backend.get_package_history(source_deployment_id)
            source_package = _find_label(source_history, info.label)
        else:
            source_package = source.package
        if source_package is None:
            raise NotFoundError("Cannot promote from a deployment with no enabled releases")

        current = target.package
        if (
            current is not None
            and is_unfinished_rollout(current.rollout)
            and not current.is_disabled
        ):
            raise ConflictError(
                "Cannot promote to an unfinished rollout release unless it is already disabled"
            )

        target_history = await self._backend.get_package_history(target_deployment_id)
        if source_package.package_hash == _last_hash_for_app_version(
            target_history, source_package.app_version
        ):
            raise ConflictError(
                "The package is identical to the target deployment's current release"
            )

        package = Package(
            app_version=info.app_version or source_package.app_version,
            blob_url=source_package.blob_url,
            description=info.description or source_package.description,
            is_disabled=(
                info.is_disabled if info.is_disabled is not None else source_package.is_disabled
            ),
            is_mandatory=(
                info.is_mandatory if info.is_mandatory is not None else source_package.is_mandatory
            ),
            manifest_blob_url=source_package.manifest_blob_url,
            package_hash=source_package.package_hash,
            released_by=await self._released_by(account_id),
            release_method=ReleaseMethod.PROMOTE,
            original_label=source_package.label,
            original_deployment=source.name,
            rollout=info.rollout,
            size=source_package.size,
            upload_time=epoch_millis(),
        )
        committed = await self._append(target_deployment_id, package)
        logger.info(
            f"Promoted {source_package.label} from {source.name} to {target.name} "
            f"as {committed.label}"
        )
        return committed

    async def rollback(
        self,
        account_id: str,
        app_id: str,
        deployment_id: str,
        target_label: str | None = None,
    ) -> Package:
        """Re-release an earlier package of the same deployment.

        Defaults to the second-to-last entry.

        Raises:
            InvalidArgumentError: Fewer than two entries, unknown label, or the
                target is already the latest release
            ConflictError: If the target was built for another app version
        """
        app = await self._app_for(account_id, app_id)
        await self._deployment_in(app, deployment_id)

        history = await self._backend.get_package_history(deployment_id)
        if len(history) < 2:
            raise InvalidArgumentError("Cannot roll back without a prior release")

        latest = history[-1]
        if target_label is None:
            target = history[-2]
        elif target_label == latest.label:
            raise InvalidArgumentError(f"Release {target_label} is already the latest release")
        else:
            found = _find_label(history, target_label)
            if found is None:
                raise InvalidArgumentError(f"Release {target_label} is not in the history")
            target = found

        if target.app_version != latest.app_version:
            raise ConflictError(
                "Cannot roll back to a different app version; release a new package instead"
            )

        package = target.model_copy(
            update={
                "label": None,
                "original_label": target.label,
                "original_deployment": None,
                "released_by": await self._released_by(account_id),
                "release_method": ReleaseMethod.ROLLBACK,
                "rollout": None,
                "upload_time": epoch_millis(),
            },
            deep=True,
        )
        committed = await self._append(deployment_id, package)
        logger.info(
            f"Rolled back deployment {deployment_id} to {target.label} as {committed.label}"
        )
        return committed

    async def is_blob_referenced(self, blob_url: str) -> bool:
        return await self._backend.is_blob_url_referenced(blob_url)
