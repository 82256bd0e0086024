"""Metadata backend contract.

A metadata backend persists the five logical collections (accounts, access
keys, apps with their collaborator maps, deployments, package histories)
and enforces the per-entity uniqueness rules. Business rules such as
permissions, label numbering and promote/rollback live in the stores built
on top of it, so every backend behaves the same.

Backends return fresh model instances, never references to stored state,
and raise only pushstore errors.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from pushstore.core.model import AccessKey, Account, App, Deployment, Package


@dataclass
class DeploymentRecord:
    """A deployment together with its commit counter.

    `version` counts the labels ever assigned in the deployment; the next
    commit gets label v{version + 1} and must compare-and-swap on it.
    """

    deployment: Deployment
    version: int


def package_blob_urls(package: Package) -> set[str]:
    """All blob urls a package keeps alive."""
    urls = {url for url in (package.blob_url, package.manifest_blob_url) if url}
    if package.diff_package_map:
        urls.update(diff.url for diff in package.diff_package_map.values())
    return urls


class MetadataBackend(ABC):
    """Abstract base class for metadata backends."""

    backend_type: str = "abstract"

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    @abstractmethod
    async def insert_account(self, account: Account) -> None:
        """Insert an account with an assigned id.

        Raises:
            ConflictError: If the email (case-insensitive) is taken
        """
        ...

    @abstractmethod
    async def get_account(self, account_id: str) -> Account: ...

    @abstractmethod
    async def get_account_by_email(self, email: str) -> Account:
        """Case-insensitive email lookup."""
        ...

    @abstractmethod
    async def update_account(self, account: Account) -> None:
        """Replace mutable account fields. The email never changes."""
        ...

    # -------------------------------------------------------------------------
    # Access keys
    # -------------------------------------------------------------------------

    @abstractmethod
    async def insert_access_key(self, account_id: str, access_key: AccessKey) -> None:
        """Insert a key owned by `account_id`.

        Raises:
            ConflictError: If the key name (the secret) is taken
        """
        ...

    @abstractmethod
    async def get_access_key(self, account_id: str, access_key_id: str) -> AccessKey:
        """Raises NotFoundError unless the key exists and belongs to the account."""
        ...

    @abstractmethod
    async def find_access_key_by_name(self, name: str) -> tuple[str, AccessKey]:
        """Return (owning account id, key) for a secret key name."""
        ...

    @abstractmethod
    async def list_access_keys(self, account_id: str) -> list[AccessKey]: ...

    @abstractmethod
    async def update_access_key(self, account_id: str, access_key: AccessKey) -> None: ...

    @abstractmethod
    async def delete_access_key(self, account_id: str, access_key_id: str) -> None: ...

    # -------------------------------------------------------------------------
    # Apps
    # -------------------------------------------------------------------------

    @abstractmethod
    async def insert_app(self, app: App) -> None:
        """Insert an app with its collaborator map (no deployments yet)."""
        ...

    @abstractmethod
    async def get_app(self, app_id: str) -> App:
        """Return the app with `deployments` filled with deployment names."""
        ...

    @abstractmethod
    async def list_apps(self, account_id: str) -> list[App]:
        """Apps where the account appears in the collaborator map."""
        ...

    @abstractmethod
    async def update_app(self, app: App) -> None:
        """Replace name and collaborator map. Deployment names are derived."""
        ...

    @abstractmethod
    async def delete_app(self, app_id: str) -> None:
        """Delete an app with its deployments and package histories."""
        ...

    # -------------------------------------------------------------------------
    # Deployments
    # -------------------------------------------------------------------------

    @abstractmethod
    async def insert_deployment(self, app_id: str, deployment: Deployment) -> None:
        """Insert a deployment with assigned id and key.

        Raises:
            ConflictError: If the name exists in the app or the key exists anywhere
        """
        ...

    @abstractmethod
    async def get_deployment(self, deployment_id: str) -> DeploymentRecord: ...

    @abstractmethod
    async def get_deployment_by_key(self, deployment_key: str) -> DeploymentRecord: ...

    @abstractmethod
    async def list_deployments(self, app_id: str) -> list[Deployment]: ...

    @abstractmethod
    async def update_deployment(self, deployment: Deployment) -> None:
        """Rename or re-key a deployment. The current package is not touched."""
        ...

    @abstractmethod
    async def delete_deployment(self, deployment_id: str) -> None: ...

    # -------------------------------------------------------------------------
    # Package histories
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_package_history(self, deployment_id: str) -> list[Package]:
        """Packages of a deployment ordered by label ascending."""
        ...

    @abstractmethod
    async def append_package(
        self, deployment_id: str, package: Package, expected_version: int
    ) -> Package:
        """Atomically append a labelled package and repoint the current package.

        Succeeds only while the deployment's version equals
        `expected_version`; the version then becomes `expected_version + 1`.

        Raises:
            LabelConflict: If another commit advanced the version first
            NotFoundError: If the deployment does not exist
        """
        ...

    @abstractmethod
    async def clear_package_history(self, deployment_id: str) -> None:
        """Drop all packages and the current package. The version is kept."""
        ...

    @abstractmethod
    async def is_blob_url_referenced(self, blob_url: str) -> bool:
        """Whether any live package points at this blob url."""
        ...

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def initialize(self) -> None:
        """Prepare storage (create schema and the like)."""
        return None

    @abstractmethod
    async def ping(self) -> bool:
        """Lightweight round-trip. Never raises."""
        ...

    async def close(self) -> None:
        return None
