"""Apps, deployments and release packages.

Labels are "v1", "v2", ... and are assigned by the release store in commit
order; `parse_label` recovers the position.
"""

from __future__ import annotations

import re
from enum import Enum

from pydantic import Field

from pushstore.core.model import StrictModel
from pushstore.core.model.identity import CollaboratorProperties

_LABEL_RE = re.compile(r"^v(\d+)$")


def format_label(number: int) -> str:
    return f"v{number}"


def parse_label(label: str | None) -> int | None:
    """Return the position encoded in a label, or None if malformed."""
    if not label:
        return None
    match = _LABEL_RE.match(label)
    if match is None:
        return None
    return int(match.group(1))


class ReleaseMethod(str, Enum):
    """How a package entered a deployment's history."""

    UPLOAD = "Upload"
    PROMOTE = "Promote"
    ROLLBACK = "Rollback"


class App(StrictModel):
    """An application with its collaborator map and deployment names."""

    id: str | None = None
    name: str = Field(..., min_length=1)
    collaborators: dict[str, CollaboratorProperties] = Field(default_factory=dict)
    deployments: list[str] = Field(default_factory=list)
    created_time: int | None = Field(default=None, alias="createdTime")

    def collaborator_for(self, account_id: str) -> tuple[str, CollaboratorProperties] | None:
        """Find the collaborator entry of an account, if any."""
        for email, props in self.collaborators.items():
            if props.account_id == account_id:
                return email, props
        return None

    def mark_current_account(self, account_id: str) -> App:
        for props in self.collaborators.values():
            props.is_current_account = props.account_id == account_id
        return self

    def clear_current_account(self) -> App:
        for props in self.collaborators.values():
            props.is_current_account = None
        return self


class DiffPackage(StrictModel):
    """Delta artifact from a historical package hash."""

    size: int
    url: str


class PackageInfo(StrictModel):
    """Release metadata supplied by the caller of commit/promote."""

    app_version: str | None = Field(default=None, alias="appVersion")
    description: str | None = None
    is_disabled: bool | None = Field(default=None, alias="isDisabled")
    is_mandatory: bool | None = Field(default=None, alias="isMandatory")
    rollout: float | None = None
    # Selects a source release for promote
    label: str | None = None
    package_hash: str | None = Field(default=None, alias="packageHash")
    diff_package_map: dict[str, DiffPackage] | None = Field(
        default=None, alias="diffPackageMap"
    )
    manifest_blob_url: str | None = Field(default=None, alias="manifestBlobUrl")


class Package(StrictModel):
    """A committed release. Immutable once part of a history."""

    app_version: str = Field(..., alias="appVersion")
    blob_url: str | None = Field(default=None, alias="blobUrl")
    description: str | None = None
    diff_package_map: dict[str, DiffPackage] | None = Field(
        default=None, alias="diffPackageMap"
    )
    is_disabled: bool = Field(default=False, alias="isDisabled")
    is_mandatory: bool = Field(default=False, alias="isMandatory")
    label: str | None = None
    manifest_blob_url: str | None = Field(default=None, alias="manifestBlobUrl")
    original_deployment: str | None = Field(default=None, alias="originalDeployment")
    original_label: str | None = Field(default=None, alias="originalLabel")
    package_hash: str = Field(..., alias="packageHash")
    released_by: str | None = Field(default=None, alias="releasedBy")
    release_method: ReleaseMethod | None = Field(default=None, alias="releaseMethod")
    rollout: float | None = None
    size: int = 0
    upload_time: int | None = Field(default=None, alias="uploadTime")

    @property
    def label_number(self) -> int | None:
        return parse_label(self.label)


class Deployment(StrictModel):
    """A release channel of an app, addressed by devices through `key`."""

    id: str | None = None
    app_id: str | None = Field(default=None, alias="appId")
    name: str = Field(..., min_length=1)
    key: str | None = None
    package: Package | None = None
    created_time: int | None = Field(default=None, alias="createdTime")


class DeploymentInfo(StrictModel):
    """Result of resolving a deployment key."""

    app_id: str = Field(..., alias="appId")
    deployment_id: str = Field(..., alias="deploymentId")
