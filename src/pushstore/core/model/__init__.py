"""Domain models for pushstore.

All entities are Pydantic v2 models. Stores hand out deep copies of these
(`snapshot()`), never the instances they keep internally.
"""

from __future__ import annotations

from typing import TypeVar

from pydantic import BaseModel

ModelT = TypeVar("ModelT", bound="StrictModel")


class StrictModel(BaseModel):
    """Base model for all pushstore entities.

    Fields are snake_case in Python and camelCase on the wire; both names
    are accepted on input.
    """

    model_config = {
        "extra": "forbid",
        "populate_by_name": True,
        "validate_default": True,
    }

    def snapshot(self: ModelT) -> ModelT:
        """Return an independent deep copy."""
        return self.model_copy(deep=True)

    def to_doc(self) -> dict:
        """Serialize to a JSON-compatible document (camelCase, no nulls)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# Import order matters: StrictModel must be defined first
# ruff: noqa: E402
from pushstore.core.model.identity import (
    AccessKey,
    AccessKeyRequest,
    Account,
    CollaboratorProperties,
    Permission,
)
from pushstore.core.model.release import (
    App,
    Deployment,
    DeploymentInfo,
    DiffPackage,
    Package,
    PackageInfo,
    ReleaseMethod,
    format_label,
    parse_label,
)

__all__ = [
    "StrictModel",
    # Identity
    "Account",
    "AccessKey",
    "AccessKeyRequest",
    "CollaboratorProperties",
    "Permission",
    # Releases
    "App",
    "Deployment",
    "DeploymentInfo",
    "DiffPackage",
    "Package",
    "PackageInfo",
    "ReleaseMethod",
    "format_label",
    "parse_label",
]
