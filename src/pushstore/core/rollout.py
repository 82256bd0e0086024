"""Staged-rollout client selection.

A client is placed in a bucket 0..99 by hashing its unique id together with
the release tag. The bucket only depends on those two strings, so a client
keeps its answer for a given release, and different releases shuffle the
buckets so the same devices are not always first.
"""

from __future__ import annotations

import hashlib
from collections.abc import Sequence

from pushstore.core.model import Package

DELIMITER = "-"
FULL_ROLLOUT = 100


def rollout_bucket(client_id: str, release_tag: str) -> int:
    """Map a client to a bucket in [0, 100)."""
    identifier = f"{client_id}{DELIMITER}{release_tag}".encode("utf-8")
    digest = hashlib.sha256(identifier).digest()
    return int.from_bytes(digest[:8], "big") % FULL_ROLLOUT


def is_selected_for_rollout(client_id: str, rollout: float, release_tag: str) -> bool:
    """Whether a client falls inside a `rollout` percent release."""
    return rollout_bucket(client_id, release_tag) < rollout


def is_unfinished_rollout(rollout: float | None) -> bool:
    return rollout is not None and rollout != FULL_ROLLOUT


def release_tag(package: Package) -> str:
    return package.label or package.package_hash


def resolve_rollout(history: Sequence[Package], client_unique_id: str) -> Package | None:
    """Pick the package a client should run from a deployment's history.

    The latest enabled package wins when its rollout is finished or the
    client is selected into it; otherwise the client stays on the enabled
    package released before it. Returns None when nothing applies.
    """
    enabled = [package for package in history if not package.is_disabled]
    if not enabled:
        return None

    latest = enabled[-1]
    rollout = latest.rollout
    if rollout is None or not is_unfinished_rollout(rollout):
        return latest
    if is_selected_for_rollout(client_unique_id, rollout, release_tag(latest)):
        return latest
    return enabled[-2] if len(enabled) > 1 else None
