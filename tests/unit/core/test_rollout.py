"""Tests for staged rollout selection."""

from __future__ import annotations

import pytest

from pushstore.core.model import Package
from pushstore.core.rollout import (
    is_selected_for_rollout,
    is_unfinished_rollout,
    release_tag,
    resolve_rollout,
    rollout_bucket,
)


def _package(label: str, rollout: float | None = None, is_disabled: bool = False) -> Package:
    return Package(
        app_version="1.0",
        package_hash=f"hash-{label}",
        label=label,
        rollout=rollout,
        is_disabled=is_disabled,
    )


class TestSelection:
    """Test client bucketing."""

    def test_bucket_in_range(self) -> None:
        for i in range(500):
            assert 0 <= rollout_bucket(f"client-{i}", "v1") < 100

    def test_stable_for_same_inputs(self) -> None:
        first = [is_selected_for_rollout(f"device-{i}", 30, "v5") for i in range(200)]
        second = [is_selected_for_rollout(f"device-{i}", 30, "v5") for i in range(200)]
        assert first == second

    def test_distribution_close_to_percentage(self) -> None:
        selected = sum(
            is_selected_for_rollout(f"client-{i}", 30, "v1") for i in range(10_000)
        )
        assert 2800 <= selected <= 3200

    def test_zero_selects_nobody_and_hundred_everybody(self) -> None:
        ids = [f"client-{i}" for i in range(500)]
        assert not any(is_selected_for_rollout(c, 0, "v1") for c in ids)
        assert all(is_selected_for_rollout(c, 100, "v1") for c in ids)

    def test_release_tag_shuffles_buckets(self) -> None:
        ids = [f"client-{i}" for i in range(200)]
        v1 = [rollout_bucket(c, "v1") for c in ids]
        v2 = [rollout_bucket(c, "v2") for c in ids]
        assert v1 != v2


@pytest.mark.parametrize(
    ("rollout", "expected"),
    [(None, False), (100, False), (0, True), (50, True), (99.5, True)],
)
def test_is_unfinished_rollout(rollout: float | None, expected: bool) -> None:
    assert is_unfinished_rollout(rollout) is expected


def test_release_tag_prefers_label() -> None:
    assert release_tag(_package("v3")) == "v3"
    assert release_tag(Package(app_version="1.0", package_hash="abc")) == "abc"


class TestResolveRollout:
    """Test picking the package a client should run."""

    def test_empty_history(self) -> None:
        assert resolve_rollout([], "client") is None

    def test_full_rollout_returns_latest(self) -> None:
        history = [_package("v1"), _package("v2")]
        assert resolve_rollout(history, "client") == history[-1]

    def test_disabled_packages_skipped(self) -> None:
        history = [_package("v1"), _package("v2", is_disabled=True)]
        assert resolve_rollout(history, "client") == history[0]

    def test_zero_rollout_falls_back_to_previous(self) -> None:
        history = [_package("v1"), _package("v2", rollout=0)]
        assert resolve_rollout(history, "client") == history[0]

    def test_zero_rollout_without_previous(self) -> None:
        assert resolve_rollout([_package("v1", rollout=0)], "client") is None

    def test_partial_rollout_splits_clients(self) -> None:
        history = [_package("v1"), _package("v2", rollout=50)]
        resolved = [resolve_rollout(history, f"c{i}") for i in range(400)]
        assert {package.label for package in resolved if package} == {"v1", "v2"}

    def test_partial_rollout_matches_selection(self) -> None:
        history = [_package("v1"), _package("v2", rollout=30)]
        for i in range(100):
            client = f"device-{i}"
            expected = "v2" if is_selected_for_rollout(client, 30, "v2") else "v1"
            resolved = resolve_rollout(history, client)
            assert resolved is not None
            assert resolved.label == expected
