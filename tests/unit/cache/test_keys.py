"""Tests for cache key generation."""

from pushstore.cache.keys import CacheKeys


class TestCacheKeys:
    """Test cache key generation."""

    def test_package_history_key(self) -> None:
        """Package history key has correct format."""
        key = CacheKeys.package_history("dk_abc123")
        assert key == "pushstore:dk:dk_abc123:history"
