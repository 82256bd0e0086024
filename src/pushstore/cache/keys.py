"""Cache key schema for pushstore.

Key format: {prefix}:{entity_type}:{identifier}:{variant}

Where:
- prefix: "pushstore" (namespace for shared Redis)
- entity_type: "dk" (deployment key)
- identifier: the client-facing deployment key (URL-safe already)
- variant: "history" (package history document)
"""

from __future__ import annotations


class CacheKeys:
    """Cache key generator following consistent naming convention."""

    PREFIX = "pushstore"

    @classmethod
    def package_history(cls, deployment_key: str) -> str:
        """Key for the package history served to clients of a deployment key."""
        return f"{cls.PREFIX}:dk:{deployment_key}:history"
