from __future__ import annotations

import base64
import secrets
import time
from typing import Final
from uuid import uuid4

# 21 random bytes encode to 28 base64 characters without padding
SECURE_KEY_BYTES: Final[int] = 21


def generate_id() -> str:
    """Generate an opaque, collision-resistant entity identifier."""
    return uuid4().hex


def generate_secure_key(account_id: str = "") -> str:
    """Generate an unguessable URL-safe key (deployment keys, access keys).

    The random part never starts with '-' so keys are safe as CLI arguments.
    The account id suffix keeps keys unique across accounts.
    """
    raw = secrets.token_bytes(SECURE_KEY_BYTES)
    encoded = base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")
    if encoded.startswith("-"):
        encoded = "_" + encoded[1:]
    return encoded + account_id


def epoch_millis() -> int:
    """Current time as integer milliseconds since the epoch."""
    return int(time.time() * 1000)
