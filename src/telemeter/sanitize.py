"""Drop properties whose keys look like credentials."""

from __future__ import annotations

from typing import Any

SENSITIVE_KEY_PARTS: tuple[str, ...] = (
    "password",
    "token",
    "key",
    "secret",
    "auth",
    "credential",
)


def is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(part in lowered for part in SENSITIVE_KEY_PARTS)


def sanitize(data: Any) -> Any:
    """Return a shallow copy of ``data`` without sensitive keys.

    Anything that is not a mapping is returned unchanged.
    """
    if not isinstance(data, dict):
        return data
    return {key: value for key, value in data.items() if not is_sensitive_key(str(key))}
