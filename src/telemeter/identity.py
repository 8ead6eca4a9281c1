"""Anonymous installation identity and the common event context."""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass, field
from datetime import UTC
from typing import Any

from telemeter.clock import Clock, epoch_ms, utc_now
from telemeter.environment import Environment
from telemeter.runtime_logging import get_runtime_logger
from telemeter.sanitize import sanitize
from telemeter.storage.safe import SafeStorage

USER_ID_PREFIX = "u_"
USER_ID_LENGTH = 8

_BASE36 = string.digits + string.ascii_lowercase


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_user_id() -> str:
    """``u_`` followed by 8 base36 characters drawn from the OS CSPRNG."""
    raw = secrets.token_bytes(6)
    body = "".join(_base36(byte).rjust(2, "0") for byte in raw)
    return f"{USER_ID_PREFIX}{body[:USER_ID_LENGTH]}"


@dataclass(slots=True)
class EventData:
    name: str
    data: dict[str, Any] = field(default_factory=dict)


class ContextBuilder:
    def __init__(
        self,
        storage: SafeStorage,
        environment: Environment,
        *,
        user_id_key: str = "analytics_uid",
        clock: Clock = utc_now,
    ) -> None:
        self.storage = storage
        self.environment = environment
        self.user_id_key = user_id_key
        self.clock = clock
        self._logger = get_runtime_logger("identity")

    async def get_or_create_user_id(self) -> str:
        """Return the persisted id, creating and persisting one on first use.

        If the new id cannot be persisted it is still returned, so callers
        may see a different id on the next call until storage recovers.
        An unreadable store yields an ephemeral id and leaves the stored
        one untouched.
        """
        found = await self.storage.safe_lookup([self.user_id_key])
        if found is None:
            user_id = generate_user_id()
            self._logger.warning("identity.ephemeral", user_id=user_id, reason="read_failed")
            return user_id
        stored = found.get(self.user_id_key)
        if isinstance(stored, str) and stored:
            return stored

        user_id = generate_user_id()
        if await self.storage.safe_set(self.user_id_key, user_id):
            self._logger.info("identity.created", user_id=user_id)
        else:
            self._logger.warning("identity.ephemeral", user_id=user_id)
        return user_id

    async def build_event_data(self, name: str, custom_properties: dict[str, Any] | None = None) -> EventData:
        user_id = await self.get_or_create_user_id()
        now = self.clock().astimezone(UTC)
        iso = now.strftime("%Y-%m-%dT%H:%M:%S")
        date_part, time_part = iso.split("T")

        data: dict[str, Any] = {
            "$user_id": user_id,
            "$timestamp": epoch_ms(now),
            "$time": time_part,
            "$date": date_part,
            "$platform": self.environment.platform,
            "$browser": self.environment.browser,
            "$version": self.environment.app_version,
        }
        cleaned = sanitize(custom_properties or {})
        if isinstance(cleaned, dict):
            data.update(cleaned)
        else:
            self._logger.warning("identity.properties.ignored", event_name=name, kind=type(cleaned).__name__)
        return EventData(name=name, data=data)
