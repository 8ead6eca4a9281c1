"""Named business events built on :class:`TelemetryClient`."""

from __future__ import annotations

from typing import Any, Literal

from telemeter.client import SendOptions, TelemetryClient
from telemeter.runtime_logging import get_runtime_logger

InstallReason = Literal["install", "update"]

ERROR_MESSAGE_LIMIT = 200


async def is_install_recorded(client: TelemetryClient) -> bool:
    key = client.settings.storage.keys.install_recorded
    return (await client.storage.safe_get([key])).get(key) is True


async def previous_version(client: TelemetryClient) -> str:
    key = client.settings.storage.keys.last_version
    value = (await client.storage.safe_get([key])).get(key)
    return str(value) if value else "unknown"


async def _mark_install_recorded(client: TelemetryClient) -> bool:
    keys = client.settings.storage.keys
    if not await client.storage.safe_set(keys.install_recorded, True):
        get_runtime_logger("events").warning("events.install.mark_failed")
        return False
    now = client.context.clock()
    await client.storage.safe_set(keys.install_date, now.isoformat())
    return True


async def track_install(
    client: TelemetryClient,
    reason: InstallReason = "install",
    options: SendOptions | None = None,
) -> bool:
    """Report a first install once, or an update with the previous version.

    Updates skip dedup because the stored version already gates them.
    Fields set in ``options`` override these defaults; unset ones keep them.
    """
    try:
        properties: dict[str, Any] = {"install_type": reason}
        if reason == "update":
            properties["previous_version"] = await previous_version(client)
        elif await is_install_recorded(client):
            get_runtime_logger("events").info("events.install.already_recorded")
            return False

        defaults = SendOptions(immediate=True, skip_dedup=reason == "update")
        sent = await client.send_event(
            "install",
            properties,
            options.over(defaults) if options else defaults,
        )
        if not sent:
            get_runtime_logger("events").warning("events.install.failed", reason=reason)
            return False

        if reason == "install":
            await _mark_install_recorded(client)
        await client.storage.safe_set(client.settings.storage.keys.last_version, client.environment.app_version)
        get_runtime_logger("events").info("events.install.tracked", reason=reason)
        return True
    except Exception as exc:
        get_runtime_logger("events").error("events.install.error", reason=reason, error=str(exc))
        return False


async def track_copy(client: TelemetryClient, fmt: str, source: str, **extra: Any) -> bool:
    """Queue a copy action; repeats within the copy window are dropped."""
    return await client.send_event("copy", {"format": fmt, "source": source, **extra})


async def track_error(
    client: TelemetryClient,
    error_type: str,
    component: str,
    message: str | None = None,
    **extra: Any,
) -> bool:
    properties: dict[str, Any] = {
        "error_type": error_type,
        "component": component,
        "message": message[:ERROR_MESSAGE_LIMIT] if message else message,
        **extra,
    }
    return await client.send_event("error", properties, SendOptions(immediate=True))
