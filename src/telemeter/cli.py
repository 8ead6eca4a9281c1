"""CLI entrypoint for telemeter."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Awaitable, Callable, TypeVar

import click

from telemeter.client import SendOptions, TelemetryClient
from telemeter.config.store import SettingsStore
from telemeter.paths import settings_path, store_db_path
from telemeter.runtime_logging import configure_runtime_logging
from telemeter.storage.kv import SqliteStore
from telemeter.version import __version__

T = TypeVar("T")


def _parse_property(raw: str) -> tuple[str, Any]:
    key, sep, value = raw.partition("=")
    if not sep or not key:
        raise click.BadParameter(f"expected key=value, got {raw!r}")
    try:
        return key, json.loads(value)
    except json.JSONDecodeError:
        return key, value


def _run_with_client(ctx: click.Context, action: Callable[[TelemetryClient], Awaitable[T]]) -> T:
    async def runner() -> T:
        client = TelemetryClient(
            SettingsStore(ctx.obj["settings_path"]).load(),
            store=SqliteStore(ctx.obj["db_path"]),
        )
        try:
            return await action(client)
        finally:
            await client.aclose()

    return asyncio.run(runner())


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--settings", "settings_file", type=click.Path(path_type=Path), help="Settings JSON file")
@click.option("--db", "db_file", type=click.Path(path_type=Path), help="Persistent store (SQLite)")
@click.option("--log-level", default=None, help="off, error, warning, info or debug")
@click.pass_context
def main(ctx: click.Context, settings_file: Path | None, db_file: Path | None, log_level: str | None) -> None:
    """telemeter: queue, dedup and deliver usage events."""
    configure_runtime_logging(level=log_level)
    ctx.ensure_object(dict)
    ctx.obj["settings_path"] = settings_file or settings_path()
    ctx.obj["db_path"] = db_file or store_db_path()


@main.command()
@click.argument("name")
@click.option("-p", "--prop", "props", multiple=True, help="Event property as key=value (JSON values allowed)")
@click.option("--immediate", is_flag=True, help="Send now with retry instead of queueing")
@click.option("--skip-dedup", is_flag=True, help="Bypass the duplicate check")
@click.pass_context
def send(ctx: click.Context, name: str, props: tuple[str, ...], immediate: bool, skip_dedup: bool) -> None:
    """Send or enqueue one event."""
    properties = dict(_parse_property(raw) for raw in props)
    options = SendOptions(immediate=immediate, skip_dedup=skip_dedup)
    ok = _run_with_client(ctx, lambda client: client.send_event(name, properties, options))
    click.echo(json.dumps({"event": name, "accepted": ok}))
    if not ok:
        ctx.exit(1)


@main.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show queued event counts and timestamps."""
    result = _run_with_client(ctx, lambda client: client.get_queue_status())
    click.echo(json.dumps(result.as_dict(), indent=2))


@main.command()
@click.pass_context
def flush(ctx: click.Context) -> None:
    """Drain the queue once."""
    result = _run_with_client(ctx, lambda client: client.process_event_queue())
    click.echo(
        json.dumps(
            {"sent": result.sent, "retained": result.retained, "dropped": result.dropped},
            indent=2,
        )
    )


@main.command()
@click.pass_context
def clear(ctx: click.Context) -> None:
    """Drop every queued event."""
    ok = _run_with_client(ctx, lambda client: client.clear_event_queue())
    click.echo(json.dumps({"cleared": ok}))


@main.command("settings")
@click.option("--json", "as_json", is_flag=True, help="Print a JSON object instead of key = value lines")
@click.pass_context
def settings_command(ctx: click.Context, as_json: bool) -> None:
    """Print the effective settings, one dotted key per line."""
    items = SettingsStore(ctx.obj["settings_path"]).load().setting_items()
    if as_json:
        click.echo(json.dumps(dict(items), indent=2))
        return
    for key, value in items:
        click.echo(f"{key} = {value}")


@main.command("settings-path")
@click.pass_context
def settings_path_command(ctx: click.Context) -> None:
    """Print settings file path."""
    click.echo(str(ctx.obj["settings_path"]))


@main.command()
def about() -> None:
    """Show version and project summary."""
    payload = {
        "name": "telemeter",
        "version": __version__,
        "description": "Embedded telemetry event pipeline",
    }
    click.echo(json.dumps(payload, indent=2))


if __name__ == "__main__":
    main()
