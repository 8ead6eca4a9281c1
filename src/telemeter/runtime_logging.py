"""Structured JSONL runtime logging for the telemetry pipeline.

Every line is one JSON object: ``ts``, ``level``, ``event``, ``pid``,
``component`` plus whatever keyword fields the call site passes. Loggers
created with :meth:`RuntimeLogger.bind` share the sink and its lock.
"""

from __future__ import annotations

import json
import os
import threading
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal

from telemeter.paths import runtime_log_path

LogLevel = Literal["off", "error", "warning", "info", "debug"]

LEVEL_ENV = "TELEMETER_LOG_LEVEL"
FILE_ENV = "TELEMETER_LOG_FILE"

_LEVEL_VALUES: dict[str, int] = {
    "off": 100,
    "error": 40,
    "warning": 30,
    "info": 20,
    "debug": 10,
}

_ALIASES: dict[str, str] = {
    "warn": "warning",
    "none": "off",
    "disabled": "off",
    "0": "off",
}

_runtime_logger: "RuntimeLogger | None" = None


def parse_level(value: str | None, default: LogLevel = "warning") -> LogLevel:
    if not value:
        return default
    normalized = value.strip().lower()
    normalized = _ALIASES.get(normalized, normalized)
    if normalized not in _LEVEL_VALUES:
        return default
    return normalized  # type: ignore[return-value]


def resolve_log_file(path: str | Path | None) -> Path:
    if path is None:
        return runtime_log_path()
    return Path(path).expanduser().resolve()


def _json_default(value: Any) -> str:
    return repr(value)


@dataclass(slots=True)
class RuntimeLogger:
    level: LogLevel
    sink_path: Path
    component: str = "telemeter"
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def enabled(self, level: str) -> bool:
        current = _LEVEL_VALUES.get(self.level, _LEVEL_VALUES["warning"])
        incoming = _LEVEL_VALUES.get(level, _LEVEL_VALUES["debug"])
        return incoming >= current and current < _LEVEL_VALUES["off"]

    def bind(self, component: str) -> "RuntimeLogger":
        """Return a logger tagged with ``component`` writing to the same sink."""
        return replace(self, component=component, _lock=self._lock)

    def log(self, level: str, event: str, **fields: Any) -> None:
        if not self.enabled(level):
            return
        payload = {
            "ts": datetime.now(UTC).isoformat(),
            "level": level,
            "event": event,
            "pid": os.getpid(),
            "component": self.component,
            **fields,
        }
        line = json.dumps(payload, sort_keys=True, default=_json_default)
        with self._lock:
            try:
                self.sink_path.parent.mkdir(parents=True, exist_ok=True)
                with self.sink_path.open("a", encoding="utf-8") as handle:
                    handle.write(line + "\n")
            except OSError:
                # Logging must never take the pipeline down with it.
                return

    def debug(self, event: str, **fields: Any) -> None:
        self.log("debug", event, **fields)

    def info(self, event: str, **fields: Any) -> None:
        self.log("info", event, **fields)

    def warning(self, event: str, **fields: Any) -> None:
        self.log("warning", event, **fields)

    def error(self, event: str, **fields: Any) -> None:
        self.log("error", event, **fields)


class _DisabledLogger(RuntimeLogger):
    def __init__(self, component: str = "telemeter") -> None:
        super().__init__(level="off", sink_path=Path(os.devnull), component=component)

    def bind(self, component: str) -> RuntimeLogger:
        return _DisabledLogger(component)

    def log(self, level: str, event: str, **fields: Any) -> None:  # noqa: ARG002
        return


def configure_runtime_logging(
    *,
    level: str | None = None,
    log_file: str | Path | None = None,
) -> RuntimeLogger:
    global _runtime_logger

    effective_level = parse_level(level or os.getenv(LEVEL_ENV), default="warning")
    effective_file = resolve_log_file(log_file or os.getenv(FILE_ENV))
    if effective_level == "off":
        _runtime_logger = _DisabledLogger()
    else:
        _runtime_logger = RuntimeLogger(level=effective_level, sink_path=effective_file)
        _runtime_logger.info(
            "logging.configured",
            configured_level=effective_level,
            sink_path=str(effective_file),
        )
    return _runtime_logger


def get_runtime_logger(component: str | None = None) -> RuntimeLogger:
    global _runtime_logger
    if _runtime_logger is None:
        _runtime_logger = configure_runtime_logging()
    if component is None:
        return _runtime_logger
    return _runtime_logger.bind(component)
