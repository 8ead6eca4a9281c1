"""Embedded telemetry event pipeline."""

from telemeter.client import SendOptions, TelemetryClient
from telemeter.version import __version__

__all__ = ["SendOptions", "TelemetryClient", "__version__"]
