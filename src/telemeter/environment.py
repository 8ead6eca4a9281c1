"""Read-only environment probes: platform, browser and app version tags."""

from __future__ import annotations

import locale
import platform
import re
from dataclasses import dataclass

from telemeter.version import __version__

_PLATFORM_TOKENS: tuple[tuple[str, str], ...] = (
    ("mac", "mac"),
    ("win", "windows"),
    ("linux", "linux"),
)

# Edge advertises "Chrome/" too, so it has to be checked first.
_BROWSER_TOKENS: tuple[tuple[str, str], ...] = (
    ("edg/", "edge"),
    ("chrome/", "chrome"),
    ("firefox/", "firefox"),
)

_VERSION_PATTERNS = (
    re.compile(r"Chrome/(\d+\.\d+)"),
    re.compile(r"Edg/(\d+\.\d+)"),
    re.compile(r"Firefox/(\d+\.\d+)"),
)


def detect_platform(user_agent: str) -> str:
    lowered = user_agent.lower()
    for token, name in _PLATFORM_TOKENS:
        if token in lowered:
            return name
    return "unknown"


def detect_browser(user_agent: str) -> str:
    lowered = user_agent.lower()
    for token, name in _BROWSER_TOKENS:
        if token in lowered:
            return name
    return "unknown"


def detect_browser_version(user_agent: str) -> str | None:
    for pattern in _VERSION_PATTERNS:
        match = pattern.search(user_agent)
        if match:
            return match.group(1)
    return None


def default_user_agent() -> str:
    system = platform.system() or "Unknown"
    if system == "Darwin":
        system = "Macintosh"
    return (
        f"telemeter/{__version__} ({system}; {platform.machine() or 'unknown'}) "
        f"Python/{platform.python_version()}"
    )


def default_language() -> str:
    try:
        language, _encoding = locale.getlocale()
    except ValueError:
        return "en-US"
    if not language or language in {"C", "POSIX"}:
        return "en-US"
    return language.replace("_", "-")


@dataclass(slots=True, frozen=True)
class Environment:
    user_agent: str
    app_version: str
    language: str = "en-US"

    @classmethod
    def current(cls, *, user_agent: str | None = None, app_version: str | None = None) -> "Environment":
        return cls(
            user_agent=user_agent or default_user_agent(),
            app_version=app_version or __version__,
            language=default_language(),
        )

    @property
    def platform(self) -> str:
        return detect_platform(self.user_agent)

    @property
    def browser(self) -> str:
        return detect_browser(self.user_agent)

    @property
    def browser_version(self) -> str | None:
        return detect_browser_version(self.user_agent)
