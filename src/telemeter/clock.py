"""Wall-clock helpers; every component takes a ``Clock`` so tests can pin time."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Callable

Clock = Callable[[], datetime]

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def utc_now() -> datetime:
    return datetime.now(UTC)


def epoch_ms(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.astimezone(UTC)
    return (moment - _EPOCH) // timedelta(milliseconds=1)
