import re
from collections.abc import Callable
from datetime import UTC, datetime
from zoneinfo import ZoneInfo

SLUG_RE = re.compile(r"^[a-z0-9]+(?:[-_][a-z0-9]+)*$")

Clock = Callable[[], datetime]


def is_slug(value: str) -> bool:
    return bool(SLUG_RE.fullmatch(value))


def now() -> datetime:
    return datetime.now(UTC)


def make_clock(timezone: str) -> Clock:
    """Return a clock producing aware datetimes in the given IANA time zone."""
    tz = ZoneInfo(timezone)

    def _now() -> datetime:
        return datetime.now(tz)

    return _now


def epoch_millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)
