from datetime import datetime, timezone
import re

_DATE_KEY_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_PERIOD_KEY_RE = re.compile(r"^(\d{4})-(\d{2})$")


def now_utc() -> datetime:
    """Return timezone-aware current UTC datetime."""
    return datetime.now(timezone.utc)


def validate_date_key(value: str | None) -> str:
    """Return `value` if it is a real calendar day in YYYY-MM-DD form.

    Raises ValueError otherwise. Tasks store their day as this string so
    that a month query is a simple prefix match.
    """
    if not value or not _DATE_KEY_RE.match(value):
        raise ValueError(f"invalid date key: {value!r}")
    # reject impossible days such as 2025-02-30
    datetime.strptime(value, '%Y-%m-%d')
    return value


def validate_period_key(value: str | None) -> str:
    """Return `value` if it is a YYYY-MM month key, else raise ValueError."""
    m = _PERIOD_KEY_RE.match(value or '')
    if not m or not 1 <= int(m.group(2)) <= 12:
        raise ValueError(f"invalid period key: {value!r}")
    return value


def clean_title(title: str | None, max_length: int) -> str:
    """Strip and truncate a task title; raise ValueError when it is empty."""
    t = (title or '').strip()
    if not t:
        raise ValueError('title required')
    return t[:max_length]
