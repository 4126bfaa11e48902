"""Month helpers for the calendar shell: period keys and per-day markers."""
from typing import Dict, Iterable, List, Tuple

from .models import Task, sort_key


def period_key(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def period_of(date_key: str) -> str:
    """YYYY-MM for a YYYY-MM-DD day key."""
    return date_key[:7]


def parse_period(key: str) -> Tuple[int, int]:
    year, month = key.split('-')
    y, m = int(year), int(month)
    if not 1 <= m <= 12:
        raise ValueError(f"invalid period key: {key!r}")
    return y, m


def shift_period(key: str, months: int) -> str:
    y, m = parse_period(key)
    idx = y * 12 + (m - 1) + months
    return period_key(idx // 12, idx % 12 + 1)


def adjacent_periods(key: str) -> Tuple[str, str]:
    """(previous, next) month keys, the ones worth prefetching."""
    return shift_period(key, -1), shift_period(key, 1)


def tasks_by_date(tasks: Iterable[Task]) -> Dict[str, List[Task]]:
    out: Dict[str, List[Task]] = {}
    for t in tasks:
        out.setdefault(t.date, []).append(t)
    for items in out.values():
        items.sort(key=sort_key)
    return out


def has_active(by_date: Dict[str, List[Task]], date_key: str) -> bool:
    return any(not t.done for t in by_date.get(date_key, []))


def has_completed(by_date: Dict[str, List[Task]], date_key: str) -> bool:
    """True when the day has tasks and every one of them is done."""
    items = by_date.get(date_key, [])
    return bool(items) and all(t.done for t in items)
