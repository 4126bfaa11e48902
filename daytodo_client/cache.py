"""Month-keyed cache of server-confirmed task lists.

This is the client's query cache: one entry per YYYY-MM period, refreshed
on navigation, prefetch or invalidation. Day sessions subscribe to the
period of their day and receive the fresh list whenever it is replaced.
"""
import logging
from typing import Callable, Dict, List, Optional

from .calendar import adjacent_periods, period_of
from .client import TaskStoreClient
from .errors import PersistenceFailure
from .models import Task

logger = logging.getLogger(__name__)

Listener = Callable[[List[Task]], None]


class PeriodCache:
    def __init__(self, store: TaskStoreClient):
        self.store = store
        self._entries: Dict[str, List[Task]] = {}
        self._listeners: Dict[str, List[Listener]] = {}
        # fetch sequence numbers per period: a result is only applied when
        # no fetch started after it has been applied already
        self._started: Dict[str, int] = {}
        self._applied: Dict[str, int] = {}

    def get(self, period: str) -> Optional[List[Task]]:
        """Cached list for `period`, or None if it was never fetched."""
        entry = self._entries.get(period)
        return list(entry) if entry is not None else None

    def subscribe(self, period: str, listener: Listener) -> Callable[[], None]:
        self._listeners.setdefault(period, []).append(listener)

        def unsubscribe():
            try:
                self._listeners.get(period, []).remove(listener)
            except ValueError:
                pass

        return unsubscribe

    def _store_entry(self, period: str, tasks: List[Task]) -> None:
        self._entries[period] = list(tasks)
        for listener in list(self._listeners.get(period, [])):
            try:
                listener(list(tasks))
            except Exception:
                logger.exception('period listener failed for %s', period)

    async def fetch(self, period: str) -> List[Task]:
        """Fetch `period` from the store, replace the entry and notify.

        If a fetch of the same period that started later has already landed,
        this result is returned to the caller but not stored.
        """
        seq = self._started.get(period, 0) + 1
        self._started[period] = seq
        tasks = await self.store.fetch_tasks_for_period(period)
        if seq > self._applied.get(period, 0):
            self._applied[period] = seq
            self._store_entry(period, tasks)
        else:
            logger.debug('discarding stale fetch #%d of %s', seq, period)
        return list(tasks)

    async def ensure(self, period: str) -> List[Task]:
        cached = self.get(period)
        if cached is not None:
            return cached
        return await self.fetch(period)

    async def prefetch(self, period: str) -> None:
        """Warm the neighbouring months of `period`. Failures are only logged."""
        for key in adjacent_periods(period):
            if key in self._entries:
                continue
            try:
                await self.fetch(key)
            except PersistenceFailure:
                logger.info('prefetch of %s failed; will fetch on demand', key)

    async def invalidate(self, period: str) -> List[Task]:
        """Refetch `period`; subscribers get the new list.

        The current entry stays in place until the fresh list lands, so a
        failed refetch leaves the stale list readable.
        """
        return await self.fetch(period)

    def set_day(self, date_key: str, tasks: List[Task]) -> None:
        """Overwrite one day's tasks in its cached period without notifying.

        Used by a day session to keep the cache in step with its optimistic
        mirror. Periods that were never fetched are left alone.
        """
        period = period_of(date_key)
        entry = self._entries.get(period)
        if entry is None:
            return
        others = [t for t in entry if t.date != date_key]
        self._entries[period] = others + [t.model_copy() for t in tasks]
