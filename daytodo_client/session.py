"""Optimistic cache controller for one open day.

A DaySession owns the local mirror of a single day's tasks. The UI shell
reads from it and calls its `on_*` callbacks; the drag controller hands it
intents. Mutations are applied to the mirror first and persisted after:

  * reorders fire one update per changed task concurrently and, if any of
    them fails, throw the mirror away and refetch the day (falling back to
    the pre-batch order when the refetch fails too);
  * single edits and deletes snapshot the mirror, apply the change, and on
    failure restore the snapshot; the day is refetched either way.

None of the public callbacks raise for store failures. ValidationFailure is
raised by `add_task`/`update_task` before any call is made; the `on_*`
wrappers turn it into a False/None return.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

from .cache import PeriodCache
from .calendar import period_of
from .client import TaskStoreClient
from .drag import DragIntent
from .errors import NotFound, PersistenceFailure, SessionClosed, ValidationFailure
from .models import Task, TaskUpdate, sort_key
from .ordering import apply_updates, compute_move, next_order, partition

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ('title', 'date', 'done', 'order')


@dataclass
class CommitOutcome:
    ok: bool
    attempted: int = 0
    failed: int = 0
    resynced: bool = False
    rolled_back: bool = False

    @classmethod
    def noop(cls) -> 'CommitOutcome':
        return cls(ok=True)


class DaySession:
    def __init__(
        self,
        store: TaskStoreClient,
        date: str,
        *,
        cache: Optional[PeriodCache] = None,
        tasks: Optional[Sequence[Task]] = None,
    ):
        self.store = store
        self.cache = cache
        self.date = date
        self.period = period_of(date)
        self._tasks: List[Task] = []
        self._listeners: List[Callable[[List[Task]], None]] = []
        self._pending: Set[asyncio.Future] = set()
        self._closed = False
        # bumped on every mirror change, so a late rollback can tell whether
        # anything newer has been installed since its batch was applied
        self._version = 0
        # resync sequence numbers: a fetched list is only installed if no
        # later resync (or external replacement) has been installed already
        self._started = 0
        self._applied = 0
        self._unsubscribe = None
        if cache is not None:
            self._unsubscribe = cache.subscribe(self.period, self.replace_from_server)
        if tasks is not None:
            self.replace_from_server(tasks)
        elif cache is not None and cache.get(self.period) is not None:
            self.replace_from_server(cache.get(self.period))

    # -- read side -------------------------------------------------------

    @property
    def tasks(self) -> List[Task]:
        return [t.model_copy() for t in self._tasks]

    @property
    def pending(self) -> List[Task]:
        return partition(self._tasks)[0]

    @property
    def completed(self) -> List[Task]:
        return partition(self._tasks)[1]

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, listener: Callable[[List[Task]], None]) -> Callable[[], None]:
        """Register a re-render callback; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe():
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return unsubscribe

    def _check_open(self) -> None:
        if self._closed:
            raise SessionClosed(f'day session for {self.date} is closed')

    def _set(self, tasks: Sequence[Task]) -> None:
        self._tasks = sorted((t for t in tasks if t.date == self.date), key=sort_key)
        self._version += 1
        for listener in list(self._listeners):
            try:
                listener(self.tasks)
            except Exception:
                logger.exception('day listener failed for %s', self.date)

    # -- server state ----------------------------------------------------

    def replace_from_server(self, tasks: Sequence[Task]) -> None:
        """Install a confirmed list (navigation, prefetch, invalidation).

        The list may cover the whole month; only this day's tasks are kept.
        It supersedes any resync still in flight.
        """
        if self._closed:
            return
        self._applied = self._started
        self._set([t.model_copy() for t in tasks])

    async def load(self) -> List[Task]:
        """Populate the mirror, from the period cache when it has the month."""
        self._check_open()
        if self.cache is not None:
            self.replace_from_server(await self.cache.ensure(self.period))
        else:
            await self.resync()
        return self.tasks

    async def resync(self) -> bool:
        """Replace the mirror with a fresh fetch of the day.

        Returns True when the fetched list was installed. A failed fetch is
        logged and leaves the mirror as it is.
        """
        if self._closed:
            return False
        if self.cache is not None:
            try:
                await self.cache.invalidate(self.period)
            except PersistenceFailure:
                logger.warning('resync of %s failed', self.date)
                return False
            return True
        self._started += 1
        seq = self._started
        try:
            tasks = await self.store.fetch_tasks_for_period(self.period)
        except PersistenceFailure:
            logger.warning('resync of %s failed', self.date)
            return False
        if seq <= self._applied or self._closed:
            logger.debug('discarding stale resync #%d for %s', seq, self.date)
            return False
        self._applied = seq
        self._set(tasks)
        return True

    # -- reorder ---------------------------------------------------------

    def apply_local(self, updates: Sequence[TaskUpdate]) -> None:
        """Speculatively apply engine output to the mirror."""
        self._check_open()
        self._set(apply_updates(self._tasks, updates))
        if self.cache is not None:
            self.cache.set_day(self.date, self._tasks)

    async def commit(
        self,
        updates: Sequence[TaskUpdate],
        snapshot: Optional[Sequence[Task]] = None,
        applied_version: Optional[int] = None,
    ) -> CommitOutcome:
        """Persist a reorder batch; on any failure resync the whole day.

        If the resync fails too, the mirror goes back to `snapshot` (the
        state before the batch was applied) unless something newer has been
        installed in the meantime.
        """
        if not updates:
            return CommitOutcome.noop()
        version = self._version if applied_version is None else applied_version
        results = await asyncio.gather(
            *(self.store.update_task(u.id, u.as_partial()) for u in updates),
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, Exception)]
        if not failures:
            return CommitOutcome(ok=True, attempted=len(updates))
        for f in failures:
            if not isinstance(f, PersistenceFailure):
                logger.error('unexpected error persisting reorder', exc_info=f)
        logger.warning('reorder batch for %s: %d of %d updates failed; resyncing', self.date, len(failures), len(updates))
        resynced = await self.resync()
        rolled_back = False
        if not resynced and snapshot is not None:
            rolled_back = self._rollback(snapshot, version)
        return CommitOutcome(ok=False, attempted=len(updates), failed=len(failures), resynced=resynced, rolled_back=rolled_back)

    def _rollback(self, snapshot: Sequence[Task], version: int) -> bool:
        if self._closed or self._version != version:
            return False
        logger.warning('resync of %s unavailable; restoring order from before the batch', self.date)
        self._set(snapshot)
        if self.cache is not None:
            self.cache.set_day(self.date, self._tasks)
        return True

    def _plan_move(self, active_id: str, target_id: str) -> List[TaskUpdate]:
        try:
            return compute_move(self._tasks, active_id, target_id)
        except NotFound as e:
            logger.info('ignoring move on %s: %s', self.date, e)
            return []

    async def reorder(self, active_id: str, target_id: str) -> CommitOutcome:
        """Move `active_id` onto `target_id` and persist the result."""
        self._check_open()
        updates = self._plan_move(active_id, target_id)
        if not updates:
            return CommitOutcome.noop()
        snap = self.snapshot()
        self.apply_local(updates)
        return await self.commit(updates, snap, self._version)

    def handle_intent(self, intent: DragIntent) -> Optional[asyncio.Future]:
        """Drop handler for the drag controller.

        Applies the move to the mirror synchronously and schedules the
        persistence batch on the running loop. Returns the scheduled future,
        or None when the drop changes nothing.
        """
        if self._closed:
            return None
        updates = self._plan_move(intent.active_id, intent.target_id)
        if not updates:
            return None
        snap = self.snapshot()
        self.apply_local(updates)
        fut = asyncio.ensure_future(self.commit(updates, snap, self._version))
        self._pending.add(fut)
        fut.add_done_callback(self._pending.discard)
        return fut

    async def drain(self) -> None:
        """Wait for every persistence batch scheduled by handle_intent."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # -- single edits ----------------------------------------------------

    def snapshot(self) -> List[Task]:
        return [t.model_copy() for t in self._tasks]

    def apply(self, task_id: str, partial: Dict[str, Any]) -> bool:
        """Merge `partial` into one mirrored task. Returns False if absent.

        A task whose date moves away from this day leaves the mirror.
        """
        self._check_open()
        found = False
        out = []
        for t in self._tasks:
            if t.id == task_id:
                found = True
                t = t.model_copy(update=partial)
            out.append(t)
        if found:
            self._set(out)
            if self.cache is not None:
                self.cache.set_day(self.date, self._tasks)
        return found

    async def reconcile(self, snapshot: Sequence[Task], error: Optional[BaseException]) -> bool:
        """Finish an optimistic edit: roll back on failure, then revalidate."""
        if error is not None and not self._closed:
            logger.warning('edit on %s failed (%s); rolling back', self.date, error)
            self._set(snapshot)
            if self.cache is not None:
                self.cache.set_day(self.date, self._tasks)
        await self.resync()
        return error is None

    def _validate_partial(self, partial: Dict[str, Any]) -> Dict[str, Any]:
        clean = {k: v for k, v in partial.items() if k in EDITABLE_FIELDS and v is not None}
        if 'title' in clean:
            title = str(clean['title']).strip()
            if not title:
                raise ValidationFailure('title must not be empty')
            clean['title'] = title
        return clean

    async def update_task(self, task_id: str, partial: Dict[str, Any]) -> bool:
        """Optimistically edit one task (title, date, done or order)."""
        self._check_open()
        clean = self._validate_partial(partial)
        if not clean:
            return True
        snap = self.snapshot()
        if not self.apply(task_id, clean):
            logger.info('update for %s ignored: task not on %s', task_id, self.date)
            return False
        error = None
        try:
            await self.store.update_task(task_id, clean)
        except PersistenceFailure as e:
            error = e
        ok = await self.reconcile(snap, error)
        new_date = clean.get('date')
        if ok and new_date and self.cache is not None and period_of(new_date) != self.period:
            try:
                await self.cache.invalidate(period_of(new_date))
            except PersistenceFailure:
                logger.info('could not refresh %s after moving task %s', period_of(new_date), task_id)
        return ok

    async def delete_task(self, task_id: str) -> bool:
        """Optimistically remove one task."""
        self._check_open()
        snap = self.snapshot()
        remaining = [t for t in self._tasks if t.id != task_id]
        if len(remaining) == len(self._tasks):
            logger.info('delete for %s ignored: task not on %s', task_id, self.date)
            return False
        self._set(remaining)
        if self.cache is not None:
            self.cache.set_day(self.date, self._tasks)
        error = None
        try:
            await self.store.delete_task(task_id)
        except PersistenceFailure as e:
            error = e
        return await self.reconcile(snap, error)

    async def add_task(self, title: str, order: Optional[int] = None) -> Optional[Task]:
        """Create a pending task at the end of the pending list (or `order`)."""
        self._check_open()
        title = (title or '').strip()
        if not title:
            raise ValidationFailure('title must not be empty')
        if order is None:
            order = next_order(self._tasks, done=False)
        created = None
        try:
            created = await self.store.create_task(self.date, title, order)
        except PersistenceFailure:
            logger.warning('create on %s failed', self.date)
        await self.resync()
        return created

    # -- UI shell callbacks ----------------------------------------------

    async def on_add_todo(self, text: str, order: Optional[int] = None) -> Optional[Task]:
        try:
            return await self.add_task(text, order)
        except ValidationFailure:
            return None

    async def on_update_todo(self, task_id: str, partial: Dict[str, Any]) -> bool:
        try:
            return await self.update_task(task_id, partial)
        except ValidationFailure:
            return False

    async def on_delete_todo(self, task_id: str) -> bool:
        return await self.delete_task(task_id)

    # -- teardown --------------------------------------------------------

    def close(self) -> None:
        """Detach from the period cache and drop listeners.

        Persistence calls already in flight are not cancelled.
        """
        if self._closed:
            return
        self._closed = True
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._listeners.clear()

    async def __aenter__(self):
        await self.load()
        return self

    async def __aexit__(self, *exc):
        self.close()
