"""Ordering engine: pure functions behind drag-and-drop reordering.

A day's tasks form two partitions, pending and completed, each ranked by
`order`. Any move handled here re-ranks the partitions it touches densely
as 0..n-1, so stale or sparse ranks never survive a reorder.
"""
import logging
from typing import Dict, List, Sequence, Tuple

from .errors import NotFound
from .models import Task, TaskUpdate, sort_key

logger = logging.getLogger(__name__)

# Drop zone ids for the two list containers. Dropping on a zone means
# "append to that list", which is the only position when the list is empty.
PENDING_ZONE = 'pending'
COMPLETED_ZONE = 'completed'
ZONES = {PENDING_ZONE: False, COMPLETED_ZONE: True}


def partition(tasks: Sequence[Task]) -> Tuple[List[Task], List[Task]]:
    """Split tasks into (pending, completed), each sorted by order.

    The sort is stable, so equal ranks keep their incoming list position.
    """
    pending = sorted((t for t in tasks if not t.done), key=lambda t: t.order)
    completed = sorted((t for t in tasks if t.done), key=lambda t: t.order)
    return pending, completed


def _index_of(items: List[Task], task_id: str) -> int:
    for i, t in enumerate(items):
        if t.id == task_id:
            return i
    return -1


def _rank(items: List[Task], done: bool) -> Dict[str, Tuple[int, bool]]:
    return {t.id: (i, done) for i, t in enumerate(items)}


def compute_move(tasks: Sequence[Task], active_id: str, target_id: str) -> List[TaskUpdate]:
    """Updates needed to drop `active_id` onto `target_id`.

    `target_id` is either another task of the day or one of the zone ids.
    Only tasks whose order or done value changes get an update. Raises
    NotFound, without side effects, when either id is unknown.
    """
    by_id = {t.id: t for t in tasks}
    active = by_id.get(active_id)
    if active is None:
        raise NotFound(active_id)
    if target_id == active_id:
        return []

    if target_id in ZONES:
        target_done = ZONES[target_id]
    else:
        target = by_id.get(target_id)
        if target is None:
            raise NotFound(target_id)
        target_done = target.done

    pending, completed = partition(tasks)
    lists = {False: pending, True: completed}
    source = lists[active.done]
    dest = lists[target_done]

    if active.done == target_done:
        old_index = _index_of(source, active_id)
        if target_id in ZONES:
            new_index = len(source) - 1
        else:
            new_index = _index_of(source, target_id)
        moved = list(source)
        moved.insert(new_index, moved.pop(old_index))
        ranks = _rank(moved, target_done)
    else:
        remaining = [t for t in source if t.id != active_id]
        if target_id in ZONES:
            new_index = len(dest)
        else:
            new_index = _index_of(dest, target_id)
        inserted = list(dest)
        inserted.insert(new_index, active)
        # source and destination are re-ranked independently
        ranks = _rank(remaining, active.done)
        ranks.update(_rank(inserted, target_done))

    updates = []
    for task_id, (order, done) in ranks.items():
        current = by_id[task_id]
        if current.order != order or current.done != done:
            updates.append(TaskUpdate(id=task_id, order=order, done=done))
    logger.debug('compute_move %s -> %s: %d updates', active_id, target_id, len(updates))
    return updates


def apply_updates(tasks: Sequence[Task], updates: Sequence[TaskUpdate]) -> List[Task]:
    """Return copies of `tasks` with `updates` applied, in display order.

    Updates for ids that are not in `tasks` are ignored. The input list and
    its tasks are left untouched.
    """
    changes = {u.id: u for u in updates}
    out = []
    for t in tasks:
        u = changes.get(t.id)
        out.append(t.model_copy(update={'order': u.order, 'done': u.done}) if u else t.model_copy())
    out.sort(key=sort_key)
    return out


def next_order(tasks: Sequence[Task], done: bool = False) -> int:
    """Rank for a task appended to the given partition: max order + 1, or 0."""
    orders = [t.order for t in tasks if t.done == done]
    return (max(orders) + 1) if orders else 0
