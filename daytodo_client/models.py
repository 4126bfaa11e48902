from typing import Any, Dict

from pydantic import BaseModel, ConfigDict


class Task(BaseModel):
    """Client-side copy of a server task."""
    id: str
    title: str
    date: str
    done: bool = False
    order: int = 0


class TaskUpdate(BaseModel):
    """New (order, done) for one task, as produced by the ordering engine.

    Both fields are always sent together so a cross-list move is never
    persisted as a done-only or order-only change.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    order: int
    done: bool

    def as_partial(self) -> Dict[str, Any]:
        return {'order': self.order, 'done': self.done}


def sort_key(task: Task):
    """Display order: pending before completed, then by rank."""
    return (task.done, task.order)
