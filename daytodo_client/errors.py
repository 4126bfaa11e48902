"""Exceptions raised by the day todo client core."""


class DayTodoError(Exception):
    """Base class for client-side errors."""


class NotFound(DayTodoError):
    """A reorder referenced a task id that is not in the current list."""

    def __init__(self, task_id: str):
        super().__init__(f"task {task_id!r} not found in current list")
        self.task_id = task_id


class PersistenceFailure(DayTodoError):
    """A call to the task store failed (transport, validation or conflict)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ValidationFailure(DayTodoError):
    """Input rejected before any store call was made (e.g. empty title)."""


class SessionClosed(DayTodoError):
    """A day session was used after close()."""
