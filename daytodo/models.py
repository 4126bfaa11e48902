from typing import Optional
from datetime import datetime
import uuid

from sqlmodel import SQLModel, Field

from .utils import now_utc


def _new_task_id() -> str:
    return str(uuid.uuid4())


class User(SQLModel, table=True):
    """Application user.

    password_hash is empty for users provisioned through the webhook; those
    users can only authenticate once a password is set for them.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, sa_column_kwargs={"unique": True})
    password_hash: Optional[str] = None
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    avatar: Optional[str] = None
    # id assigned by an external identity provider (webhook provisioning)
    external_id: Optional[str] = Field(default=None, index=True, sa_column_kwargs={"unique": True})
    is_admin: bool = Field(default=False)
    created_at: datetime | None = Field(default_factory=now_utc)


class Task(SQLModel, table=True):
    """A todo pinned to a single calendar day.

    `date` is stored as a YYYY-MM-DD string so month queries are prefix
    matches. `order` ranks the task inside its (date, done) partition; it is
    not required to be contiguous, clients renumber densely on reorder.
    """
    id: str = Field(default_factory=_new_task_id, primary_key=True)
    title: str
    date: str = Field(index=True)
    done: bool = Field(default=False)
    order: int = Field(default=0)
    user_id: Optional[int] = Field(default=None, foreign_key="user.id", index=True)
    created_at: datetime | None = Field(default_factory=now_utc)
    modified_at: datetime | None = Field(default_factory=now_utc)
