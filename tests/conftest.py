import os
import sys
import pathlib
import tempfile
import warnings

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlmodel import select

# Ensure a secure SECRET_KEY and an isolated database are configured before
# the daytodo package is imported; both are read at import time.
os.environ.setdefault('SECRET_KEY', 'test-secret-key-for-unit-tests')
os.environ.setdefault(
    'DATABASE_URL',
    'sqlite+aiosqlite:///' + os.path.join(tempfile.gettempdir(), f'daytodo_test_{os.getpid()}.db'),
)
from sqlalchemy.exc import SAWarning
warnings.filterwarnings("ignore", category=SAWarning)

# Reduce SQLAlchemy logger verbosity during tests
import logging as _logging
for _name in ('sqlalchemy', 'sqlalchemy.engine', 'sqlalchemy.pool', 'sqlmodel'):
    _logging.getLogger(_name).setLevel(_logging.ERROR)

# ensure project root is on PYTHONPATH for test runs
ROOT = pathlib.Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from daytodo.main import app  # noqa: E402
from daytodo.db import init_db, drop_db, async_session  # noqa: E402
from daytodo.models import User  # noqa: E402
from daytodo.auth import pwd_context  # noqa: E402
from daytodo_client.models import Task  # noqa: E402
from daytodo_client.errors import PersistenceFailure  # noqa: E402


async def _ensure_user(username: str, password: str) -> User:
    async with async_session() as sess:
        q = await sess.exec(select(User).where(User.username == username))
        u = q.first()
        if not u:
            u = User(username=username, password_hash=pwd_context.hash(password))
            sess.add(u)
            await sess.commit()
            await sess.refresh(u)
        return u


async def _authed_client(username: str, password: str) -> AsyncClient:
    await _ensure_user(username, password)
    ac = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
    resp = await ac.post("/auth/token", json={"username": username, "password": password})
    assert resp.status_code == 200, resp.text
    ac.headers.update({"Authorization": f"Bearer {resp.json()['access_token']}"})
    return ac


@pytest_asyncio.fixture
async def ensure_db():
    # every test starts from empty tables
    await drop_db()
    await init_db()


@pytest_asyncio.fixture
async def client(ensure_db):
    """AsyncClient against the ASGI app, authenticated as `testuser`."""
    ac = await _authed_client("testuser", "testpass")
    try:
        yield ac
    finally:
        await ac.aclose()


@pytest_asyncio.fixture
async def other_client(ensure_db):
    """A second authenticated user, for ownership checks."""
    ac = await _authed_client("otheruser", "otherpass")
    try:
        yield ac
    finally:
        await ac.aclose()


@pytest_asyncio.fixture
async def anon_client(ensure_db):
    ac = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
    try:
        yield ac
    finally:
        await ac.aclose()


class FakeTaskStore:
    """In-memory stand-in for TaskStoreClient.

    `fail_updates` holds task ids whose update_task call raises
    PersistenceFailure; `fail_all` makes every write fail. Every call is
    recorded in `calls`.
    """

    def __init__(self, tasks=None):
        self.tasks = {t.id: t.model_copy() for t in (tasks or [])}
        self.calls = []
        self.fail_updates = set()
        self.fail_all = False
        self.fail_fetch = False
        self.fetch_count = 0
        self._next_id = 1

    async def fetch_tasks_for_period(self, period_key):
        self.calls.append(('fetch', period_key))
        self.fetch_count += 1
        if self.fail_fetch:
            raise PersistenceFailure('fetch failed')
        return [t.model_copy() for t in sorted(self.tasks.values(), key=lambda t: (t.date, t.order)) if t.date.startswith(period_key + '-')]

    async def create_task(self, date, title, order=None):
        self.calls.append(('create', date, title, order))
        if self.fail_all:
            raise PersistenceFailure('create failed')
        tid = f'new-{self._next_id}'
        self._next_id += 1
        task = Task(id=tid, title=title, date=date, done=False, order=order or 0)
        self.tasks[tid] = task
        return task.model_copy()

    async def update_task(self, task_id, partial):
        self.calls.append(('update', task_id, dict(partial)))
        if self.fail_all or task_id in self.fail_updates:
            raise PersistenceFailure(f'update of {task_id} failed')
        if task_id not in self.tasks:
            raise PersistenceFailure('not found', status_code=404)
        self.tasks[task_id] = self.tasks[task_id].model_copy(update=partial)

    async def delete_task(self, task_id):
        self.calls.append(('delete', task_id))
        if self.fail_all:
            raise PersistenceFailure('delete failed')
        self.tasks.pop(task_id, None)

    def updates(self):
        return [c for c in self.calls if c[0] == 'update']


def make_tasks(rows, date='2025-03-14'):
    """Build tasks from (id, done, order) tuples."""
    return [Task(id=i, title=f'task {i}', date=date, done=done, order=order) for i, done, order in rows]

