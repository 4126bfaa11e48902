from contextlib import asynccontextmanager
from typing import Optional
import logging
import sys

from fastapi import FastAPI, HTTPException, Depends, Query
from pydantic import BaseModel
from sqlmodel import select

from . import config
from .auth import create_access_token, require_login
from .db import async_session, init_db
from .models import Task, User
from .utils import now_utc, validate_date_key, validate_period_key, clean_title

logger = logging.getLogger(__name__)
# Ensure INFO-level messages from this package appear on the server console
# when no handlers are configured (safe fallback for development/testing).
_pkg_logger = logging.getLogger('daytodo')
if not _pkg_logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter('%(asctime)s %(levelname)s:%(name)s: %(message)s')
    handler.setFormatter(formatter)
    _pkg_logger.addHandler(handler)
_pkg_logger.setLevel(logging.DEBUG if config.DEV_MODE else logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # The application should not start without a proper secret in the
    # environment; tokens signed with the fallback are forgeable.
    if not config.SECRET_KEY or config.SECRET_KEY == config.INSECURE_SECRET_KEY:
        raise RuntimeError("SECRET_KEY not set or insecure fallback in use; set the SECRET_KEY environment variable before starting the server")
    await init_db()
    logger.info('starting server using DATABASE_URL=%s', config.DATABASE_URL)
    if config.BASIC_AUTH_USER:
        logger.info('basic auth: env credentials enabled for user=%s', config.BASIC_AUTH_USER)
    yield
    logger.info('server shutting down')


app = FastAPI(lifespan=lifespan)

from .webhooks import router as webhooks_router  # noqa: E402

app.include_router(webhooks_router)


def _serialize_task(t: Task) -> dict:
    return {
        'id': t.id,
        'title': t.title,
        'date': t.date,
        'done': bool(t.done),
        'order': int(t.order),
    }


async def _get_owned_task(sess, task_id: str, current_user: User) -> Task:
    task = await sess.get(Task, task_id)
    if not task:
        raise HTTPException(status_code=404, detail='task not found')
    if task.user_id != current_user.id:
        raise HTTPException(status_code=403, detail='forbidden')
    return task


class TokenRequest(BaseModel):
    username: str
    password: str


class CreateTaskRequest(BaseModel):
    date: str
    title: str
    order: Optional[int] = None


class UpdateTaskRequest(BaseModel):
    title: Optional[str] = None
    date: Optional[str] = None
    done: Optional[bool] = None
    order: Optional[int] = None


class ToggleTaskRequest(BaseModel):
    done: bool


@app.get('/health')
async def health():
    return {'ok': True}


@app.post('/auth/token')
async def login_for_access_token(req: TokenRequest):
    from .auth import authenticate_user
    user = await authenticate_user(req.username, req.password)
    if not user:
        raise HTTPException(status_code=401, detail='Incorrect username or password')
    access_token = create_access_token(data={'sub': user.username})
    return {'access_token': access_token, 'token_type': 'bearer'}


@app.get('/tasks')
async def list_tasks(month: str = Query(...), current_user: User = Depends(require_login)):
    """Return every task of the caller whose date falls in `month` (YYYY-MM)."""
    try:
        validate_period_key(month)
    except ValueError:
        raise HTTPException(status_code=400, detail='invalid month, expected YYYY-MM')
    async with async_session() as sess:
        q = await sess.exec(
            select(Task)
            .where(Task.user_id == current_user.id)
            .where(Task.date.like(f'{month}-%'))
            .order_by(Task.date.asc(), Task.order.asc())
        )
        return [_serialize_task(t) for t in q.all()]


async def _next_order(sess, user_id: int, date: str) -> int:
    """Max order among the pending tasks of (user, date) plus one, or 0."""
    q = await sess.exec(
        select(Task.order)
        .where(Task.user_id == user_id)
        .where(Task.date == date)
        .where(Task.done == False)  # noqa: E712
        .order_by(Task.order.desc())
        .limit(1)
    )
    top = q.first()
    return (int(top) + 1) if top is not None else 0


@app.post('/tasks')
async def create_task(payload: CreateTaskRequest, current_user: User = Depends(require_login)):
    try:
        title = clean_title(payload.title, config.MAX_TITLE_LENGTH)
    except ValueError:
        raise HTTPException(status_code=400, detail='title required')
    try:
        date = validate_date_key(payload.date)
    except ValueError:
        raise HTTPException(status_code=400, detail='invalid date, expected YYYY-MM-DD')
    async with async_session() as sess:
        order = payload.order
        if order is None:
            order = await _next_order(sess, current_user.id, date)
        task = Task(title=title, date=date, done=False, order=order, user_id=current_user.id)
        sess.add(task)
        await sess.commit()
        await sess.refresh(task)
        logger.info('create_task: id=%s date=%s order=%s user=%s', task.id, date, order, current_user.id)
        return _serialize_task(task)


@app.get('/tasks/{task_id}')
async def get_task(task_id: str, current_user: User = Depends(require_login)):
    async with async_session() as sess:
        task = await _get_owned_task(sess, task_id, current_user)
        return _serialize_task(task)


@app.patch('/tasks/{task_id}')
async def update_task(task_id: str, payload: UpdateTaskRequest, current_user: User = Depends(require_login)):
    """Apply a partial update. Accepts any subset of {title, date, done, order}.

    An empty body is accepted and changes nothing.
    """
    fields = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
    if not fields:
        return {'ok': True}
    if 'title' in fields:
        try:
            fields['title'] = clean_title(fields['title'], config.MAX_TITLE_LENGTH)
        except ValueError:
            raise HTTPException(status_code=400, detail='title required')
    if 'date' in fields:
        try:
            validate_date_key(fields['date'])
        except ValueError:
            raise HTTPException(status_code=400, detail='invalid date, expected YYYY-MM-DD')
    async with async_session() as sess:
        task = await _get_owned_task(sess, task_id, current_user)
        for key, value in fields.items():
            setattr(task, key, value)
        task.modified_at = now_utc()
        sess.add(task)
        await sess.commit()
    logger.debug('update_task: id=%s fields=%s', task_id, sorted(fields))
    return {'ok': True}


@app.post('/tasks/{task_id}/toggle')
async def toggle_task(task_id: str, payload: ToggleTaskRequest, current_user: User = Depends(require_login)):
    async with async_session() as sess:
        task = await _get_owned_task(sess, task_id, current_user)
        task.done = bool(payload.done)
        task.modified_at = now_utc()
        sess.add(task)
        await sess.commit()
        return {'id': task.id, 'done': task.done}


@app.delete('/tasks/{task_id}')
async def delete_task(task_id: str, current_user: User = Depends(require_login)):
    async with async_session() as sess:
        task = await _get_owned_task(sess, task_id, current_user)
        await sess.delete(task)
        await sess.commit()
    logger.info('delete_task: id=%s user=%s', task_id, current_user.id)
    return {'ok': True}


@app.get('/calendar/{month}/summary')
async def calendar_summary(month: str, current_user: User = Depends(require_login)):
    """Per-day counts for the month grid.

    has_active marks days with at least one pending task; all_completed marks
    days whose tasks are all done.
    """
    try:
        validate_period_key(month)
    except ValueError:
        raise HTTPException(status_code=400, detail='invalid month, expected YYYY-MM')
    async with async_session() as sess:
        q = await sess.exec(
            select(Task.date, Task.done)
            .where(Task.user_id == current_user.id)
            .where(Task.date.like(f'{month}-%'))
        )
        rows = q.all()
    days: dict[str, dict] = {}
    for date, done in rows:
        d = days.setdefault(date, {'pending': 0, 'completed': 0})
        if done:
            d['completed'] += 1
        else:
            d['pending'] += 1
    for d in days.values():
        d['has_active'] = d['pending'] > 0
        d['all_completed'] = d['pending'] == 0 and d['completed'] > 0
    return {'month': month, 'days': dict(sorted(days.items()))}
