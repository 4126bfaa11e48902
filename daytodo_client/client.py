"""Task store client: async HTTP access to the day todo server."""

import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from .config import Config
from .errors import PersistenceFailure
from .models import Task

logger = logging.getLogger(__name__)


class TaskStoreClient:
    """Thin wrapper over the server's task endpoints.

    Every failure (transport error or non-2xx response) is raised as
    PersistenceFailure; callers decide how to recover.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        username: Optional[str] = None,
        password: Optional[str] = None,
        http: Optional[httpx.AsyncClient] = None,
        config: Optional[Config] = None,
    ):
        cfg = config or Config()
        self.base_url = base_url or cfg.server_url
        username = username if username is not None else cfg.username
        password = password if password is not None else cfg.password
        auth = httpx.BasicAuth(username, password) if username and password else None
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(base_url=self.base_url, timeout=cfg.request_timeout)
        if auth is not None:
            self.http.auth = auth

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self.http.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            resp = await self.http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.warning('%s %s failed: %s', method, url, e)
            raise PersistenceFailure(f'{method} {url} failed: {e}') from e
        if resp.status_code >= 400:
            try:
                body = resp.json()
            except ValueError:
                body = None
            detail = body.get('detail') if isinstance(body, dict) else resp.text
            logger.warning('%s %s returned %s: %s', method, url, resp.status_code, detail)
            raise PersistenceFailure(f'{method} {url} returned {resp.status_code}: {detail}', status_code=resp.status_code)
        return resp

    def _decode(self, resp: httpx.Response, parse=None):
        """Parsed JSON body of a successful response, optionally validated.

        A body that is not JSON or does not validate raises PersistenceFailure.
        """
        try:
            data = resp.json()
            return parse(data) if parse is not None else data
        except (ValueError, TypeError, ValidationError) as e:
            logger.warning('%s %s: unreadable response body: %s', resp.request.method, resp.request.url, e)
            raise PersistenceFailure(f'unreadable response from {resp.request.url}: {e}', status_code=resp.status_code) from e

    async def login(self, username: str, password: str) -> bool:
        """Exchange credentials for a bearer token used on later requests."""
        try:
            resp = await self._request('POST', '/auth/token', json={'username': username, 'password': password})
        except PersistenceFailure:
            return False
        try:
            body = self._decode(resp)
        except PersistenceFailure:
            return False
        token = body.get('access_token') if isinstance(body, dict) else None
        if not token:
            return False
        self.http.auth = None
        self.http.headers['Authorization'] = f'Bearer {token}'
        return True

    async def fetch_tasks_for_period(self, period_key: str) -> List[Task]:
        """All tasks whose date falls in `period_key` (YYYY-MM)."""
        resp = await self._request('GET', '/tasks', params={'month': period_key})
        return self._decode(resp, _parse_tasks)

    async def create_task(self, date: str, title: str, order: Optional[int] = None) -> Task:
        payload: Dict[str, Any] = {'date': date, 'title': title}
        if order is not None:
            payload['order'] = order
        resp = await self._request('POST', '/tasks', json=payload)
        return self._decode(resp, Task.model_validate)

    async def update_task(self, task_id: str, partial: Dict[str, Any]) -> None:
        if not partial:
            return
        await self._request('PATCH', f'/tasks/{task_id}', json=partial)

    async def toggle_task(self, task_id: str, done: bool) -> None:
        await self._request('POST', f'/tasks/{task_id}/toggle', json={'done': done})

    async def delete_task(self, task_id: str) -> None:
        await self._request('DELETE', f'/tasks/{task_id}')

    async def calendar_summary(self, period_key: str) -> Dict[str, Any]:
        resp = await self._request('GET', f'/calendar/{period_key}/summary')
        return self._decode(resp, _parse_summary)


def _parse_tasks(data) -> List[Task]:
    if not isinstance(data, list):
        raise TypeError(f"expected a list of tasks, got {type(data).__name__}")
    return [Task.model_validate(item) for item in data]


def _parse_summary(data) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise TypeError(f"expected an object, got {type(data).__name__}")
    return data
