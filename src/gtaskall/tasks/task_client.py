# src/gtaskall/tasks/task_client.py

"""
Google Tasks REST client.

Stateless apart from the pooled httpx.AsyncClient: every call takes the access
token explicitly, so one client serves all connected accounts.

Error mapping:
- HTTP 401                      -> UnauthorizedError (token expired/revoked)
- other HTTP errors / transport -> RemoteTaskError (transient, retry next cycle)
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..core.errors import RemoteTaskError, UnauthorizedError
from .notes_codec import decode_task, decode_task_list, encode_task
from .task_models import Task, TaskList

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://tasks.googleapis.com/tasks/v1"

# Guard against a server that keeps handing out page tokens.
_MAX_PAGES = 500


def _error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text[:200] or resp.reason_phrase
    err = data.get("error") if isinstance(data, dict) else None
    if isinstance(err, dict) and err.get("message"):
        return str(err["message"])
    return resp.reason_phrase


class GoogleTasksClient:
    def __init__(
        self,
        *,
        base_url: str = DEFAULT_BASE_URL,
        page_size: int = 100,
        timeout: float = 20.0,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._page_size = max(1, min(100, int(page_size)))
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(timeout=httpx.Timeout(timeout, connect=5.0))

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    # ---- low-level ----

    async def _request(
        self,
        method: str,
        path: str,
        token: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        if not token:
            raise UnauthorizedError("No access token for this account.")

        url = f"{self._base_url}{path}"
        headers = {"Authorization": f"Bearer {token}"}
        try:
            resp = await self._http.request(method, url, params=params, json=json, headers=headers)
        except httpx.HTTPError as e:
            raise RemoteTaskError(f"{method} {path} failed: {e.__class__.__name__}: {e}") from e

        if resp.status_code == 401:
            raise UnauthorizedError(f"{method} {path}: {_error_message(resp)}")
        if resp.status_code >= 400:
            raise RemoteTaskError(
                f"{method} {path} -> HTTP {resp.status_code}: {_error_message(resp)}",
                status_code=resp.status_code,
            )
        if resp.status_code == 204 or not resp.content:
            return {}
        try:
            data = resp.json()
        except ValueError as e:
            raise RemoteTaskError(f"{method} {path}: response is not JSON") from e
        return data if isinstance(data, dict) else {}

    async def _paginate(self, path: str, token: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        """Follow nextPageToken until exhausted; return items from every page in order."""
        items: list[dict[str, Any]] = []
        seen_tokens: set[str] = set()
        page_token: str | None = None

        for _ in range(_MAX_PAGES):
            page_params = dict(params)
            if page_token:
                page_params["pageToken"] = page_token
            data = await self._request("GET", path, token, params=page_params)
            items.extend(i for i in (data.get("items") or []) if isinstance(i, dict))

            page_token = data.get("nextPageToken") or None
            if not page_token:
                return items
            if page_token in seen_tokens:
                logger.warning("Repeated page token on %s; stopping pagination.", path)
                return items
            seen_tokens.add(page_token)

        logger.warning("Pagination limit reached on %s (%d pages).", path, _MAX_PAGES)
        return items

    # ---- public API ----

    async def list_task_lists(self, token: str) -> list[TaskList]:
        raw = await self._paginate("/users/@me/lists", token, {"maxResults": self._page_size})
        return [decode_task_list(i) for i in raw if i.get("id")]

    async def list_tasks(self, token: str, list_id: str) -> list[Task]:
        raw = await self._paginate(
            f"/lists/{list_id}/tasks",
            token,
            {
                "showCompleted": "true",
                "showHidden": "true",
                "maxResults": self._page_size,
            },
        )
        out: list[Task] = []
        seen: set[str] = set()
        for item in raw:
            task_id = item.get("id")
            if not task_id or task_id in seen or item.get("deleted"):
                continue
            seen.add(task_id)
            out.append(decode_task(item, list_id=list_id))
        logger.debug("Fetched %d tasks from list=%s", len(out), list_id)
        return out

    async def patch_task(self, token: str, list_id: str, task_id: str, task: Task) -> Task:
        body = encode_task(task)
        data = await self._request("PATCH", f"/lists/{list_id}/tasks/{task_id}", token, json=body)
        return decode_task(data, list_id=list_id)

    async def insert_task(self, token: str, list_id: str, task: Task) -> Task:
        body = {k: v for k, v in encode_task(task).items() if v is not None and v != ""}
        body.setdefault("title", task.title)
        data = await self._request("POST", f"/lists/{list_id}/tasks", token, json=body)
        return decode_task(data, list_id=list_id)
