# tests/fakes.py

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone

from gtaskall.core.errors import UnauthorizedError
from gtaskall.core.ports import ChatMessage
from gtaskall.tasks.task_models import Task, TaskList


class FakeLLMClient:
    """
    Deterministic LLM client for unit tests.

    - Captures calls for assertions
    - Yields a predefined text as a single chunk
    """

    def __init__(self, next_text: str = "ok") -> None:
        self.next_text = next_text
        self.calls: list[tuple[list[ChatMessage], str]] = []

    def stream_chat(self, messages: list[ChatMessage], system_prompt: str) -> Iterable[str]:
        self.calls.append((messages, system_prompt))
        yield self.next_text


def make_task(task_id: str, title: str = "", list_id: str = "L1", **kw) -> Task:
    return Task(id=task_id, title=title or task_id, list_id=list_id, **kw)


class FakeTaskStore:
    """
    In-memory TaskStoreClient keyed by access token (one token per account).

    - `fail[token]` makes every call for that token raise the given error
    - `gate` (if set) blocks list_task_lists until it is released
    - `patch_error` / `insert_error` make writes fail
    Returned tasks carry no account identity, like the real client.
    """

    def __init__(self) -> None:
        self.lists: dict[str, list[TaskList]] = {}
        self.tasks: dict[tuple[str, str], list[Task]] = {}
        self.fail: dict[str, Exception] = {}
        self.gate: asyncio.Event | None = None
        self.patch_error: Exception | None = None
        self.insert_error: Exception | None = None
        self.calls: list[tuple[str, str]] = []
        self._next_id = 0

    def add(self, token: str, list_id: str, tasks: list[Task], title: str = "") -> None:
        self.lists.setdefault(token, []).append(TaskList(id=list_id, title=title or list_id))
        self.tasks[(token, list_id)] = [replace(t, list_id=list_id) for t in tasks]

    def _check(self, token: str) -> None:
        if not token:
            raise UnauthorizedError()
        err = self.fail.get(token)
        if err is not None:
            raise err

    async def list_task_lists(self, token: str) -> list[TaskList]:
        self.calls.append(("lists", token))
        if self.gate is not None:
            await self.gate.wait()
        self._check(token)
        return list(self.lists.get(token, []))

    async def list_tasks(self, token: str, list_id: str) -> list[Task]:
        self.calls.append(("tasks", f"{token}:{list_id}"))
        self._check(token)
        return list(self.tasks.get((token, list_id), []))

    async def patch_task(self, token: str, list_id: str, task_id: str, task: Task) -> Task:
        self.calls.append(("patch", task_id))
        await asyncio.sleep(0)
        self._check(token)
        if self.patch_error is not None:
            raise self.patch_error
        return replace(
            task,
            account_id="",
            account_email="",
            account_name="",
            account_picture="",
            updated=datetime(2024, 3, 20, 12, 0, tzinfo=timezone.utc),
        )

    async def insert_task(self, token: str, list_id: str, task: Task) -> Task:
        self.calls.append(("insert", task.title))
        await asyncio.sleep(0)
        self._check(token)
        if self.insert_error is not None:
            raise self.insert_error
        self._next_id += 1
        return replace(
            task,
            id=f"srv-{self._next_id}",
            account_id="",
            account_email="",
            account_name="",
            account_picture="",
        )


@dataclass(slots=True)
class FakeSync:
    """Records request_sync_soon() calls from the mutation layer."""

    requests: int = 0

    def request_sync_soon(self) -> None:
        self.requests += 1


@dataclass(slots=True)
class FakeClock:
    now: float = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass(slots=True)
class FakeConnections:
    """In-memory ConnectionRepo."""

    connections: dict[tuple[str, str], dict] = field(default_factory=dict)
    tokens: dict[tuple[str, str], dict] = field(default_factory=dict)
    api_keys: dict[tuple[str, str], str] = field(default_factory=dict)

    def upsert_connection(
        self,
        *,
        main_user_email: str,
        account_email: str,
        account_name: str,
        account_picture: str,
        status: str = "active",
    ) -> int:
        self.connections[(main_user_email, account_email)] = {
            "name": account_name,
            "picture": account_picture,
            "status": status,
        }
        return len(self.connections)

    def set_connection_status(self, main_user_email: str, account_email: str, status: str) -> None:
        self.connections.setdefault((main_user_email, account_email), {})["status"] = status

    def delete_connection(self, main_user_email: str, account_email: str) -> None:
        self.connections.pop((main_user_email, account_email), None)
        self.tokens.pop((main_user_email, account_email), None)

    def put_token(self, main_user_email: str, account_email: str, token: dict) -> None:
        self.tokens[(main_user_email, account_email)] = dict(token)

    def get_token(self, main_user_email: str, account_email: str) -> dict | None:
        return self.tokens.get((main_user_email, account_email))

    def get_api_key(self, main_user_email: str, account_email: str | None = None) -> str | None:
        return self.api_keys.get((main_user_email, account_email or main_user_email))


class MemoryCache:
    """KeyValueCache backed by a dict."""

    def __init__(self) -> None:
        self.data: dict[str, object] = {}

    def get_json(self, key: str):
        return self.data.get(key)

    def put_json(self, key: str, value) -> None:
        self.data[key] = value


TODAY = date(2024, 3, 20)
