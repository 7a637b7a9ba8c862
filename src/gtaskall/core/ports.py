# src/gtaskall/core/ports.py

"""
Ports (interfaces) used by the core.

The sync engine and mutation layer depend on Protocols instead of concrete
implementations, so the Google client / storage / LLM provider can be swapped
for fakes in tests.
"""

from __future__ import annotations

from typing import Any, Iterable, Protocol

from ..tasks.task_models import Task, TaskList

ChatMessage = dict[str, str]
# OpenAI-style chat messages: {"role": "...", "content": "..."}.


class TaskStoreClient(Protocol):
    """Remote task store (Google Tasks). Every call may raise UnauthorizedError / RemoteTaskError."""

    async def list_task_lists(self, token: str) -> list[TaskList]: ...

    async def list_tasks(self, token: str, list_id: str) -> list[Task]: ...

    async def patch_task(self, token: str, list_id: str, task_id: str, task: Task) -> Task: ...

    async def insert_task(self, token: str, list_id: str, task: Task) -> Task: ...


class LLMClient(Protocol):
    """Chat completion client (OpenAI/OpenRouter-compatible)."""

    def stream_chat(self, messages: list[ChatMessage], system_prompt: str) -> Iterable[str]: ...


class KeyValueCache(Protocol):
    def get_json(self, key: str) -> Any | None: ...

    def put_json(self, key: str, value: Any) -> None: ...


class ConnectionRepo(Protocol):
    """Durable mirror of account connections (status + tokens)."""

    def upsert_connection(
            self,
            *,
            main_user_email: str,
            account_email: str,
            account_name: str,
            account_picture: str,
            status: str = "active",
    ) -> int: ...

    def set_connection_status(self, main_user_email: str, account_email: str, status: str) -> None: ...

    def delete_connection(self, main_user_email: str, account_email: str) -> None: ...

    def put_token(self, main_user_email: str, account_email: str, token: dict[str, Any]) -> None: ...

    def get_token(self, main_user_email: str, account_email: str) -> dict[str, Any] | None: ...


class SyncRequester(Protocol):
    """What the mutation layer needs from the sync engine."""

    def request_sync_soon(self) -> None: ...
