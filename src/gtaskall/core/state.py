# src/gtaskall/core/state.py

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from typing import Any, TypeVar

from ..accounts.oauth import OAuthConnector
from ..accounts.registry import AccountRegistry
from ..storage.local_cache import DebouncedCache
from ..sync.runner import BackgroundLoop
from ..sync.sync_engine import SyncEngine
from ..tasks.task_collection import TaskCollection
from ..tasks.task_models import Task
from ..tasks.task_mutations import TaskMutator
from ..tasks.task_views import ViewOptions
from .ports import ConnectionRepo, TaskStoreClient

T = TypeVar("T")


@dataclass
class AppState:
    settings: Any

    registry: AccountRegistry
    collection: TaskCollection
    client: TaskStoreClient
    engine: SyncEngine
    mutator: TaskMutator

    connections: ConnectionRepo | None = None
    cache: DebouncedCache | None = None
    oauth: OAuthConnector | None = None
    runner: BackgroundLoop | None = None

    view_options: ViewOptions = field(default_factory=ViewOptions)
    # Last tasks printed by the console, so commands can refer to them by number.
    last_listing: list[Task] = field(default_factory=list)

    def run(self, coro: Coroutine[Any, Any, T], timeout: float | None = None) -> T:
        """Execute a coroutine on the app loop (or a throwaway loop when none is running)."""
        if self.runner is not None and self.runner.is_running:
            return self.runner.run(coro, timeout=timeout)
        return asyncio.run(coro)

    def call(self, fn: Callable[..., T], *args: Any) -> T:
        """Run a plain function on the app loop thread (reads of loop-owned state)."""

        async def _invoke() -> T:
            return fn(*args)

        return self.run(_invoke())
