# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from gtaskall.accounts.registry import Account, AccountRegistry
from gtaskall.core.state import AppState
from gtaskall.sync.sync_engine import SyncEngine
from gtaskall.tasks.task_collection import TaskCollection
from gtaskall.tasks.task_mutations import TaskMutator
from gtaskall.tasks.task_views import ViewOptions

from .fakes import TODAY, FakeClock, FakeConnections, FakeTaskStore, MemoryCache


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and core modules.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="gtaskall-test",
        main_user_email="me@example.com",
        data_dir=tmp_path,
        cache_db_path=tmp_path / "cache.sqlite3",
        connections_db_path=tmp_path / "connections.sqlite3",
        llm_api_key=None,
        llm_base_url="https://llm.invalid/v1",
        llm_models=["m1"],
        extra_headers={},
        summary_language="English",
        window_days=7,
    )


@pytest.fixture()
def store() -> FakeTaskStore:
    return FakeTaskStore()


@pytest.fixture()
def connections() -> FakeConnections:
    return FakeConnections()


@pytest.fixture()
def cache() -> MemoryCache:
    return MemoryCache()


@pytest.fixture()
def registry(cache: MemoryCache, connections: FakeConnections) -> AccountRegistry:
    return AccountRegistry(cache=cache, connections=connections, main_user_email="me@example.com")


@pytest.fixture()
def collection() -> TaskCollection:
    return TaskCollection()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def alice(registry: AccountRegistry) -> Account:
    return registry.add_account(
        Account(id="a1", email="alice@example.com", name="Alice", access_token="tok-a")
    )


@pytest.fixture()
def bob(registry: AccountRegistry) -> Account:
    return registry.add_account(
        Account(id="b1", email="bob@example.com", name="Bob", access_token="tok-b")
    )


@pytest.fixture()
def engine(registry: AccountRegistry, store: FakeTaskStore, collection: TaskCollection, clock: FakeClock) -> SyncEngine:
    return SyncEngine(
        registry,
        store,
        collection,
        visible_interval=15.0,
        hidden_interval=60.0,
        soon_debounce=2.0,
        idle_hidden_seconds=300.0,
        clock=clock,
    )


@pytest.fixture()
def state(
    settings: SimpleNamespace,
    registry: AccountRegistry,
    collection: TaskCollection,
    store: FakeTaskStore,
    engine: SyncEngine,
    connections: FakeConnections,
) -> AppState:
    """AppState wired with deterministic fakes (no background loop, no OAuth)."""
    return AppState(
        settings=settings,
        registry=registry,
        collection=collection,
        client=store,
        engine=engine,
        mutator=TaskMutator(collection, registry, store, sync=engine),
        connections=connections,
        view_options=ViewOptions(today=TODAY),
    )
