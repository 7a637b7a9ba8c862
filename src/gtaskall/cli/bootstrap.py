# src/gtaskall/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState (stores, registry, client,
  sync engine, mutator, OAuth),
- restores the last published task collection so views work before the first sync.
"""

from __future__ import annotations

import logging

from ..accounts.oauth import OAuthConnector
from ..accounts.registry import Account, AccountRegistry, RegistryEvent
from ..config import get_settings
from ..core.state import AppState
from ..storage.connection_store import ConnectionStore, load_or_create_key
from ..storage.local_cache import DebouncedCache, LocalCache
from ..sync.runner import BackgroundLoop
from ..sync.sync_engine import CycleReport, SyncEngine
from ..tasks.task_client import GoogleTasksClient
from ..tasks.task_collection import TaskCollection
from ..tasks.task_mutations import TaskMutator

logger = logging.getLogger(__name__)

COLLECTION_CACHE_KEY = "collection"


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.cache_db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.connections_db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.token_key_path.parent.mkdir(parents=True, exist_ok=True)


def restore_collection(collection: TaskCollection, cache) -> int:
    raw = cache.get_json(COLLECTION_CACHE_KEY)
    if not isinstance(raw, dict):
        return 0
    collection.load_json(raw)
    logger.info("Restored %d cached tasks", len(collection))
    return len(collection)


def wire_persistence(collection: TaskCollection, registry: AccountRegistry, cache) -> None:
    """Collection changes go to the debounced cache; removed accounts lose their tasks."""

    def _on_collection_change(c: TaskCollection) -> None:
        cache.put_json(COLLECTION_CACHE_KEY, c.to_json())

    def _on_registry_event(event: RegistryEvent, account: Account) -> None:
        if event == RegistryEvent.REMOVED:
            removed = collection.drop_account(account.id)
            logger.info("Dropped %d tasks of removed account %s", removed, account.email)

    collection.subscribe(_on_collection_change)
    registry.subscribe(_on_registry_event)


def _log_cycle(report: CycleReport) -> None:
    if report.expired:
        logger.warning("Accounts need reconnect: %s", ", ".join(report.expired))


def create_initial_state(*, settings=None, runner: BackgroundLoop | None = None) -> AppState:
    """
    Create AppState from the provided settings.

    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    cache = DebouncedCache(LocalCache(settings.cache_db_path), delay=settings.cache_debounce_seconds)
    connections = ConnectionStore(
        settings.connections_db_path,
        key=load_or_create_key(settings.token_key_path, settings.token_key),
    )
    main_user = settings.main_user_email
    if main_user:
        connections.upsert_user(main_user)
        connections.touch_login(main_user)
    else:
        logger.warning("GTASKALL_MAIN_USER_EMAIL is not set; account tokens will not be persisted")

    registry = AccountRegistry(cache=cache, connections=connections, main_user_email=main_user)
    registry.load()

    collection = TaskCollection()
    restore_collection(collection, cache)
    wire_persistence(collection, registry, cache)

    client = GoogleTasksClient(
        base_url=settings.tasks_api_base_url,
        page_size=settings.tasks_page_size,
        timeout=settings.http_timeout_seconds,
    )
    engine = SyncEngine(
        registry,
        client,
        collection,
        visible_interval=settings.sync_visible_interval_seconds,
        hidden_interval=settings.sync_hidden_interval_seconds,
        soon_debounce=settings.sync_soon_debounce_seconds,
        idle_hidden_seconds=settings.idle_hidden_seconds,
        on_cycle=_log_cycle,
    )
    mutator = TaskMutator(collection, registry, client, sync=engine)
    oauth = OAuthConnector(
        registry,
        client_secrets_path=settings.client_secrets_path,
        scopes=settings.oauth_scopes,
        timeout=settings.http_timeout_seconds,
    )

    state = AppState(
        settings=settings,
        registry=registry,
        collection=collection,
        client=client,
        engine=engine,
        mutator=mutator,
        connections=connections,
        cache=cache,
        oauth=oauth,
        runner=runner,
    )
    return state
