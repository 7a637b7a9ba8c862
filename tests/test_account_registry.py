# tests/test_account_registry.py

from __future__ import annotations

import pytest

from gtaskall.accounts.registry import Account, AccountRegistry, AccountStatus, RegistryEvent
from gtaskall.core.errors import AccountNotFoundError

from .fakes import FakeConnections, MemoryCache

MAIN = "me@example.com"


def test_add_account_mirrors_connection_and_token(registry: AccountRegistry, connections: FakeConnections) -> None:
    registry.add_account(Account(id="a1", email="alice@example.com", access_token="tok", refresh_token="r"))

    assert connections.connections[(MAIN, "alice@example.com")]["status"] == "active"
    assert connections.tokens[(MAIN, "alice@example.com")] == {"access_token": "tok", "refresh_token": "r"}
    assert [a.id for a in registry.active_accounts()] == ["a1"]


def test_cache_never_contains_tokens(registry: AccountRegistry, cache: MemoryCache, alice: Account) -> None:
    payload = cache.data["accounts"]
    assert payload == [
        {"id": "a1", "email": "alice@example.com", "name": "Alice", "picture": "", "status": "active"}
    ]


def test_mark_expired_is_idempotent_and_clears_token(registry: AccountRegistry, connections: FakeConnections, alice: Account) -> None:
    events: list[RegistryEvent] = []
    registry.subscribe(lambda ev, acc: events.append(ev))

    first = registry.mark_expired("a1")
    second = registry.mark_expired("a1")

    assert first.status == AccountStatus.EXPIRED
    assert first.access_token is None
    assert second == first
    assert events == [RegistryEvent.EXPIRED]
    assert registry.active_accounts() == []
    assert connections.connections[(MAIN, "alice@example.com")]["status"] == "expired"


def test_mark_active_restores_sync(registry: AccountRegistry, connections: FakeConnections, alice: Account) -> None:
    registry.mark_expired("a1")
    acc = registry.mark_active("a1", "tok-new")

    assert acc.can_sync
    assert acc.access_token == "tok-new"
    assert connections.tokens[(MAIN, "alice@example.com")]["access_token"] == "tok-new"
    assert connections.connections[(MAIN, "alice@example.com")]["status"] == "active"


def test_mark_active_requires_a_token(registry: AccountRegistry, alice: Account) -> None:
    with pytest.raises(ValueError):
        registry.mark_active("a1", "")


def test_remove_account_notifies_and_deletes_connection(
    registry: AccountRegistry, connections: FakeConnections, alice: Account
) -> None:
    removed: list[str] = []
    registry.subscribe(lambda ev, acc: removed.append(acc.id) if ev == RegistryEvent.REMOVED else None)

    registry.remove_account("a1")

    assert removed == ["a1"]
    assert "a1" not in registry
    assert (MAIN, "alice@example.com") not in connections.connections
    with pytest.raises(AccountNotFoundError):
        registry.get("a1")
    with pytest.raises(AccountNotFoundError):
        registry.remove_account("a1")


def test_find_by_email_is_case_insensitive(registry: AccountRegistry, alice: Account) -> None:
    assert registry.find("ALICE@example.com") == alice
    assert registry.find("a1") == alice
    assert registry.find("nobody@example.com") is None


def test_failing_listener_does_not_break_registry(registry: AccountRegistry) -> None:
    def boom(ev, acc):
        raise RuntimeError("listener bug")

    registry.subscribe(boom)
    registry.add_account(Account(id="x", email="x@example.com", access_token="t"))
    assert "x" in registry


def test_load_restores_tokens_from_connection_store(cache: MemoryCache, connections: FakeConnections) -> None:
    first = AccountRegistry(cache=cache, connections=connections, main_user_email=MAIN)
    first.add_account(Account(id="a1", email="alice@example.com", access_token="tok-a"))
    first.add_account(Account(id="b1", email="bob@example.com", access_token="tok-b"))
    first.mark_expired("b1")
    connections.tokens.pop((MAIN, "bob@example.com"), None)

    restored = AccountRegistry(cache=cache, connections=connections, main_user_email=MAIN)
    assert restored.load() == 2

    assert restored.get("a1").access_token == "tok-a"
    assert restored.get("a1").can_sync
    assert restored.get("b1").status == AccountStatus.EXPIRED
    assert not restored.get("b1").can_sync


def test_load_without_token_comes_back_expired(cache: MemoryCache) -> None:
    cache.put_json("accounts", [{"id": "a1", "email": "alice@example.com", "status": "active"}])
    restored = AccountRegistry(cache=cache, connections=FakeConnections(), main_user_email=MAIN)
    restored.load()
    assert restored.get("a1").status == AccountStatus.EXPIRED
