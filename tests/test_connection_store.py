# tests/test_connection_store.py

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest
from cryptography.fernet import Fernet

from gtaskall.storage.connection_store import ConnectionStore, load_or_create_key

MAIN = "me@example.com"


@pytest.fixture()
def store(tmp_path: Path) -> ConnectionStore:
    return ConnectionStore(tmp_path / "connections.sqlite3", key=Fernet.generate_key())


def test_load_or_create_key_is_stable(tmp_path: Path) -> None:
    path = tmp_path / "keys" / "token.key"
    first = load_or_create_key(path)
    assert path.exists()
    assert load_or_create_key(path) == first
    Fernet(first)

    explicit = Fernet.generate_key().decode("ascii")
    assert load_or_create_key(path, explicit) == explicit.encode("ascii")


def test_users_upsert_and_touch(store: ConnectionStore) -> None:
    uid = store.upsert_user(MAIN, "Me", "pic")
    assert store.upsert_user(MAIN, "Me again") == uid

    user = store.get_user(MAIN)
    assert user is not None
    assert user.name == "Me again"
    store.touch_login(MAIN)
    assert store.get_user(MAIN).last_login >= user.last_login

    with pytest.raises(ValueError):
        store.upsert_user("  ")


def test_connections_lifecycle(store: ConnectionStore) -> None:
    store.upsert_connection(main_user_email=MAIN, account_email="a@x.com", account_name="A", account_picture="")
    store.upsert_connection(main_user_email=MAIN, account_email="b@x.com", account_name="B", account_picture="")
    store.set_connection_status(MAIN, "a@x.com", "expired")

    conns = {c.account_email: c for c in store.list_connections(MAIN)}
    assert conns["a@x.com"].status == "expired"
    assert conns["b@x.com"].status == "active"

    with pytest.raises(ValueError):
        store.set_connection_status(MAIN, "a@x.com", "paused")

    store.delete_connection(MAIN, "a@x.com")
    assert [c.account_email for c in store.list_connections(MAIN)] == ["b@x.com"]


def test_tokens_are_encrypted_at_rest(store: ConnectionStore, tmp_path: Path) -> None:
    store.put_token(MAIN, "a@x.com", {"access_token": "ya29.secret", "refresh_token": "1//r"})

    assert store.get_token(MAIN, "a@x.com") == {"access_token": "ya29.secret", "refresh_token": "1//r"}
    assert store.get_token(MAIN, "other@x.com") is None

    conn = sqlite3.connect(str(tmp_path / "connections.sqlite3"))
    (raw,) = conn.execute("SELECT encrypted_token FROM account_tokens").fetchone()
    conn.close()
    assert "ya29.secret" not in raw


def test_token_unreadable_with_another_key(store: ConnectionStore, tmp_path: Path) -> None:
    store.put_token(MAIN, "a@x.com", {"access_token": "t"})
    other = ConnectionStore(tmp_path / "connections.sqlite3", key=Fernet.generate_key())
    assert other.get_token(MAIN, "a@x.com") is None


def test_settings_roundtrip(store: ConnectionStore) -> None:
    store.put_settings(MAIN, {"summary_language": "German", "window_days": "5"})
    store.put_settings(MAIN, {"window_days": "7"})
    assert store.get_settings(MAIN) == {"summary_language": "German", "window_days": "7"}


def test_api_key_falls_back_to_main_user(store: ConnectionStore) -> None:
    assert store.get_api_key(MAIN) is None

    store.put_api_key(MAIN, MAIN, "sk-main")
    assert store.get_api_key(MAIN) == "sk-main"
    assert store.get_api_key(MAIN, "a@x.com") == "sk-main"

    store.put_api_key(MAIN, "a@x.com", " sk-a ")
    assert store.get_api_key(MAIN, "a@x.com") == "sk-a"

    with pytest.raises(ValueError):
        store.put_api_key(MAIN, MAIN, "")
