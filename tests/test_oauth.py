# tests/test_oauth.py

from __future__ import annotations

import json
from pathlib import Path
from types import SimpleNamespace

import httpx
import pytest
from google.auth.exceptions import RefreshError

from gtaskall.accounts import oauth
from gtaskall.accounts.oauth import OAuthConnector, OAuthError, _load_client_config
from gtaskall.accounts.registry import Account, AccountRegistry, AccountStatus


def _userinfo(email: str, status: int = 200) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        assert str(request.url) == oauth.USERINFO_URL
        if status != 200:
            return httpx.Response(status)
        return httpx.Response(200, json={"id": f"id-{email}", "email": email, "name": email.split("@")[0].title()})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _connector(registry: AccountRegistry, email: str, status: int = 200) -> OAuthConnector:
    return OAuthConnector(
        registry,
        client_secrets_path=Path("client_secret.json"),
        scopes=["https://www.googleapis.com/auth/tasks"],
        http=_userinfo(email, status),
    )


def _consent(token: str, refresh: str | None = "1//r"):
    calls: list[tuple] = []

    def fake(path, scopes, **kw):
        calls.append((path, tuple(scopes)))
        return SimpleNamespace(token=token, refresh_token=refresh)

    return fake, calls


@pytest.mark.asyncio
async def test_connect_adds_new_account(registry: AccountRegistry, monkeypatch: pytest.MonkeyPatch) -> None:
    fake, calls = _consent("tok-new")
    monkeypatch.setattr(oauth, "run_consent", fake)

    acc = await _connector(registry, "carol@example.com").connect()

    assert calls
    assert acc.id == "id-carol@example.com"
    assert acc.name == "Carol"
    assert registry.get(acc.id).access_token == "tok-new"


@pytest.mark.asyncio
async def test_connect_known_account_reactivates_it(
    registry: AccountRegistry, alice: Account, monkeypatch: pytest.MonkeyPatch
) -> None:
    registry.mark_expired("a1")
    fake, _ = _consent("tok-again")
    monkeypatch.setattr(oauth, "run_consent", fake)

    acc = await _connector(registry, "Alice@Example.com").connect()

    assert acc.id == "a1"
    assert acc.status == AccountStatus.ACTIVE
    assert len(registry) == 1


@pytest.mark.asyncio
async def test_reconnect_prefers_silent_refresh(
    registry: AccountRegistry, monkeypatch: pytest.MonkeyPatch
) -> None:
    registry.add_account(Account(id="a1", email="alice@example.com", access_token="old", refresh_token="1//r"))
    registry.mark_expired("a1")

    def refresh(refresh_token, path, scopes):
        assert refresh_token == "1//r"
        return SimpleNamespace(token="tok-refreshed", refresh_token=None)

    def consent(*a, **kw):  # pragma: no cover
        raise AssertionError("consent not expected")

    monkeypatch.setattr(oauth, "refresh_access_token", refresh)
    monkeypatch.setattr(oauth, "run_consent", consent)

    acc = await _connector(registry, "alice@example.com").reconnect("a1")

    assert acc.can_sync
    assert acc.access_token == "tok-refreshed"
    assert acc.refresh_token == "1//r"


@pytest.mark.asyncio
async def test_reconnect_falls_back_to_consent_when_refresh_is_revoked(
    registry: AccountRegistry, monkeypatch: pytest.MonkeyPatch
) -> None:
    registry.add_account(Account(id="a1", email="alice@example.com", access_token="old", refresh_token="1//r"))
    registry.mark_expired("a1")

    def refresh(*a):
        raise RefreshError("invalid_grant")

    fake, calls = _consent("tok-consent")
    monkeypatch.setattr(oauth, "refresh_access_token", refresh)
    monkeypatch.setattr(oauth, "run_consent", fake)

    acc = await _connector(registry, "alice@example.com").reconnect("a1")

    assert len(calls) == 1
    assert acc.access_token == "tok-consent"


@pytest.mark.asyncio
async def test_reconnect_rejects_a_different_google_account(
    registry: AccountRegistry, alice: Account, monkeypatch: pytest.MonkeyPatch
) -> None:
    registry.mark_expired("a1")
    fake, _ = _consent("tok-x")
    monkeypatch.setattr(oauth, "run_consent", fake)

    with pytest.raises(OAuthError):
        await _connector(registry, "mallory@example.com").reconnect("a1")
    assert registry.get("a1").status == AccountStatus.EXPIRED


@pytest.mark.asyncio
async def test_reconnect_non_interactive_without_refresh_token(registry: AccountRegistry, alice: Account) -> None:
    registry.mark_expired("a1")
    with pytest.raises(OAuthError):
        await _connector(registry, "alice@example.com").reconnect("a1", interactive=False)


@pytest.mark.asyncio
async def test_profile_errors(registry: AccountRegistry, monkeypatch: pytest.MonkeyPatch) -> None:
    fake, _ = _consent("tok")
    monkeypatch.setattr(oauth, "run_consent", fake)

    with pytest.raises(OAuthError):
        await _connector(registry, "x@example.com", status=500).connect()
    assert len(registry) == 0


def test_load_client_config(tmp_path: Path) -> None:
    good = tmp_path / "good.json"
    good.write_text(json.dumps({"installed": {"client_id": "cid", "client_secret": "s"}}), encoding="utf-8")
    assert _load_client_config(good)["client_id"] == "cid"

    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"other": {}}), encoding="utf-8")
    with pytest.raises(OAuthError):
        _load_client_config(bad)
    with pytest.raises(OAuthError):
        _load_client_config(tmp_path / "missing.json")
