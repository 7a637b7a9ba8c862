# src/gtaskall/accounts/oauth.py

"""
Google OAuth for connected accounts.

- connect(): browser consent (InstalledAppFlow), then profile lookup, then registry.
- reconnect(): silent refresh with the stored refresh token; falls back to consent.

google-auth is blocking (requests transport), so those calls run in a worker
thread via asyncio.to_thread; the registry is only touched on the loop thread.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

import httpx
from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow

from ..core.errors import GTaskAllError, UnauthorizedError
from .registry import Account, AccountRegistry, AccountStatus

logger = logging.getLogger(__name__)

USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"


class OAuthError(GTaskAllError):
    """Consent or refresh could not produce a usable access token."""


@dataclass(frozen=True, slots=True)
class Profile:
    id: str
    email: str
    name: str = ""
    picture: str = ""


def _load_client_config(path: Path) -> dict[str, Any]:
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise OAuthError(f"OAuth client secrets not found: {path}") from None
    except json.JSONDecodeError as e:
        raise OAuthError(f"OAuth client secrets are not valid JSON: {path}") from e
    cfg = raw.get("installed") or raw.get("web")
    if not isinstance(cfg, dict) or not cfg.get("client_id"):
        raise OAuthError(f"Unsupported client secrets format: {path}")
    return cfg


def run_consent(client_secrets_path: Path, scopes: Sequence[str], *, port: int = 0) -> Credentials:
    """Blocking: opens the browser and waits for the redirect on a local port."""
    if not Path(client_secrets_path).exists():
        raise OAuthError(f"OAuth client secrets not found: {client_secrets_path}")
    flow = InstalledAppFlow.from_client_secrets_file(str(client_secrets_path), list(scopes))
    creds = flow.run_local_server(port=port, prompt="consent", access_type="offline")
    if not creds or not creds.token:
        raise OAuthError("Consent finished without an access token")
    return creds


def refresh_access_token(refresh_token: str, client_secrets_path: Path, scopes: Sequence[str]) -> Credentials:
    """Blocking: exchange a refresh token for a new access token."""
    cfg = _load_client_config(client_secrets_path)
    creds = Credentials(
        token=None,
        refresh_token=refresh_token,
        token_uri=cfg.get("token_uri") or DEFAULT_TOKEN_URI,
        client_id=cfg["client_id"],
        client_secret=cfg.get("client_secret"),
        scopes=list(scopes),
    )
    creds.refresh(Request())
    return creds


async def fetch_profile(http: httpx.AsyncClient, access_token: str) -> Profile:
    try:
        resp = await http.get(USERINFO_URL, headers={"Authorization": f"Bearer {access_token}"})
    except httpx.HTTPError as e:
        raise OAuthError(f"userinfo request failed: {e}") from e
    if resp.status_code == 401:
        raise UnauthorizedError("userinfo rejected the new access token")
    if resp.status_code >= 400:
        raise OAuthError(f"userinfo failed: HTTP {resp.status_code}")
    data = resp.json()
    email = str(data.get("email") or "")
    if not email:
        raise OAuthError("userinfo returned no email (missing userinfo.email scope?)")
    return Profile(
        id=str(data.get("id") or email),
        email=email,
        name=str(data.get("name") or ""),
        picture=str(data.get("picture") or ""),
    )


class OAuthConnector:
    def __init__(
        self,
        registry: AccountRegistry,
        *,
        client_secrets_path: Path,
        scopes: Sequence[str],
        http: httpx.AsyncClient | None = None,
        timeout: float = 20.0,
    ) -> None:
        self._registry = registry
        self._client_secrets_path = Path(client_secrets_path)
        self._scopes = list(scopes)
        self._http = http or httpx.AsyncClient(timeout=timeout)
        self._owns_http = http is None

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def connect(self) -> Account:
        """Interactive consent for a new (or already known) Google account."""
        creds = await asyncio.to_thread(run_consent, self._client_secrets_path, self._scopes)
        profile = await fetch_profile(self._http, creds.token)

        existing = self._registry.find(profile.email)
        if existing is not None:
            logger.info("Consent for known account %s; reactivating", profile.email)
            return self._registry.mark_active(existing.id, creds.token, refresh_token=creds.refresh_token)

        return self._registry.add_account(
            Account(
                id=profile.id,
                email=profile.email,
                name=profile.name,
                picture=profile.picture,
                access_token=creds.token,
                refresh_token=creds.refresh_token,
                status=AccountStatus.ACTIVE,
            )
        )

    async def reconnect(self, account_id: str, *, interactive: bool = True) -> Account:
        """Restore an expired account. Silent refresh first, consent as a fallback."""
        acc = self._registry.get(account_id)

        if acc.refresh_token:
            try:
                creds = await asyncio.to_thread(
                    refresh_access_token, acc.refresh_token, self._client_secrets_path, self._scopes
                )
            except RefreshError as e:
                logger.warning("Silent refresh failed for %s: %s", acc.email, e)
            except OAuthError as e:
                logger.warning("Silent refresh unavailable for %s: %s", acc.email, e)
            else:
                logger.info("Access token refreshed for %s", acc.email)
                return self._registry.mark_active(acc.id, creds.token, refresh_token=creds.refresh_token)

        if not interactive:
            raise OAuthError(f"{acc.email} needs interactive consent")

        creds = await asyncio.to_thread(run_consent, self._client_secrets_path, self._scopes)
        profile = await fetch_profile(self._http, creds.token)
        if profile.email.lower() != acc.email.lower():
            raise OAuthError(f"Signed in as {profile.email}, expected {acc.email}")
        return self._registry.mark_active(acc.id, creds.token, refresh_token=creds.refresh_token)
