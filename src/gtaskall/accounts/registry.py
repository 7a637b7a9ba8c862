# src/gtaskall/accounts/registry.py

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import StrEnum
from typing import Any

from ..core.errors import AccountNotFoundError
from ..core.ports import ConnectionRepo, KeyValueCache

logger = logging.getLogger(__name__)

CACHE_KEY = "accounts"


class AccountStatus(StrEnum):
    ACTIVE = "active"
    EXPIRED = "expired"

    @classmethod
    def from_db(cls, raw: str | None) -> AccountStatus:
        try:
            return cls(raw or "")
        except ValueError:
            return cls.ACTIVE


class RegistryEvent(StrEnum):
    ADDED = "added"
    EXPIRED = "expired"
    ACTIVATED = "activated"
    REMOVED = "removed"


@dataclass(frozen=True, slots=True)
class Account:
    id: str
    email: str
    name: str = ""
    picture: str = ""
    access_token: str | None = None
    refresh_token: str | None = None
    status: AccountStatus = AccountStatus.ACTIVE

    @property
    def display_name(self) -> str:
        return self.name or self.email or self.id

    @property
    def can_sync(self) -> bool:
        return self.status == AccountStatus.ACTIVE and bool(self.access_token)


RegistryListener = Callable[[RegistryEvent, Account], None]


class AccountRegistry:
    """
    Connected Google accounts.

    Persistence:
    - identity + status go to the local cache (tokens are never written there),
    - status and tokens are mirrored to the connection store (tokens encrypted).

    The registry lives on the event loop thread; the sync engine reads it
    directly at the start of every cycle, so a change is visible on the next tick.
    """

    def __init__(
        self,
        *,
        cache: KeyValueCache | None = None,
        connections: ConnectionRepo | None = None,
        main_user_email: str = "",
    ) -> None:
        self._accounts: dict[str, Account] = {}
        self._listeners: list[RegistryListener] = []
        self._cache = cache
        self._connections = connections
        self._main_user_email = main_user_email

    # ---- observation ----

    def subscribe(self, listener: RegistryListener) -> None:
        self._listeners.append(listener)

    def _emit(self, event: RegistryEvent, account: Account) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, account)
            except Exception:
                logger.exception("Registry listener failed event=%s account=%s", event.value, account.id)

    # ---- reads ----

    def get(self, account_id: str) -> Account:
        try:
            return self._accounts[account_id]
        except KeyError:
            raise AccountNotFoundError(account_id) from None

    def find(self, ref: str) -> Account | None:
        """Look up by id or email (case-insensitive)."""
        if ref in self._accounts:
            return self._accounts[ref]
        needle = ref.strip().lower()
        for a in self._accounts.values():
            if a.email.lower() == needle:
                return a
        return None

    def all_accounts(self) -> list[Account]:
        return list(self._accounts.values())

    def active_accounts(self) -> list[Account]:
        return [a for a in self._accounts.values() if a.can_sync]

    def __contains__(self, account_id: object) -> bool:
        return account_id in self._accounts

    def __len__(self) -> int:
        return len(self._accounts)

    # ---- writes ----

    def add_account(self, account: Account) -> Account:
        """Insert or replace by id."""
        self._accounts[account.id] = account
        logger.info("Account added id=%s email=%s status=%s", account.id, account.email, account.status.value)
        self._mirror_connection(account)
        self._mirror_token(account)
        self._persist()
        self._emit(RegistryEvent.ADDED, account)
        return account

    def mark_expired(self, account_id: str) -> Account:
        """Idempotent: an already-expired account is returned unchanged."""
        acc = self.get(account_id)
        if acc.status == AccountStatus.EXPIRED and acc.access_token is None:
            return acc
        acc = replace(acc, status=AccountStatus.EXPIRED, access_token=None)
        self._accounts[account_id] = acc
        logger.warning("Account expired id=%s email=%s", acc.id, acc.email)
        self._mirror_status(acc)
        self._persist()
        self._emit(RegistryEvent.EXPIRED, acc)
        return acc

    def mark_active(self, account_id: str, new_token: str, *, refresh_token: str | None = None) -> Account:
        if not new_token:
            raise ValueError("new_token is required")
        acc = self.get(account_id)
        acc = replace(
            acc,
            status=AccountStatus.ACTIVE,
            access_token=new_token,
            refresh_token=refresh_token or acc.refresh_token,
        )
        self._accounts[account_id] = acc
        logger.info("Account reconnected id=%s email=%s", acc.id, acc.email)
        self._mirror_status(acc)
        self._mirror_token(acc)
        self._persist()
        self._emit(RegistryEvent.ACTIVATED, acc)
        return acc

    def remove_account(self, account_id: str) -> Account:
        acc = self._accounts.pop(account_id, None)
        if acc is None:
            raise AccountNotFoundError(account_id)
        logger.info("Account removed id=%s email=%s", acc.id, acc.email)
        if self._connections is not None and self._main_user_email:
            try:
                self._connections.delete_connection(self._main_user_email, acc.email)
            except Exception:
                logger.exception("delete_connection failed account=%s", acc.email)
        self._persist()
        self._emit(RegistryEvent.REMOVED, acc)
        return acc

    # ---- persistence ----

    def _persist(self) -> None:
        if self._cache is None:
            return
        payload = [
            {
                "id": a.id,
                "email": a.email,
                "name": a.name,
                "picture": a.picture,
                "status": a.status.value,
            }
            for a in self._accounts.values()
        ]
        try:
            self._cache.put_json(CACHE_KEY, payload)
        except Exception:
            logger.exception("Failed to persist account registry")

    def _mirror_connection(self, acc: Account) -> None:
        if self._connections is None or not self._main_user_email:
            return
        try:
            self._connections.upsert_connection(
                main_user_email=self._main_user_email,
                account_email=acc.email,
                account_name=acc.name,
                account_picture=acc.picture,
                status=acc.status.value,
            )
        except Exception:
            logger.exception("upsert_connection failed account=%s", acc.email)

    def _mirror_status(self, acc: Account) -> None:
        if self._connections is None or not self._main_user_email:
            return
        try:
            self._connections.set_connection_status(self._main_user_email, acc.email, acc.status.value)
        except Exception:
            logger.exception("set_connection_status failed account=%s", acc.email)

    def _mirror_token(self, acc: Account) -> None:
        if self._connections is None or not self._main_user_email or not acc.access_token:
            return
        token: dict[str, Any] = {"access_token": acc.access_token}
        if acc.refresh_token:
            token["refresh_token"] = acc.refresh_token
        try:
            self._connections.put_token(self._main_user_email, acc.email, token)
        except Exception:
            logger.exception("put_token failed account=%s", acc.email)

    def load(self) -> int:
        """
        Restore accounts from the local cache, pulling tokens from the connection store.

        Accounts whose token cannot be found come back as EXPIRED (reconnect needed).
        """
        if self._cache is None:
            return 0
        raw = self._cache.get_json(CACHE_KEY)
        if not isinstance(raw, list):
            return 0

        loaded = 0
        for item in raw:
            if not isinstance(item, dict) or not item.get("id"):
                continue
            acc = Account(
                id=str(item["id"]),
                email=str(item.get("email") or ""),
                name=str(item.get("name") or ""),
                picture=str(item.get("picture") or ""),
                status=AccountStatus.from_db(item.get("status")),
            )
            token = None
            if self._connections is not None and self._main_user_email and acc.email:
                try:
                    token = self._connections.get_token(self._main_user_email, acc.email)
                except Exception:
                    logger.exception("get_token failed account=%s", acc.email)
            if token and token.get("access_token") and acc.status == AccountStatus.ACTIVE:
                acc = replace(
                    acc,
                    access_token=str(token["access_token"]),
                    refresh_token=token.get("refresh_token"),
                )
            else:
                acc = replace(
                    acc,
                    status=AccountStatus.EXPIRED,
                    refresh_token=(token or {}).get("refresh_token"),
                )
            self._accounts[acc.id] = acc
            loaded += 1

        logger.info("Account registry restored: %d accounts", loaded)
        return loaded
