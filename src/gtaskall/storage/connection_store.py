# src/gtaskall/storage/connection_store.py

from __future__ import annotations

import contextlib
import json
import logging
import os
import sqlite3
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class User:
    id: int
    email: str
    name: str
    picture: str
    created_at: float
    last_login: float


@dataclass(frozen=True, slots=True)
class Connection:
    id: int
    main_user_email: str
    account_email: str
    account_name: str
    account_picture: str
    status: str
    created_at: float
    updated_at: float


def load_or_create_key(path: str | Path, explicit: str | None = None) -> bytes:
    """
    Fernet key for token encryption.

    An explicit key (GTASKALL_TOKEN_KEY) wins; otherwise a key file is created
    once next to the databases and kept private on disk.
    """
    if explicit:
        return explicit.encode("ascii")
    p = Path(path)
    if p.exists():
        return p.read_bytes().strip()
    p.parent.mkdir(parents=True, exist_ok=True)
    key = Fernet.generate_key()
    p.write_bytes(key)
    with contextlib.suppress(OSError):
        os.chmod(p, 0o600)
    logger.info("Generated new token encryption key at %s", p)
    return key


class ConnectionStore:
    """
    SQLite store for the main user, connected Google accounts, their tokens,
    per-user settings and per-account LLM API keys.

    Tokens and API keys are stored encrypted with Fernet.

    The schema is migration-safe:
    - create table if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path, *, key: bytes) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._fernet = Fernet(key)
        self._ensure_schema()
        logger.info("ConnectionStore ready db=%s", self._db_path)

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        with contextlib.suppress(sqlite3.DatabaseError):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    email TEXT UNIQUE NOT NULL,
                    name TEXT NOT NULL DEFAULT '',
                    picture TEXT NOT NULL DEFAULT '',
                    created_at REAL NOT NULL,
                    last_login REAL NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS user_connections (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    main_user_email TEXT NOT NULL,
                    account_email TEXT NOT NULL,
                    account_name TEXT NOT NULL DEFAULT '',
                    account_picture TEXT NOT NULL DEFAULT '',
                    created_at REAL NOT NULL,
                    UNIQUE(main_user_email, account_email)
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS account_tokens (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    main_user_email TEXT NOT NULL,
                    account_email TEXT NOT NULL,
                    encrypted_token TEXT NOT NULL,
                    updated_at REAL NOT NULL,
                    UNIQUE(main_user_email, account_email)
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS user_settings (
                    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    setting_key TEXT NOT NULL,
                    setting_value TEXT,
                    updated_at REAL NOT NULL,
                    PRIMARY KEY (user_id, setting_key)
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS account_api_keys (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    main_user_email TEXT NOT NULL,
                    account_email TEXT NOT NULL,
                    encrypted_api_key TEXT NOT NULL,
                    updated_at REAL NOT NULL,
                    UNIQUE(main_user_email, account_email)
                )
                """
            )

            cur.execute("PRAGMA table_info(user_connections)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE user_connections ADD COLUMN {name} {decl}")
                logger.info("ConnectionStore migration: added column user_connections.%s", name)

            add_col("status", "TEXT NOT NULL DEFAULT 'active'")
            add_col("updated_at", "REAL NOT NULL DEFAULT 0")

            conn.commit()
        finally:
            conn.close()

    def _encrypt(self, value: str) -> str:
        return self._fernet.encrypt(value.encode("utf-8")).decode("ascii")

    def _decrypt(self, value: str) -> str | None:
        try:
            return self._fernet.decrypt(value.encode("ascii")).decode("utf-8")
        except InvalidToken:
            logger.warning("Stored secret cannot be decrypted (key changed?)")
            return None

    def _user_id(self, conn: sqlite3.Connection, email: str) -> int:
        row = conn.execute("SELECT id FROM users WHERE email = ?", (email,)).fetchone()
        if row is not None:
            return int(row["id"])
        now = time.time()
        cur = conn.execute(
            "INSERT INTO users(email, name, picture, created_at, last_login) VALUES (?, '', '', ?, ?)",
            (email, now, now),
        )
        if cur.lastrowid is None:
            raise RuntimeError("SQLite did not return lastrowid for users insert")
        return int(cur.lastrowid)

    @staticmethod
    def _row_to_connection(row: sqlite3.Row) -> Connection:
        return Connection(
            id=int(row["id"]),
            main_user_email=row["main_user_email"],
            account_email=row["account_email"],
            account_name=row["account_name"] or "",
            account_picture=row["account_picture"] or "",
            status=row["status"] or "active",
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
        )

    # ---- users ----

    def upsert_user(self, email: str, name: str = "", picture: str = "") -> int:
        if not email or not email.strip():
            raise ValueError("email is required")
        now = time.time()
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO users(email, name, picture, created_at, last_login)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(email) DO UPDATE SET
                    name = excluded.name,
                    picture = excluded.picture,
                    last_login = excluded.last_login
                """,
                (email.strip(), name, picture, now, now),
            )
            conn.commit()
            return self._user_id(conn, email.strip())
        finally:
            conn.close()

    def get_user(self, email: str) -> User | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM users WHERE email = ?", (email,)).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        return User(
            id=int(row["id"]),
            email=row["email"],
            name=row["name"] or "",
            picture=row["picture"] or "",
            created_at=float(row["created_at"]),
            last_login=float(row["last_login"]),
        )

    def touch_login(self, email: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute("UPDATE users SET last_login = ? WHERE email = ?", (time.time(), email))
            conn.commit()
        finally:
            conn.close()

    # ---- connections ----

    def upsert_connection(
        self,
        *,
        main_user_email: str,
        account_email: str,
        account_name: str,
        account_picture: str,
        status: str = "active",
    ) -> int:
        now = time.time()
        conn = self._get_conn()
        try:
            user_id = self._user_id(conn, main_user_email)
            conn.execute(
                """
                INSERT INTO user_connections(
                    user_id, main_user_email, account_email, account_name, account_picture,
                    status, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(main_user_email, account_email) DO UPDATE SET
                    account_name = excluded.account_name,
                    account_picture = excluded.account_picture,
                    status = excluded.status,
                    updated_at = excluded.updated_at
                """,
                (user_id, main_user_email, account_email, account_name, account_picture, status, now, now),
            )
            conn.commit()
            row = conn.execute(
                "SELECT id FROM user_connections WHERE main_user_email = ? AND account_email = ?",
                (main_user_email, account_email),
            ).fetchone()
            return int(row["id"])
        finally:
            conn.close()

    def list_connections(self, main_user_email: str) -> list[Connection]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT * FROM user_connections WHERE main_user_email = ? ORDER BY created_at ASC",
                (main_user_email,),
            ).fetchall()
            return [self._row_to_connection(r) for r in rows]
        finally:
            conn.close()

    def set_connection_status(self, main_user_email: str, account_email: str, status: str) -> None:
        if status not in ("active", "expired"):
            raise ValueError(f"invalid connection status: {status!r}")
        conn = self._get_conn()
        try:
            conn.execute(
                """
                UPDATE user_connections SET status = ?, updated_at = ?
                WHERE main_user_email = ? AND account_email = ?
                """,
                (status, time.time(), main_user_email, account_email),
            )
            conn.commit()
        finally:
            conn.close()
        logger.debug("Connection %s/%s -> %s", main_user_email, account_email, status)

    def delete_connection(self, main_user_email: str, account_email: str) -> None:
        conn = self._get_conn()
        try:
            for table in ("user_connections", "account_tokens", "account_api_keys"):
                conn.execute(
                    f"DELETE FROM {table} WHERE main_user_email = ? AND account_email = ?",
                    (main_user_email, account_email),
                )
            conn.commit()
        finally:
            conn.close()

    # ---- tokens ----

    def put_token(self, main_user_email: str, account_email: str, token: dict[str, Any]) -> None:
        encrypted = self._encrypt(json.dumps(token))
        conn = self._get_conn()
        try:
            user_id = self._user_id(conn, main_user_email)
            conn.execute(
                """
                INSERT INTO account_tokens(user_id, main_user_email, account_email, encrypted_token, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(main_user_email, account_email) DO UPDATE SET
                    encrypted_token = excluded.encrypted_token,
                    updated_at = excluded.updated_at
                """,
                (user_id, main_user_email, account_email, encrypted, time.time()),
            )
            conn.commit()
        finally:
            conn.close()

    def get_token(self, main_user_email: str, account_email: str) -> dict[str, Any] | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT encrypted_token FROM account_tokens WHERE main_user_email = ? AND account_email = ?",
                (main_user_email, account_email),
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        raw = self._decrypt(row["encrypted_token"])
        if raw is None:
            return None
        try:
            val = json.loads(raw)
        except json.JSONDecodeError:
            return None
        return val if isinstance(val, dict) else None

    # ---- settings ----

    def get_settings(self, email: str) -> dict[str, str]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                """
                SELECT s.setting_key, s.setting_value
                FROM user_settings s JOIN users u ON s.user_id = u.id
                WHERE u.email = ?
                """,
                (email,),
            ).fetchall()
            return {r["setting_key"]: r["setting_value"] for r in rows}
        finally:
            conn.close()

    def put_settings(self, email: str, settings: dict[str, str]) -> None:
        now = time.time()
        conn = self._get_conn()
        try:
            user_id = self._user_id(conn, email)
            conn.executemany(
                """
                INSERT INTO user_settings(user_id, setting_key, setting_value, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id, setting_key) DO UPDATE SET
                    setting_value = excluded.setting_value,
                    updated_at = excluded.updated_at
                """,
                [(user_id, k, None if v is None else str(v), now) for k, v in settings.items()],
            )
            conn.commit()
        finally:
            conn.close()

    # ---- LLM API keys ----

    def put_api_key(self, main_user_email: str, account_email: str, api_key: str) -> None:
        if not api_key or not api_key.strip():
            raise ValueError("api_key is required")
        conn = self._get_conn()
        try:
            user_id = self._user_id(conn, main_user_email)
            conn.execute(
                """
                INSERT INTO account_api_keys(user_id, main_user_email, account_email, encrypted_api_key, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(main_user_email, account_email) DO UPDATE SET
                    encrypted_api_key = excluded.encrypted_api_key,
                    updated_at = excluded.updated_at
                """,
                (user_id, main_user_email, account_email, self._encrypt(api_key.strip()), time.time()),
            )
            conn.commit()
        finally:
            conn.close()

    def get_api_key(self, main_user_email: str, account_email: str | None = None) -> str | None:
        """API key stored for an account, falling back to the main user's own entry."""
        candidates = [account_email or main_user_email]
        if candidates[0] != main_user_email:
            candidates.append(main_user_email)
        conn = self._get_conn()
        try:
            for owner in candidates:
                row = conn.execute(
                    "SELECT encrypted_api_key FROM account_api_keys WHERE main_user_email = ? AND account_email = ?",
                    (main_user_email, owner),
                ).fetchone()
                if row is not None:
                    return self._decrypt(row["encrypted_api_key"])
        finally:
            conn.close()
        return None
