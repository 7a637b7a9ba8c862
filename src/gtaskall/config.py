# src/gtaskall/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets required at import time.
- Components receive Settings explicitly; get_settings() is only for the composition root.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

ENV_PREFIX = "GTASKALL"

DEFAULT_SCOPES = [
    "openid",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
    "https://www.googleapis.com/auth/tasks",
]


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


# A local .env never overrides variables already set in the environment.
load_dotenv(override=False)


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    parts = [p.strip() for p in raw.replace(",", " ").split() if p.strip()]
    return parts


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str
    main_user_email: str

    # ---- Google OAuth / Tasks API ----
    client_secrets_path: Path
    oauth_scopes: List[str]
    tasks_api_base_url: str
    tasks_page_size: int
    http_timeout_seconds: float

    # ---- Sync scheduler ----
    sync_visible_interval_seconds: float
    sync_hidden_interval_seconds: float
    sync_soon_debounce_seconds: float
    idle_hidden_seconds: float
    window_days: int

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    cache_db_path: Path
    connections_db_path: Path
    token_key_path: Path
    token_key: Optional[str]
    cache_debounce_seconds: float

    # ---- LLM (OpenAI-compatible) ----
    llm_api_key: Optional[str]
    llm_base_url: str
    llm_models: List[str]
    summary_language: str
    extra_headers: Dict[str, str]

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "gtaskall")
        log_level = _env(_k("LOG_LEVEL"), "INFO")
        main_user_email = _env(_k("MAIN_USER_EMAIL"), "").strip()

        client_secrets_path = _env_path(_k("CLIENT_SECRETS_PATH"), Path("credentials.json"))
        oauth_scopes = _env_list(_k("OAUTH_SCOPES"), DEFAULT_SCOPES)
        tasks_api_base_url = _env(_k("TASKS_API_BASE_URL"), "https://tasks.googleapis.com/tasks/v1")
        tasks_page_size = max(1, min(100, _env_int(_k("TASKS_PAGE_SIZE"), 100)))
        http_timeout_seconds = _env_float(_k("HTTP_TIMEOUT_SECONDS"), 20.0)

        sync_visible_interval_seconds = _env_float(_k("SYNC_VISIBLE_INTERVAL_SECONDS"), 15.0)
        sync_hidden_interval_seconds = _env_float(_k("SYNC_HIDDEN_INTERVAL_SECONDS"), 60.0)
        sync_soon_debounce_seconds = _env_float(_k("SYNC_SOON_DEBOUNCE_SECONDS"), 2.0)
        idle_hidden_seconds = _env_float(_k("IDLE_HIDDEN_SECONDS"), 300.0)
        window_days = max(1, _env_int(_k("WINDOW_DAYS"), 7))

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/gtaskall"))
        cache_db_path = _env_path(_k("CACHE_DB_PATH"), data_dir / "cache.sqlite3")
        connections_db_path = _env_path(_k("CONNECTIONS_DB_PATH"), data_dir / "connections.sqlite3")
        token_key_path = _env_path(_k("TOKEN_KEY_PATH"), data_dir / "token.key")
        token_key = _first_env(_k("TOKEN_KEY"), default=None)
        cache_debounce_seconds = _env_float(_k("CACHE_DEBOUNCE_SECONDS"), 0.1)

        llm_api_key = _first_env(_k("LLM_API_KEY"), "OPENAI_API_KEY", default=None)
        llm_base_url = _env(_k("LLM_BASE_URL"), "https://openrouter.ai/api/v1")
        llm_models = _env_list(
            _k("LLM_MODELS"),
            [
                "google/gemini-flash-1.5",
                "qwen/qwen-2.5-72b-instruct:free",
            ],
        )
        summary_language = _env(_k("SUMMARY_LANGUAGE"), "English")

        extra_headers = {
            "HTTP-Referer": _env(_k("HTTP_REFERER"), "https://example.com"),
            "X-Title": _env(_k("APP_TITLE"), app_name),
        }

        return Settings(
            app_name=app_name,
            log_level=log_level,
            main_user_email=main_user_email,
            client_secrets_path=client_secrets_path,
            oauth_scopes=oauth_scopes,
            tasks_api_base_url=tasks_api_base_url,
            tasks_page_size=tasks_page_size,
            http_timeout_seconds=http_timeout_seconds,
            sync_visible_interval_seconds=sync_visible_interval_seconds,
            sync_hidden_interval_seconds=sync_hidden_interval_seconds,
            sync_soon_debounce_seconds=sync_soon_debounce_seconds,
            idle_hidden_seconds=idle_hidden_seconds,
            window_days=window_days,
            data_dir=data_dir,
            cache_db_path=cache_db_path,
            connections_db_path=connections_db_path,
            token_key_path=token_key_path,
            token_key=token_key,
            cache_debounce_seconds=cache_debounce_seconds,
            llm_api_key=llm_api_key,
            llm_base_url=llm_base_url,
            llm_models=llm_models,
            summary_language=summary_language,
            extra_headers=extra_headers,
        )


def apply_local_overrides(settings: Settings, local: Any) -> Settings:
    """
    Apply the safe overrides a `config_local` module may define.

    DATA_DIR also moves the stores and the token key that live under it,
    unless their own env var pins them elsewhere.
    """
    changes: Dict[str, Any] = {}
    if hasattr(local, "MAIN_USER_EMAIL"):
        changes["main_user_email"] = str(local.MAIN_USER_EMAIL)
    if hasattr(local, "LLM_MODELS"):
        changes["llm_models"] = list(local.LLM_MODELS)
    if hasattr(local, "DATA_DIR"):
        data_dir = Path(local.DATA_DIR).expanduser()
        changes["data_dir"] = data_dir
        changes["cache_db_path"] = _env_path(_k("CACHE_DB_PATH"), data_dir / "cache.sqlite3")
        changes["connections_db_path"] = _env_path(_k("CONNECTIONS_DB_PATH"), data_dir / "connections.sqlite3")
        changes["token_key_path"] = _env_path(_k("TOKEN_KEY_PATH"), data_dir / "token.key")
    return replace(settings, **changes) if changes else settings


SETTINGS = Settings.from_env()

# ---- Optional local overrides (never committed) ----
# Prefer .env for secrets; use config_local.py only for safe overrides.
try:
    import config_local as _config_local  # type: ignore
except ImportError:
    pass
else:
    SETTINGS = apply_local_overrides(SETTINGS, _config_local)


def get_settings() -> Settings:
    return SETTINGS
