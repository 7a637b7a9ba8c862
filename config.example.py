# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
Do NOT commit real secrets. Use:
- .env (local, gitignored)
- config_local.py (local safe overrides, gitignored)

This file exists to make the repo self-documenting even without opening .env.example.
"""

ENV_VARS = {
    # App / logging
    "GTASKALL_APP_NAME": "App display name (default: gtaskall).",
    "GTASKALL_LOG_LEVEL": "Console logging level (default: INFO). The file log is always DEBUG.",
    "GTASKALL_MAIN_USER_EMAIL": "Owner of the connected accounts; tokens are stored under this user.",
    # Google OAuth / Tasks API
    "GTASKALL_CLIENT_SECRETS_PATH": "OAuth client secrets JSON (default: credentials.json).",
    "GTASKALL_OAUTH_SCOPES": "Comma/space separated scopes (default: openid, userinfo.email/profile, tasks).",
    "GTASKALL_TASKS_API_BASE_URL": "Tasks API base URL (default: https://tasks.googleapis.com/tasks/v1).",
    "GTASKALL_TASKS_PAGE_SIZE": "maxResults per page, 1..100 (default: 100).",
    "GTASKALL_HTTP_TIMEOUT_SECONDS": "HTTP timeout for Google calls (default: 20).",
    # Sync scheduler
    "GTASKALL_SYNC_VISIBLE_INTERVAL_SECONDS": "Poll interval while visible (default: 15).",
    "GTASKALL_SYNC_HIDDEN_INTERVAL_SECONDS": "Poll interval while hidden/idle (default: 60).",
    "GTASKALL_SYNC_SOON_DEBOUNCE_SECONDS": "Delay of the sync requested after a local change (default: 2).",
    "GTASKALL_IDLE_HIDDEN_SECONDS": "Console inactivity after which the app counts as hidden (default: 300).",
    "GTASKALL_WINDOW_DAYS": "Days shown by /week (default: 7).",
    # Paths (gitignored)
    "GTASKALL_DATA_DIR": "Local data directory (default: .local/gtaskall).",
    "GTASKALL_CACHE_DB_PATH": "Local cache SQLite path (default: <data_dir>/cache.sqlite3).",
    "GTASKALL_CONNECTIONS_DB_PATH": "Connection store SQLite path (default: <data_dir>/connections.sqlite3).",
    "GTASKALL_TOKEN_KEY_PATH": "Fernet key file (default: <data_dir>/token.key).",
    "GTASKALL_TOKEN_KEY": "Fernet key itself (overrides the key file).",
    "GTASKALL_CACHE_DEBOUNCE_SECONDS": "Write-behind delay of the local cache (default: 0.1).",
    # LLM (OpenAI-compatible)
    "GTASKALL_LLM_API_KEY": "API key for summaries (falls back to OPENAI_API_KEY, then /apikey).",
    "GTASKALL_LLM_BASE_URL": "OpenAI-compatible base URL (default: https://openrouter.ai/api/v1).",
    "GTASKALL_LLM_MODELS": "Comma/space separated list of models to try in order.",
    "GTASKALL_SUMMARY_LANGUAGE": "Language of the AI summary (default: English).",
    "GTASKALL_HTTP_REFERER": "Optional OpenRouter metadata header.",
    "GTASKALL_APP_TITLE": "Optional OpenRouter metadata header title.",
}
