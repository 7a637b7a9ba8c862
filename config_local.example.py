# config_local.example.py

"""
Example local overrides.

Usage:
  1) Copy this file to `config_local.py`
  2) Adjust values for your machine
  3) Never commit `config_local.py` (it is gitignored)

Prefer `.env` for secrets. This file should contain only safe overrides.
"""

# Example: owner of the connected accounts
# MAIN_USER_EMAIL = "me@example.com"

# Example: change model order for AI summaries
# LLM_MODELS = [
#     "qwen/qwen-2.5-72b-instruct:free",
# ]

# Example: override the local data directory (prefer env vars)
# from pathlib import Path
# DATA_DIR = Path(".local/gtaskall")
