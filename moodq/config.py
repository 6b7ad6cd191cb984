"""Centralized configuration for the moodq insights core.

Re-exports everything from moodq.infrastructure.settings so existing imports
continue to work, then adds typed constants for database, LLM budget, records
and cache settings.  Environment variable overrides use safe defaults so the
core starts without extra env configuration.
"""

from __future__ import annotations

import os

from moodq.infrastructure.settings import *  # noqa: F401, F403 - re-export existing

# --- Database ---
DB_CONNECT_TIMEOUT: float = float(os.getenv("MOODQ_DB_CONNECT_TIMEOUT", "30.0"))
DB_RETRY_MAX: int = int(os.getenv("MOODQ_DB_RETRY_MAX", "5"))
DB_RETRY_BASE_DELAY: float = float(os.getenv("MOODQ_DB_RETRY_BASE_DELAY", "0.1"))
DB_RETRY_MAX_DELAY: float = float(os.getenv("MOODQ_DB_RETRY_MAX_DELAY", "2.0"))
DB_RETRY_JITTER: float = float(os.getenv("MOODQ_DB_RETRY_JITTER", "0.1"))

# --- Records ---
MOOD_RECORD_LIMIT: int = 50
JOURNAL_RECORD_LIMIT: int = 30
PROMPT_CONTENT_PREVIEW_CHARS: int = 100

# --- LLM ---
LLM_MAX_OUTPUT_TOKENS: int = int(os.getenv("MOODQ_LLM_MAX_TOKENS", "1024"))
LLM_TEMPERATURE: float = float(os.getenv("MOODQ_LLM_TEMPERATURE", "0.7"))

# --- LLM Budget ---
LLM_USER_DAILY_LIMIT: int = int(os.getenv("MOODQ_LLM_DAILY_LIMIT", "1000"))
RATE_LIMIT_WINDOW_SECONDS: int = 24 * 60 * 60
RATE_LIMIT_MAX_OWNERS: int = 10000
