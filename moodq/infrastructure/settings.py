"""
Application-wide settings and environment configuration
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Project paths
MOODQ_ROOT = Path(__file__).parent.parent

# Environment
ENV = os.getenv("MOODQ_ENV", "development")

# Inference provider
SUPPORTED_PROVIDERS = ("gemini", "openai", "huggingface", "local")

DEFAULT_MODELS = {
    "gemini": "gemini-2.5-flash-lite",
    "openai": "gpt-3.5-turbo",
    "huggingface": "mistralai/Mistral-7B-Instruct-v0.2",
}

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"
OPENAI_API_BASE = "https://api.openai.com/v1"
HUGGINGFACE_API_BASE = "https://api-inference.huggingface.co/models"

# Cache settings
CACHE_EXPIRY_HOURS = 24
CACHE_SWEEP_INTERVAL_SECONDS = 5 * 60

# Database
DB_PATH = MOODQ_ROOT / "data" / "moodq.db"


@dataclass(frozen=True)
class ProviderSettings:
    """Snapshot of the provider configuration taken at construction time."""

    provider: str
    model: str
    api_key: str | None = None
    endpoint: str | None = None
    huggingface_token: str | None = None
    timeout_seconds: float = 30.0

    @property
    def credential(self) -> str | None:
        if self.provider == "huggingface":
            return self.huggingface_token or self.api_key
        return self.api_key

    @property
    def is_enabled(self) -> bool:
        return self.provider != "local" and bool(self.credential)


def load_provider_settings() -> ProviderSettings:
    """Read provider env vars fresh (dotenv may load after module import)."""
    provider = os.getenv("MOODQ_AI_PROVIDER", "gemini").strip().lower()
    if provider not in SUPPORTED_PROVIDERS:
        provider = "local"

    return ProviderSettings(
        provider=provider,
        model=os.getenv("MOODQ_AI_MODEL") or DEFAULT_MODELS.get(provider, ""),
        api_key=os.getenv("MOODQ_AI_API_KEY") or None,
        endpoint=os.getenv("MOODQ_AI_ENDPOINT") or None,
        huggingface_token=os.getenv("MOODQ_HUGGINGFACE_TOKEN") or None,
        timeout_seconds=float(os.getenv("MOODQ_LLM_TIMEOUT", "30")),
    )
