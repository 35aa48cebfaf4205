"""Runtime settings read from the environment (and a .env file, if present)."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field

ROOT = Path(__file__).parent.parent


class Settings(BaseModel):
    environment: str = "production"

    # LLM backend
    provider_url: str = "http://localhost:5001"
    api_key: str = ""
    provider_format: Literal["koboldcpp", "openai"] = "koboldcpp"
    model: str = ""
    llm_timeout: float = Field(default=120.0, gt=0)

    # Orchestrator
    max_retries: int = Field(default=2, ge=0)
    backoff: Literal["none", "linear", "exponential"] = "none"
    backoff_base: float = Field(default=1.0, ge=0)

    # Rate limiting; None means "use the environment's profile"
    rate_limit_max_requests: int | None = Field(default=None, gt=0)
    rate_limit_window_ms: int | None = Field(default=None, gt=0)

    # Fallback content
    fallback_history_size: int = Field(default=5, gt=0)
    fallback_content_path: Path | None = None

    # Auto-save
    autosave_interval_seconds: float = Field(default=300.0, gt=0)
    autosave_debounce_seconds: float = Field(default=0.5, ge=0)
    data_dir: Path = ROOT / "data"


_ENV_KEYS: dict[str, str] = {
    "environment": "NARRATOR_ENV",
    "provider_url": "LLM_PROVIDER_URL",
    "api_key": "LLM_API_KEY",
    "provider_format": "LLM_PROVIDER_FORMAT",
    "model": "LLM_MODEL",
    "llm_timeout": "LLM_TIMEOUT",
    "max_retries": "NARRATOR_MAX_RETRIES",
    "backoff": "NARRATOR_BACKOFF",
    "backoff_base": "NARRATOR_BACKOFF_BASE",
    "rate_limit_max_requests": "RATE_LIMIT_MAX_REQUESTS",
    "rate_limit_window_ms": "RATE_LIMIT_WINDOW_MS",
    "fallback_history_size": "FALLBACK_HISTORY_SIZE",
    "fallback_content_path": "NARRATOR_FALLBACK_CONTENT",
    "autosave_interval_seconds": "AUTOSAVE_INTERVAL_SECONDS",
    "autosave_debounce_seconds": "AUTOSAVE_DEBOUNCE_SECONDS",
    "data_dir": "DATA_DIR",
}


def load_settings(env_file: Path | None = None) -> Settings:
    """Build Settings from environment variables.

    Values already in the process environment win over the .env file.
    Empty variables are treated as unset.
    """
    load_dotenv(env_file or ROOT / ".env")
    values = {
        field: os.getenv(var)
        for field, var in _ENV_KEYS.items()
        if os.getenv(var)
    }
    return Settings.model_validate(values)
