"""Application settings."""

import os
import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel

logger = logging.getLogger(__name__)

ENV_PREFIX = "ENHANCER_"


class Settings(BaseModel):
    """Application configuration settings."""

    # LLM Provider settings
    llm_provider: str = "openai"  # "openai" or "anthropic"
    llm_model: Optional[str] = None  # Override default model

    # API Keys
    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None

    # Persistence
    db_path: str = "data/enhancer.db"
    counter_backend: str = "sqlite"  # "sqlite" or "redis"
    redis_url: str = "redis://127.0.0.1:6379/0"

    # Daily quotas
    anon_daily_limit: int = 10
    user_daily_limit: int = 20
    ip_daily_limit_anon: int = 30
    ip_daily_limit_user: int = 60

    # Context assembly
    context_max_chars: int = 2000
    context_max_turns: int = 6

    # Synopsis refresh queue
    queue_backend: str = "redis"  # "redis" or "stub" (in-process only)
    synopsis_delay_seconds: float = 5.0
    synopsis_max_retries: int = 2
    synopsis_min_backoff_ms: int = 2000
    synopsis_max_backoff_ms: int = 60000
    worker_concurrency: int = 2

    # Logging
    verbose: bool = False

    def __init__(self, **data):
        # Auto-load API keys from environment if not provided
        if "openai_api_key" not in data or data["openai_api_key"] is None:
            data["openai_api_key"] = os.environ.get("OPENAI_API_KEY")

        if "anthropic_api_key" not in data or data["anthropic_api_key"] is None:
            data["anthropic_api_key"] = os.environ.get("ANTHROPIC_API_KEY")

        super().__init__(**data)

    def get_llm_api_key(self) -> Optional[str]:
        """Get the API key for the configured LLM provider."""
        if self.llm_provider == "openai":
            return self.openai_api_key
        elif self.llm_provider == "anthropic":
            return self.anthropic_api_key
        return None


def _env_overrides() -> dict:
    """Collect ENHANCER_* environment variables that match a settings field."""
    overrides = {}
    for name in Settings.model_fields:
        value = os.environ.get(ENV_PREFIX + name.upper())
        if value is not None:
            overrides[name] = value
    return overrides


def load_settings(config_path: Optional[str] = None, **overrides) -> Settings:
    """
    Build settings from an optional YAML file, the environment and overrides.

    Precedence (lowest to highest): YAML file, ENHANCER_* variables,
    keyword overrides.

    Args:
        config_path: Optional path to a YAML config file

    Returns:
        Validated Settings
    """
    data = {}
    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
            logger.info(f"Loaded settings from {path}")
        else:
            logger.warning(f"Config file not found: {path}")

    data.update(_env_overrides())
    data.update({k: v for k, v in overrides.items() if v is not None})
    return Settings(**data)
