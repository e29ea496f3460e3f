# holysheets/config.py
"""
HolySheets Configuration — Single source of truth via Pydantic Settings.

Resolution order: CLI flags > env vars (HOLYSHEETS_*) > .env file > defaults.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class HolySheetsConfig(BaseSettings):
    """Central configuration for HolySheets."""

    model_config = SettingsConfigDict(
        env_prefix="HOLYSHEETS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Remote LLM ---
    provider: Literal["litellm", "openai_compatible", "custom"] = "litellm"
    lm: str = "gemini/gemini-1.5-flash"
    api_key: str = ""
    api_base: str = ""
    lm_temperature: float = 0.1
    lm_max_tokens: int = 2048
    # Upper bound for a single remote generation; expiry feeds the retry path.
    request_timeout: float = 120.0
    custom_endpoint_url: str = ""

    # --- Agent loop ---
    max_retries: int = 2
    history_turns: int = 6
    sample_rows: int = 5

    # --- Local (on-device) model ---
    local_model_path: Path = Field(
        default_factory=lambda: Path.home()
        / ".holysheets"
        / "models"
        / "qwen2.5-coder-1.5b-instruct-q4_k_m.gguf"
    )
    local_chat_template: Literal["chatml", "llama3"] = "chatml"
    local_n_threads: int = 4
    local_n_ctx: int = 2048
    local_max_tokens: int = 1024
    local_temperature: float = 0.1

    # --- Paths ---
    home_dir: Path = Field(default_factory=lambda: Path.home() / ".holysheets")

    @property
    def log_dir(self) -> Path:
        return self.home_dir / "logs"

    @property
    def models_dir(self) -> Path:
        return self.home_dir / "models"


@lru_cache(maxsize=1)
def get_config() -> HolySheetsConfig:
    """Return the global config singleton."""
    return HolySheetsConfig()
