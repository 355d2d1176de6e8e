"""Application configuration from environment variables."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic_settings import BaseSettings

if TYPE_CHECKING:
    from canvaspilot.models.context import BudgetConfig


class Settings(BaseSettings):
    canvaspilot_env: str = "development"
    canvaspilot_log_level: str = "debug"

    # CORS
    cors_origins: list[str] = ["http://localhost:3000"]

    # Provider credentials -- a primary key plus optional rotation keys
    gemini_api_key: str = ""
    gemini_api_keys: list[str] = []
    openrouter_api_key: str = ""
    openrouter_api_keys: list[str] = []
    anthropic_api_key: str = ""

    # Model rotation, highest priority first
    gemini_models: list[str] = [
        "gemini-2.5-flash",
        "gemini-2.0-flash",
        "gemini-1.5-flash",
    ]
    openrouter_models: list[str] = [
        "google/gemini-2.0-flash-exp:free",
        "google/gemini-exp-1206:free",
    ]
    anthropic_model: str = "claude-haiku-4-5-20251001"

    openrouter_referer: str = "http://localhost:3000"
    openrouter_title: str = "canvaspilot"

    stream_timeout_s: float = 120.0
    rate_limit_fallback_s: float = 60.0

    # Context budget
    budget_max_tokens: int = 8000
    budget_reserve_tokens: int = 1000
    budget_message_priority: float = 0.4
    budget_element_priority: float = 0.35
    budget_summary_priority: float = 0.25

    # Streaming sessions
    session_event_buffer: int = 100
    session_max_age_s: float = 3600.0
    heartbeat_interval_s: float = 15.0

    # Image search
    pexels_api_key: str = ""
    pixabay_api_key: str = ""

    # Empty = keep session records in memory only
    data_dir: str = ""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    def credentials(self, provider: str) -> list[str]:
        """Ordered, de-duplicated credential list for a provider."""
        if provider == "gemini":
            raw = [self.gemini_api_key, *self.gemini_api_keys]
        elif provider == "openrouter":
            raw = [self.openrouter_api_key, *self.openrouter_api_keys]
        elif provider == "anthropic":
            raw = [self.anthropic_api_key]
        else:
            raise ValueError(f"Unknown provider: {provider}")

        keys: list[str] = []
        for key in raw:
            key = key.strip()
            if key and key not in keys:
                keys.append(key)
        return keys

    def budget_config(self) -> BudgetConfig:
        from canvaspilot.models.context import BudgetConfig

        return BudgetConfig(
            max_tokens=self.budget_max_tokens,
            reserve_for_response_tokens=self.budget_reserve_tokens,
            message_priority=self.budget_message_priority,
            element_priority=self.budget_element_priority,
            summary_priority=self.budget_summary_priority,
        )


settings = Settings()
