# src/config.py
"""Application configuration using pydantic-settings.

Provides a centralized Settings class for all environment variables.
Supports both GOOGLE_API_KEY and GEMINI_API_KEY for backward compatibility.
"""

from decimal import Decimal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# USD per 1M tokens, (input, output)
DEFAULT_PRICE_TABLE: dict[str, dict[str, Decimal]] = {
    "gemini-2.5-flash": {"input": Decimal("0.30"), "output": Decimal("2.50")},
    "gemini-2.5-flash-lite": {"input": Decimal("0.10"), "output": Decimal("0.40")},
    "gemini-2.5-pro": {"input": Decimal("1.25"), "output": Decimal("10.00")},
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings are loaded from .env file and environment variables.
    Environment variables take precedence over .env file values.
    Complex values (PRICE_TABLE) are parsed as JSON.
    """

    # Google Gemini API (supports both GOOGLE_API_KEY and GEMINI_API_KEY)
    google_api_key: str = ""
    gemini_api_key: str = ""  # Backward compatibility alias

    # Gemini Model Configuration
    gemini_model: str = "gemini-2.5-flash"

    # Slack Integration
    slack_bot_token: str = ""
    slack_app_token: str = ""

    # Cost admission control
    cost_ceiling: Decimal = Decimal("0.10")
    chars_per_token: int = Field(default=4, ge=1)
    projected_output_tokens: int = Field(default=1024, ge=0)
    price_table: dict[str, dict[str, Decimal]] = Field(
        default_factory=lambda: dict(DEFAULT_PRICE_TABLE)
    )

    # Upstream retry policy
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_initial_backoff: float = Field(default=1.0, gt=0)
    retry_max_backoff: float = Field(default=30.0, gt=0)

    # Slack interaction deadlines (seconds)
    ack_deadline_seconds: float = 3.0
    trigger_validity_seconds: float = 3.0

    # Logging / Observability
    log_level: str = "INFO"
    log_json: bool = True
    logfire_token: str = ""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore unknown env vars
        case_sensitive=False,  # Allow case-insensitive env var names
    )

    @field_validator("price_table")
    @classmethod
    def _check_price_table(
        cls, value: dict[str, dict[str, Decimal]]
    ) -> dict[str, dict[str, Decimal]]:
        for model_id, prices in value.items():
            missing = {"input", "output"} - set(prices)
            if missing:
                raise ValueError(
                    f"price_table[{model_id!r}] missing {sorted(missing)}"
                )
        return value

    @property
    def api_key(self) -> str:
        """Get API key with fallback support.

        Returns GOOGLE_API_KEY if set, otherwise falls back to GEMINI_API_KEY.

        Returns:
            The API key string, or empty string if neither is set.
        """
        return self.google_api_key or self.gemini_api_key


# Singleton instance - import this in your code
settings = Settings()
