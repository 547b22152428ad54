"""Settings via pydantic-settings with CONDUIT_ env prefix.

Anthropic credentials use validation_alias to read the same unprefixed env
vars (ANTHROPIC_API_KEY, ANTHROPIC_AUTH_TOKEN) that the vendor SDKs use.
"""

import logging

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CONDUIT_", env_file=".env", extra="ignore")

    log_level: str = "info"

    # LLM
    model: str = "claude-sonnet-4-5-20250514"
    max_tokens: int = 4096

    # Anthropic API
    api_base_url: str = "https://api.anthropic.com"
    api_timeout_connect: int = 10  # seconds
    api_timeout_read: int = 120  # seconds
    anthropic_api_key: str = Field("", validation_alias="ANTHROPIC_API_KEY")
    # Dual auth: auth_token (Bearer) takes precedence over api_key (x-api-key)
    anthropic_auth_token: str = Field("", validation_alias="ANTHROPIC_AUTH_TOKEN")

    # Compaction shorthand defaults
    default_window_size: int = 20
    default_keep_last: int = 3

    @model_validator(mode="after")
    def _validate_compaction_defaults(self) -> "Settings":
        if self.default_window_size < 1:
            raise ValueError("default_window_size must be >= 1")
        if self.default_keep_last < 0:
            raise ValueError("default_keep_last must be >= 0")
        return self


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
