"""smolpaws configuration using pydantic-settings.

Both services (the webhook dispatcher and the runner) read their settings
from the same environment. Every field is optional: a missing webhook secret
or app credential is reported when a request needs it, not at startup.

Allow-lists are comma-separated and compared case-insensitively.
"""

import math
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_AUTO_STOP_MINUTES = 30
DEFAULT_RETRY_DELAY_SECONDS = 30


def parse_allow_list(value: Optional[str]) -> frozenset[str]:
    """Split a comma-separated allow-list into a set of lowercase entries.

    Args:
        value: Raw environment value, e.g. ``"Alice, bob,,"``.

    Returns:
        Lowercased, trimmed entries with empties removed. An empty set
        means "allow all" for that dimension.
    """
    if not value:
        return frozenset()
    return frozenset(
        item.strip().lower() for item in value.split(",") if item.strip()
    )


def parse_auto_stop_minutes(value: object) -> int:
    """Parse the sandbox auto-stop interval.

    Non-numeric, non-finite or negative values fall back to the default of
    30 minutes. Fractional values are truncated toward zero.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return DEFAULT_AUTO_STOP_MINUTES
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return DEFAULT_AUTO_STOP_MINUTES
    if not math.isfinite(parsed) or parsed < 0:
        return DEFAULT_AUTO_STOP_MINUTES
    return math.trunc(parsed)


class SmolpawsSettings(BaseSettings):
    """smolpaws configuration from environment variables.

    Variable names match the field names case-insensitively
    (e.g. ``GITHUB_WEBHOOK_SECRET`` -> ``github_webhook_secret``).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # GitHub App
    # -------------------------------------------------------------------------
    github_webhook_secret: Optional[str] = None
    github_app_id: Optional[str] = None
    github_app_private_key: Optional[str] = None
    github_api_url: str = "https://api.github.com"

    # -------------------------------------------------------------------------
    # Allow-lists (comma-separated)
    # -------------------------------------------------------------------------
    allowed_actors: Optional[str] = None
    allowed_owners: Optional[str] = None
    allowed_repos: Optional[str] = None
    allowed_installations: Optional[str] = None

    # -------------------------------------------------------------------------
    # Runner (execution backend)
    # -------------------------------------------------------------------------
    smolpaws_runner_url: Optional[str] = None
    smolpaws_runner_token: Optional[str] = None
    smolpaws_http_timeout_seconds: float = 120.0

    # -------------------------------------------------------------------------
    # Dispatch queue
    # -------------------------------------------------------------------------
    # "memory" keeps messages in-process; "sqs" uses an Amazon SQS queue
    smolpaws_queue_backend: str = "memory"
    smolpaws_queue_url: Optional[str] = None
    smolpaws_queue_batch_size: int = 10
    smolpaws_queue_wait_seconds: int = 20
    smolpaws_queue_max_deliveries: int = 5
    smolpaws_retry_delay_seconds: int = DEFAULT_RETRY_DELAY_SECONDS

    # -------------------------------------------------------------------------
    # Sandbox provider (Daytona)
    # -------------------------------------------------------------------------
    daytona_api_key: Optional[str] = None
    daytona_api_url: Optional[str] = None
    daytona_target: Optional[str] = None
    smolpaws_daytona_auto_stop_minutes: int = DEFAULT_AUTO_STOP_MINUTES
    smolpaws_sandbox_command_timeout_seconds: float = 1800.0
    smolpaws_agent_packages: str = "openhands-sdk openhands-tools"
    smolpaws_persistence_dir: Optional[str] = None

    # -------------------------------------------------------------------------
    # LLM used by the agent inside the sandbox
    # -------------------------------------------------------------------------
    llm_model: str = "claude-sonnet-4-20250514"
    llm_provider: Optional[str] = "anthropic"
    llm_base_url: Optional[str] = None
    llm_api_key: Optional[str] = None

    # -------------------------------------------------------------------------
    # Server
    # -------------------------------------------------------------------------
    host: str = "0.0.0.0"
    port: int = 8787
    runner_port: int = 8788

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator("smolpaws_daytona_auto_stop_minutes", mode="before")
    @classmethod
    def validate_auto_stop_minutes(cls, v: object) -> int:
        """Fall back to the default for unusable values, truncate the rest."""
        return parse_auto_stop_minutes(v)

    @field_validator("smolpaws_queue_backend")
    @classmethod
    def validate_queue_backend(cls, v: str) -> str:
        """Validate that the queue backend is known."""
        backend = v.strip().lower()
        if backend not in ("memory", "sqs"):
            raise ValueError("smolpaws_queue_backend must be 'memory' or 'sqs'")
        return backend

    @field_validator("smolpaws_queue_batch_size")
    @classmethod
    def validate_batch_size(cls, v: int) -> int:
        """SQS accepts between 1 and 10 messages per receive call."""
        if not 1 <= v <= 10:
            raise ValueError("smolpaws_queue_batch_size must be between 1 and 10")
        return v

    @field_validator("smolpaws_retry_delay_seconds", "smolpaws_queue_max_deliveries")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        """Validate that counters and delays are not negative."""
        if v < 0:
            raise ValueError("value must not be negative")
        return v

    @field_validator("port", "runner_port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate that port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return v

    @property
    def sandbox_enabled(self) -> bool:
        """The sandbox feature is on only when a provider API key is set."""
        return bool(self.daytona_api_key)


def get_settings() -> SmolpawsSettings:
    """Create and return a SmolpawsSettings instance from the environment.

    Raises:
        pydantic.ValidationError: If a field holds an invalid value.
    """
    return SmolpawsSettings()
