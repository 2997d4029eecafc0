"""Environment configuration for the rollout controller.

Settings are read from environment variables (and an optional ``.env``
file) and turned into the plain :class:`RolloutConfig` the coordinator
works with. Defaults mirror the health-check budget of the original
deploy and rollback scripts.
"""

from __future__ import annotations

from pydantic import ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError
from .inventory import DEFAULT_HEALTH_URL_TEMPLATE
from .models import ProbeSettings, RolloutConfig


class RolloutSettings(BaseSettings):
    """Rollout settings taken from the environment."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", case_sensitive=False)

    health_check_url: str = DEFAULT_HEALTH_URL_TEMPLATE
    health_check_timeout: float = 5.0
    health_check_attempts: int = 5
    health_check_backoff: float = 10.0
    rollback_health_check_attempts: int = 10
    rollback_health_check_backoff: float = 5.0
    batch_delay: float = 0.0
    auto_rollback: bool = True
    deploy_timeout: float | None = None
    deploy_retries: int = 0
    deploy_command: str | None = None
    revert_command: str | None = None
    rollout_inventory: str = "inventory.json"

    @field_validator("health_check_url")
    @classmethod
    def _http_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("must start with http:// or https://")
        return value

    @field_validator("health_check_attempts", "rollback_health_check_attempts")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be >= 1")
        return value

    @field_validator(
        "health_check_timeout",
        "health_check_backoff",
        "rollback_health_check_backoff",
        "batch_delay",
        "deploy_retries",
    )
    @classmethod
    def _non_negative(cls, value):
        if value < 0:
            raise ValueError("must be >= 0")
        return value

    def to_config(self, batch_size: int = 1) -> RolloutConfig:
        return RolloutConfig(
            batch_size=batch_size,
            probe=ProbeSettings(
                timeout_s=self.health_check_timeout,
                max_attempts=self.health_check_attempts,
                backoff_s=self.health_check_backoff,
            ),
            rollback_probe=ProbeSettings(
                timeout_s=self.health_check_timeout,
                max_attempts=self.rollback_health_check_attempts,
                backoff_s=self.rollback_health_check_backoff,
            ),
            batch_delay_s=self.batch_delay,
            auto_rollback=self.auto_rollback,
            deploy_timeout_s=self.deploy_timeout,
            deploy_retries=self.deploy_retries,
        )


def load_settings(**overrides) -> RolloutSettings:
    """Read settings from the environment, reporting bad values as ConfigurationError."""
    try:
        return RolloutSettings(**overrides)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']).upper()}: {err['msg']}" for err in e.errors()
        )
        raise ConfigurationError(f"invalid configuration: {problems}") from e
