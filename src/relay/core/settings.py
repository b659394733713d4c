"""Runtime settings for relay.

Every tunable in the execution core (storage location, concurrency
ceilings, scheduler cadence, per-capability guard limits, strictness of
variable resolution) is read once from the environment into
``RelaySettings`` and handed to the composition root.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.

    - **Pydantic validation:** Type-checked at startup, not mid-run
    - **Environment-driven:** ``RELAY_*`` env vars and ``.env`` files
    - **Sensible defaults:** Works out of the box with a local SQLite file

Examples:
    >>> from relay.core.settings import get_settings
    >>> settings = get_settings()
    >>> settings.max_concurrent_runs
    5

    Environment::

        RELAY_DATABASE_PATH=/var/lib/relay/relay.db
        RELAY_MAX_CONCURRENT_RUNS=10
        RELAY_CAPABILITY_TIMEOUTS='{"ai.openai.chat": 120}'
        RELAY_STRICT_VARIABLES=true

Tags:
    settings, configuration, pydantic, environment, relay-core

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RelaySettings(BaseSettings):
    """Settings for the workflow execution core.

    Fields
    ──────
    database_path                 : SQLite file (``:memory:`` for tests)
    log_level / log_json          : structlog configuration
    max_concurrent_runs           : global ceiling on in-flight runs
    max_concurrent_runs_per_tenant: optional per-tenant ceiling
    queue_poll_interval           : seconds between queue claims
    queue_batch_size              : max items claimed per poll
    scheduler_sync_interval       : seconds between trigger re-syncs
    scheduler_tick_interval       : seconds between due-timer checks
    stale_run_after               : seconds before a ``running`` run is reaped
    capability_timeout            : default per-call timeout
    capability_timeouts           : per-path timeout overrides
    breaker_failure_threshold     : consecutive failures to open a breaker
    breaker_recovery_timeout      : seconds before a half-open trial call
    rate_limit_per_second / rate_limit_burst / rate_limit_backlog
    strict_variables              : unresolved placeholders fail the step
    recorder_max_attempts / recorder_backlog
    category_map                  : extra path category → namespace entries
    capability_packages           : namespace → python package to import
    """

    model_config = SettingsConfigDict(
        env_prefix="RELAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Storage ──────────────────────────────────────────────────
    database_path: str = "relay.db"

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool | None = None

    # ── Queue ────────────────────────────────────────────────────
    max_concurrent_runs: int = Field(default=5, ge=1)
    max_concurrent_runs_per_tenant: int | None = Field(default=None, ge=1)
    queue_poll_interval: float = Field(default=0.5, gt=0)
    queue_batch_size: int = Field(default=10, ge=1)

    # ── Scheduler ────────────────────────────────────────────────
    scheduler_sync_interval: float = Field(default=60.0, gt=0)
    scheduler_tick_interval: float = Field(default=1.0, gt=0)
    stale_run_after: float = Field(default=3600.0, gt=0)

    # ── Capability guards ────────────────────────────────────────
    capability_timeout: float = Field(default=30.0, gt=0)
    capability_timeouts: dict[str, float] = Field(default_factory=dict)
    breaker_failure_threshold: int = Field(default=5, ge=1)
    breaker_recovery_timeout: float = Field(default=30.0, gt=0)
    rate_limit_per_second: float | None = Field(default=None, gt=0)
    rate_limit_burst: int | None = Field(default=None, ge=1)
    rate_limit_backlog: int = Field(default=50, ge=0)

    # ── Interpreter ──────────────────────────────────────────────
    strict_variables: bool = False

    # ── Recorder ─────────────────────────────────────────────────
    recorder_max_attempts: int = Field(default=5, ge=1)
    recorder_backlog: int = Field(default=1000, ge=1)

    # ── Capability registry ──────────────────────────────────────
    category_map: dict[str, str] = Field(default_factory=dict)
    capability_packages: dict[str, str] = Field(
        default_factory=lambda: {"utilities": "relay.modules.utilities"}
    )

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    def timeout_for(self, path: str) -> float:
        """Timeout for a capability path, honoring per-path overrides."""
        return self.capability_timeouts.get(path, self.capability_timeout)


@lru_cache
def get_settings() -> RelaySettings:
    """Cached settings instance read from the environment."""
    return RelaySettings()


def clear_settings_cache() -> None:
    get_settings.cache_clear()


__all__ = ["RelaySettings", "get_settings", "clear_settings_cache"]
