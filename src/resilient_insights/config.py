"""Configuration with layered resolution: defaults -> YAML -> env -> overrides.

Uses pydantic-settings with YamlConfigSettingsSource for layered configuration.
Supports ``.env`` file loading, ``RESILIENT_INSIGHTS_`` prefixed env vars, and
nested delimiter ``__`` for overriding sub-model fields, e.g.
``RESILIENT_INSIGHTS_CIRCUIT_BREAKER__FAILURE_THRESHOLD=3``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, ClassVar, Literal

import structlog
from pydantic import BaseModel, Field, ValidationError, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from resilient_insights.enums import ErrorKind, Priority

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Sub-models
# ---------------------------------------------------------------------------


class CircuitBreakerSettings(BaseModel):
    """Per-service circuit breaker thresholds."""

    service_name: str = Field(
        default="ai_analysis", description="Breaker key for the upstream AI service."
    )
    failure_threshold: int = Field(default=5, ge=1, le=100)
    cooldown_seconds: float = Field(
        default=60.0, gt=0.0, description="Open -> half_open delay after last failure."
    )
    monitoring_window_seconds: float = Field(
        default=300.0, gt=0.0, description="Rolling window for counting failures."
    )
    write_conflict_retries: int = Field(default=5, ge=1, le=50)


class ErrorKindPolicy(BaseModel):
    """Retry policy for one classified error kind."""

    max_attempts: int = Field(default=3, ge=0, le=20)
    backoff_multiplier: float = Field(default=2.0, gt=0.0)
    escalate_after_attempts: int | None = Field(
        default=None, ge=1, description="Raise queue priority after N attempts."
    )


def _default_kind_policies() -> dict[ErrorKind, ErrorKindPolicy]:
    return {
        ErrorKind.TIMEOUT: ErrorKindPolicy(
            max_attempts=5, backoff_multiplier=1.5, escalate_after_attempts=2
        ),
        ErrorKind.NETWORK: ErrorKindPolicy(
            max_attempts=4, backoff_multiplier=2.0, escalate_after_attempts=1
        ),
        ErrorKind.RATE_LIMIT: ErrorKindPolicy(
            max_attempts=3, backoff_multiplier=3.0, escalate_after_attempts=1
        ),
        ErrorKind.SERVICE_ERROR: ErrorKindPolicy(
            max_attempts=4, backoff_multiplier=2.0, escalate_after_attempts=2
        ),
        ErrorKind.VALIDATION: ErrorKindPolicy(max_attempts=0),
        ErrorKind.AUTHENTICATION: ErrorKindPolicy(max_attempts=0),
    }


class RetrySettings(BaseModel):
    """Backoff and attempt limits for upstream AI calls."""

    base_delay_ms: float = Field(default=1000.0, gt=0.0)
    max_delay_ms: float = Field(default=300_000.0, gt=0.0)
    jitter_ratio: float = Field(
        default=0.1,
        ge=0.0,
        lt=1.0,
        description="Upper bound of jitter as a fraction of the raw delay.",
    )
    rate_limit_min_delay_ms: float = Field(default=5000.0, ge=0.0)
    service_error_multiplier: float = Field(default=2.0, gt=0.0)
    client_error_multiplier: float = Field(default=1.0, gt=0.0)
    kind_policies: dict[ErrorKind, ErrorKindPolicy] = Field(
        default_factory=_default_kind_policies
    )
    priority_attempt_limits: dict[Priority, int] = Field(
        default_factory=lambda: {
            Priority.LOW: 3,
            Priority.NORMAL: 3,
            Priority.HIGH: 4,
            Priority.URGENT: 5,
        }
    )
    priority_delay_factors: dict[Priority, float] = Field(
        default_factory=lambda: {Priority.HIGH: 0.9, Priority.URGENT: 0.8}
    )

    @model_validator(mode="after")
    def check_delays(self) -> RetrySettings:
        if self.base_delay_ms > self.max_delay_ms:
            msg = "base_delay_ms must not exceed max_delay_ms"
            raise ValueError(msg)
        return self


class FallbackSettings(BaseModel):
    """Rule-based fallback analysis limits."""

    budget_ms: float = Field(
        default=100.0, gt=0.0, description="Soft wall-clock budget per analysis."
    )
    max_text_chars: int = Field(default=20_000, gt=0)
    min_store_confidence: float = Field(default=0.3, ge=0.0, le=1.0)
    default_reason: str = Field(
        default="API unavailable",
        description="Reason recorded when a trigger has no specific one.",
    )


class UpgradeSettings(BaseModel):
    """Thresholds for replacing fallback results with AI results."""

    quality_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    cost_threshold: float = Field(
        default=0.1, ge=0.0, description="Max estimated USD cost of one upgrade."
    )
    upgrade_delay_seconds: float = Field(default=300.0, ge=0.0)
    recent_ai_sample_size: int = Field(default=10, ge=1, le=500)
    default_predicted_quality: float = Field(default=0.7, ge=0.0, le=1.0)


class FailureDetectionSettings(BaseModel):
    """Windows and thresholds for the failure-pattern detectors."""

    analysis_window_minutes: float = Field(default=30.0, gt=0.0)
    dedup_window_minutes: float = Field(default=60.0, gt=0.0)
    spike_recent_minutes: float = Field(default=10.0, gt=0.0)
    spike_ratio: float = Field(default=3.0, gt=0.0)
    spike_min_errors: int = Field(default=5, ge=1)
    degradation_min_samples: int = Field(default=5, ge=3)
    degradation_ratio: float = Field(default=2.0, gt=1.0)
    degradation_min_latency_ms: float = Field(default=5000.0, ge=0.0)
    degradation_ceiling_ms: float = Field(default=30_000.0, gt=0.0)
    degradation_critical_ms: float = Field(default=60_000.0, gt=0.0)
    cascade_lookback_minutes: float = Field(default=15.0, gt=0.0)
    cascade_bucket_minutes: float = Field(default=5.0, gt=0.0)
    cascade_min_services: int = Field(default=3, ge=2)
    resource_lookback_minutes: float = Field(default=20.0, gt=0.0)
    resource_latency_ms: float = Field(default=20_000.0, gt=0.0)
    auto_resolve: bool = Field(
        default=True, description="Resolve detections whose condition cleared."
    )


class LoggingSettings(BaseModel):
    """Logging / observability configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["console", "json"] = "console"
    file: Path | None = None


# ---------------------------------------------------------------------------
# Main Settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    """Top-level application settings.

    Resolution order (last wins):
        1. Field defaults (defined above)
        2. YAML config file (``config.yaml`` or an explicit path)
        3. Environment variables (prefixed ``RESILIENT_INSIGHTS_``)
        4. Programmatic overrides passed to :meth:`load`
    """

    model_config = SettingsConfigDict(
        env_prefix="RESILIENT_INSIGHTS_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        yaml_file="config.yaml",
        yaml_file_encoding="utf-8",
        extra="ignore",
    )

    _config_path_override: ClassVar[Path | None] = None

    circuit_breaker: CircuitBreakerSettings = Field(
        default_factory=CircuitBreakerSettings
    )
    retry: RetrySettings = Field(default_factory=RetrySettings)
    fallback: FallbackSettings = Field(default_factory=FallbackSettings)
    upgrade: UpgradeSettings = Field(default_factory=UpgradeSettings)
    failure_detection: FailureDetectionSettings = Field(
        default_factory=FailureDetectionSettings
    )
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customise settings source priority.

        Resolution order (first = highest priority):
            init_settings > env_settings > dotenv (.env) > yaml > defaults

        Args:
            settings_cls: The settings class.
            init_settings: Init / programmatic overrides.
            env_settings: Environment variable source.
            dotenv_settings: Dotenv file source (.env).
            file_secret_settings: Secret file source (unused).

        Returns:
            Ordered tuple of settings sources (first = highest priority).
        """
        yaml_file = cls._config_path_override or settings_cls.model_config.get(
            "yaml_file", "config.yaml"
        )
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls, yaml_file=yaml_file),
        )

    @classmethod
    def load(cls, config_path: Path | None = None, **overrides: Any) -> Settings:
        """Load settings with optional config path and programmatic overrides.

        Args:
            config_path: Optional path to a YAML config file.
            **overrides: Key-value overrides applied at highest priority.

        Returns:
            Fully-resolved Settings instance.

        Raises:
            ValidationError: If any setting value fails validation.
        """
        cls._config_path_override = config_path
        try:
            settings = cls(**overrides)
        finally:
            cls._config_path_override = None
        logger.debug(
            "settings_loaded",
            config_path=str(config_path) if config_path else None,
            overrides=sorted(overrides),
        )
        return settings


def format_validation_error(exc: ValidationError) -> str:
    """Format a Pydantic ValidationError into a user-friendly message.

    Args:
        exc: The validation error to format.

    Returns:
        A multi-line string with each error on its own line.
    """
    lines: list[str] = []
    for error in exc.errors():
        loc = " -> ".join(str(part) for part in error["loc"])
        msg = error["msg"]
        raw_input = error.get("input")
        if raw_input is not None:
            lines.append(f"  {loc}: {msg} (got {raw_input!r})")
        else:
            lines.append(f"  {loc}: {msg}")
    return "Configuration error:\n" + "\n".join(lines)
