"""Models used by the circuit breaker."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field

from resilient_insights.enums import CircuitState


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class HealthLabel(StrEnum):
    """Derived health label for a breaker-guarded service."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    RECOVERING = "recovering"
    UNHEALTHY = "unhealthy"


class CircuitBreakerRecord(BaseModel):
    """Authoritative persisted state for one service's circuit breaker.

    ``version`` increases by one on every committed write and backs the
    store's compare-and-write check.
    """

    service: str
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = Field(default=0, ge=0)
    recent_failures: list[datetime] = Field(
        default_factory=list, description="Failure timestamps inside the window."
    )
    last_failure_at: datetime | None = None
    last_reset_at: datetime | None = None
    next_retry_at: datetime | None = None
    last_error: str | None = None
    last_latency_ms: float | None = Field(default=None, ge=0.0)
    probe_started_at: datetime | None = Field(
        default=None, description="When the current half-open probe was granted."
    )
    forced: bool = Field(default=False, description="Last transition was manual.")
    updated_at: datetime = Field(default_factory=_utcnow)
    version: int = Field(default=0, ge=0)


class CircuitStatus(BaseModel):
    """Read model returned by ``CircuitBreaker.get_status``."""

    service: str
    state: CircuitState
    failure_count: int = Field(default=0, ge=0)
    recent_failure_count: int = Field(default=0, ge=0)
    failure_threshold: int = Field(ge=1)
    health: HealthLabel
    is_healthy: bool
    seconds_until_retry: float | None = Field(default=None, ge=0.0)
    last_failure_at: datetime | None = None
    last_reset_at: datetime | None = None
    last_error: str | None = None
    recommendations: list[str] = Field(default_factory=list)


class CircuitAlert(BaseModel):
    """Operator alert derived from a breaker's current state."""

    service: str
    level: str = Field(description="'critical' or 'warning'.")
    message: str
    failure_count: int = Field(default=0, ge=0)
    timestamp: datetime
