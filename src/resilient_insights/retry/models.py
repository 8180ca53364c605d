"""Models used by the retry classifier."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field

from resilient_insights.enums import CircuitState, ErrorKind, Priority


class CircuitSnapshot(BaseModel):
    """Breaker state captured at the time of a failed call."""

    state: CircuitState = CircuitState.CLOSED
    failure_count: int = Field(default=0, ge=0)


class RetryContext(BaseModel):
    """Everything the retry strategy needs about one failed attempt."""

    attempt: int = Field(default=0, ge=0, description="Retries already performed.")
    error: str = ""
    error_kind: ErrorKind | None = Field(
        default=None, description="Pre-classified kind; classified from error if unset."
    )
    circuit_snapshot: CircuitSnapshot | None = None
    priority: Priority = Priority.NORMAL
    original_priority: Priority = Priority.NORMAL
    analysis_id: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))
    queued_at: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))

    @property
    def total_wait_ms(self) -> float:
        """Time the unit of work has been waiting since creation."""
        return max((self.queued_at - self.created_at).total_seconds() * 1000, 0.0)


class RetryDecision(BaseModel):
    """Outcome of ``RetryClassifier.calculate_retry_strategy``."""

    should_retry: bool
    delay_ms: int = Field(default=0, ge=0)
    error_kind: ErrorKind
    attempt: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=0, ge=0)
    priority: Priority = Priority.NORMAL
    fallback_eligible: bool = False
    reason: str = ""
