"""Circuit breaker exports."""

from resilient_insights.breaker.circuit_breaker import CircuitBreaker, should_trip_circuit
from resilient_insights.breaker.models import (
    CircuitAlert,
    CircuitBreakerRecord,
    CircuitStatus,
    HealthLabel,
)

__all__ = [
    "CircuitAlert",
    "CircuitBreaker",
    "CircuitBreakerRecord",
    "CircuitStatus",
    "HealthLabel",
    "should_trip_circuit",
]
