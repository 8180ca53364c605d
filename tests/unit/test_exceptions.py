"""Unit tests for resilient_insights.exceptions - centralized exception hierarchy."""

from __future__ import annotations

import pytest

from resilient_insights.enums import ErrorKind
from resilient_insights.exceptions import (
    CircuitOpenError,
    ConfigurationError,
    FailureNotFoundError,
    FallbackRecordNotFoundError,
    PermanentError,
    ResilientInsightsError,
    ServiceError,
    StaleRecordError,
    TransientError,
    UpstreamError,
)


class TestHierarchy:
    """Every domain error is catchable through the base class."""

    @pytest.mark.parametrize(
        "cls",
        [
            UpstreamError,
            TransientError,
            PermanentError,
            ServiceError,
            StaleRecordError,
            ConfigurationError,
            FailureNotFoundError,
            FallbackRecordNotFoundError,
        ],
    )
    def test_caught_by_base(self, cls: type[ResilientInsightsError]) -> None:
        with pytest.raises(ResilientInsightsError, match="sub error"):
            raise cls("sub error")

    def test_upstream_errors_share_parent(self) -> None:
        for cls in (TransientError, PermanentError, ServiceError):
            assert issubclass(cls, UpstreamError)


class TestUpstreamErrorKind:
    """Upstream errors carry a classified kind."""

    def test_default_kinds(self) -> None:
        assert UpstreamError("x").kind is ErrorKind.SERVICE_ERROR
        assert TransientError("x").kind is ErrorKind.NETWORK
        assert PermanentError("x").kind is ErrorKind.VALIDATION
        assert ServiceError("x").kind is ErrorKind.SERVICE_ERROR

    def test_explicit_kind_wins(self) -> None:
        err = TransientError("429 Too Many Requests", ErrorKind.RATE_LIMIT)
        assert err.kind is ErrorKind.RATE_LIMIT
        assert str(err) == "429 Too Many Requests"


class TestCircuitOpenError:
    """CircuitOpenError names the blocked service."""

    def test_message_and_service(self) -> None:
        err = CircuitOpenError("ai_analysis")
        assert err.service == "ai_analysis"
        assert str(err) == "Circuit breaker for 'ai_analysis' is open."
