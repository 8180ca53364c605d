"""Shared pytest fixtures for the resilient-insights test suite."""

from __future__ import annotations

import logging
import os
from datetime import UTC, datetime, timedelta

import pytest
import structlog

from resilient_insights.adapters import (
    CollectingAlertSink,
    InMemoryCircuitBreakerStore,
    InMemoryFailureDetectionStore,
    InMemoryFallbackStore,
    InMemoryMetricsStore,
    RecordingScheduler,
)

# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------


START = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced clock; call it to read the current time."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture()
def clock() -> FakeClock:
    """A clock frozen at ``START`` until advanced."""
    return FakeClock()


# ---------------------------------------------------------------------------
# In-memory adapters
# ---------------------------------------------------------------------------


@pytest.fixture()
def breaker_store() -> InMemoryCircuitBreakerStore:
    return InMemoryCircuitBreakerStore()


@pytest.fixture()
def fallback_store() -> InMemoryFallbackStore:
    return InMemoryFallbackStore()


@pytest.fixture()
def detection_store() -> InMemoryFailureDetectionStore:
    return InMemoryFailureDetectionStore()


@pytest.fixture()
def metrics_store() -> InMemoryMetricsStore:
    return InMemoryMetricsStore()


@pytest.fixture()
def scheduler() -> RecordingScheduler:
    return RecordingScheduler()


@pytest.fixture()
def alert_sink() -> CollectingAlertSink:
    return CollectingAlertSink()


# ---------------------------------------------------------------------------
# Settings isolation
# ---------------------------------------------------------------------------


@pytest.fixture()
def isolated_cwd(tmp_path, monkeypatch: pytest.MonkeyPatch):
    """Run in an empty directory with no RESILIENT_INSIGHTS_ env vars set."""
    monkeypatch.chdir(tmp_path)
    for name in list(os.environ):
        if name.startswith("RESILIENT_INSIGHTS_"):
            monkeypatch.delenv(name)
    return tmp_path


@pytest.fixture()
def reset_structlog():
    """Restore structlog and root logger state after the test."""
    yield
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.WARNING)
