"""Integration tests for the resilient analysis pipeline.

Exercises the AI path, retries, fallback routing, storage and upgrades
against in-memory adapters and a scripted AI client.
"""

from __future__ import annotations

import random
from collections.abc import Iterable

import pytest

from resilient_insights.adapters import InMemoryCircuitBreakerStore, InMemoryFallbackStore
from resilient_insights.breaker import CircuitBreaker
from resilient_insights.comparison.models import AIAnalysisResult, UpgradeOptions
from resilient_insights.config import RetrySettings, Settings
from resilient_insights.enums import CircuitState, ErrorKind, FallbackTrigger
from resilient_insights.exceptions import (
    ConfigurationError,
    FallbackRecordNotFoundError,
    PermanentError,
    ServiceError,
    TransientError,
)
from resilient_insights.pipeline import ResilientAnalysisPipeline
from resilient_insights.retry import RetryClassifier

pytestmark = pytest.mark.integration

RICH_ENTRY = (
    "We talked openly and honestly about our trust issues tonight. I feel so happy "
    "and grateful that we worked it out together, and we agreed to keep improving "
    "our relationship. Really thankful for the support!"
)


class ScriptedClient:
    """AI client that replays a script of exceptions and results."""

    def __init__(self, script: Iterable[BaseException | AIAnalysisResult]) -> None:
        self._script = list(script)
        self.calls: list[tuple[str, str | None]] = []

    async def analyze(
        self, text: str, relationship_context: str | None = None
    ) -> AIAnalysisResult:
        self.calls.append((text, relationship_context))
        step = self._script.pop(0) if self._script else _ai_result()
        if isinstance(step, BaseException):
            raise step
        return step


def _ai_result(**overrides) -> AIAnalysisResult:
    values = {
        "sentiment_score": 0.7,
        "confidence": 0.9,
        "emotional_keywords": ["happy", "grateful", "trust"],
        "reasoning": "Warm, appreciative entry.",
        "processing_time_ms": 850.0,
    }
    values.update(overrides)
    return AIAnalysisResult(**values)


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture()
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture()
def breaker(breaker_store, clock) -> CircuitBreaker:
    return CircuitBreaker(breaker_store, failure_threshold=10, clock=clock)


def _pipeline(
    client,
    breaker: CircuitBreaker,
    fallback_store: InMemoryFallbackStore,
    sleep: RecordingSleep,
    clock,
    scheduler=None,
) -> ResilientAnalysisPipeline:
    return ResilientAnalysisPipeline(
        client,
        circuit_breaker=breaker,
        fallback_store=fallback_store,
        classifier=RetryClassifier(RetrySettings(), rng=random.Random(3)),
        scheduler=scheduler,
        sleep=sleep,
        clock=clock,
    )


# ---- Construction -------------------------------------------------------------


class TestConstruction:
    """A pipeline needs a real AI client."""

    def test_missing_client_rejected(self, breaker, fallback_store) -> None:
        with pytest.raises(ConfigurationError, match="client is required"):
            ResilientAnalysisPipeline(
                None, circuit_breaker=breaker, fallback_store=fallback_store
            )

    def test_client_without_analyze_rejected(self, breaker, fallback_store) -> None:
        with pytest.raises(ConfigurationError, match="does not implement"):
            ResilientAnalysisPipeline(
                object(),  # type: ignore[arg-type]
                circuit_breaker=breaker,
                fallback_store=fallback_store,
            )

    def test_from_settings(self, isolated_cwd) -> None:
        settings = Settings.load()
        pipeline = ResilientAnalysisPipeline.from_settings(settings, ScriptedClient([]))
        assert pipeline.circuit_breaker.failure_threshold == 5


# ---- Analysis -----------------------------------------------------------------


class TestAnalyze:
    """AI first, retries for transient failures, fallback when exhausted."""

    @pytest.mark.asyncio()
    async def test_success_records_ai_result(
        self, breaker, fallback_store, sleep, clock
    ) -> None:
        client = ScriptedClient([_ai_result()])
        pipeline = _pipeline(client, breaker, fallback_store, sleep, clock)

        outcome = await pipeline.analyze(
            "e-1", "A good day", user_id="u1", relationship_context="partner"
        )
        assert outcome.source == "ai"
        assert outcome.attempts == 1
        assert outcome.ai_result is not None
        assert outcome.ai_result.user_id == "u1"
        assert client.calls == [("A good day", "partner")]
        assert sleep.delays == []
        assert len(await fallback_store.recent_ai_results("u1", limit=5)) == 1

    @pytest.mark.asyncio()
    async def test_transient_failures_retried(
        self, breaker, fallback_store, sleep, clock
    ) -> None:
        client = ScriptedClient(
            [
                TransientError("request timed out", ErrorKind.TIMEOUT),
                TransientError("connection reset", ErrorKind.NETWORK),
                _ai_result(),
            ]
        )
        pipeline = _pipeline(client, breaker, fallback_store, sleep, clock)

        outcome = await pipeline.analyze("e-1", "A good day")
        assert outcome.source == "ai"
        assert outcome.attempts == 3
        assert len(sleep.delays) == 2
        assert all(delay > 0 for delay in sleep.delays)

        status = await breaker.get_status("ai_analysis")
        assert status.state is CircuitState.CLOSED

    @pytest.mark.asyncio()
    async def test_permanent_error_surfaces(
        self, breaker, fallback_store, sleep, clock
    ) -> None:
        client = ScriptedClient([PermanentError("bad request: text too long")])
        pipeline = _pipeline(client, breaker, fallback_store, sleep, clock)

        with pytest.raises(PermanentError):
            await pipeline.analyze("e-1", "A good day")
        assert len(client.calls) == 1
        assert sleep.delays == []
        status = await breaker.get_status("ai_analysis")
        assert status.failure_count == 0

    @pytest.mark.asyncio()
    async def test_exhausted_retries_fall_back(
        self, breaker, fallback_store, scheduler, sleep, clock
    ) -> None:
        client = ScriptedClient([ServiceError("upstream 503")] * 10)
        pipeline = _pipeline(client, breaker, fallback_store, sleep, clock, scheduler)

        outcome = await pipeline.analyze(
            "e-1", RICH_ENTRY, user_id="u1", relationship_context="partner"
        )
        assert outcome.source == "fallback"
        assert outcome.trigger is FallbackTrigger.RETRY_EXHAUSTED
        assert outcome.error_kind is ErrorKind.SERVICE_ERROR
        assert outcome.attempts == 5
        assert len(sleep.delays) == 4
        assert sleep.delays == sorted(sleep.delays)

        assert outcome.fallback is not None
        assert outcome.fallback.should_store
        assert outcome.fallback_id is not None
        stored = await fallback_store.get(outcome.fallback_id)
        assert stored is not None
        assert stored.entry_id == "e-1"
        assert stored.user_id == "u1"
        assert stored.trigger is FallbackTrigger.RETRY_EXHAUSTED

        assert outcome.upgrade_scheduled
        assert [delay for delay, _ in scheduler.scheduled] == [300.0]

    @pytest.mark.asyncio()
    async def test_breaker_trips_during_retries(
        self, breaker_store, fallback_store, sleep, clock
    ) -> None:
        breaker = CircuitBreaker(breaker_store, failure_threshold=3, clock=clock)
        client = ScriptedClient([ServiceError("upstream 503")] * 10)
        pipeline = _pipeline(client, breaker, fallback_store, sleep, clock)

        outcome = await pipeline.analyze("e-1", RICH_ENTRY)
        assert outcome.trigger is FallbackTrigger.CIRCUIT_BREAKER_OPEN
        assert outcome.attempts == 3
        assert len(sleep.delays) == 2

    @pytest.mark.asyncio()
    async def test_open_circuit_skips_ai(
        self, breaker, fallback_store, sleep, clock
    ) -> None:
        await breaker.force_open("ai_analysis")
        client = ScriptedClient([_ai_result()])
        pipeline = _pipeline(client, breaker, fallback_store, sleep, clock)

        outcome = await pipeline.analyze("e-1", RICH_ENTRY)
        assert outcome.source == "fallback"
        assert outcome.trigger is FallbackTrigger.CIRCUIT_BREAKER_OPEN
        assert outcome.attempts == 0
        assert client.calls == []
        assert not outcome.upgrade_scheduled

    @pytest.mark.asyncio()
    async def test_unstorable_fallback_not_saved(
        self, breaker, fallback_store, scheduler, sleep, clock
    ) -> None:
        await breaker.force_open("ai_analysis")
        pipeline = _pipeline(
            ScriptedClient([]), breaker, fallback_store, sleep, clock, scheduler
        )

        outcome = await pipeline.analyze("e-1", "")
        assert outcome.fallback is not None
        assert not outcome.fallback.should_store
        assert outcome.fallback_id is None
        assert scheduler.scheduled == []


# ---- Upgrades -----------------------------------------------------------------


class TestAttemptUpgrade:
    """Replacing stored fallback results with AI results."""

    @staticmethod
    async def _stored_fallback(pipeline: ResilientAnalysisPipeline, breaker) -> str:
        await breaker.force_open("ai_analysis")
        outcome = await pipeline.analyze(
            "e-1", RICH_ENTRY, user_id="u1", relationship_context="partner"
        )
        await breaker.force_close("ai_analysis")
        assert outcome.fallback_id is not None
        return outcome.fallback_id

    @pytest.mark.asyncio()
    async def test_forced_upgrade(self, breaker, fallback_store, sleep, clock) -> None:
        client = ScriptedClient([_ai_result()])
        pipeline = _pipeline(client, breaker, fallback_store, sleep, clock)
        fallback_id = await self._stored_fallback(pipeline, breaker)

        attempt = await pipeline.attempt_upgrade(
            fallback_id, UpgradeOptions(force_upgrade=True)
        )
        assert attempt.upgraded
        assert attempt.decision.reason == "Force upgrade requested"
        assert attempt.ai_result is not None
        assert attempt.ai_result.user_id == "u1"
        assert attempt.comparison is not None
        assert attempt.comparison.sentiment_agreement.agreement
        assert client.calls == [(RICH_ENTRY, "partner")]

        stored = await fallback_store.get(fallback_id)
        assert stored is not None
        assert stored.upgraded
        assert stored.upgraded_at == clock.now

        again = await pipeline.attempt_upgrade(
            fallback_id, UpgradeOptions(force_upgrade=True)
        )
        assert not again.upgraded
        assert again.decision.reason == "Fallback result already upgraded"

    @pytest.mark.asyncio()
    async def test_open_breaker_vetoes_upgrade(
        self, breaker, fallback_store, sleep, clock
    ) -> None:
        client = ScriptedClient([])
        pipeline = _pipeline(client, breaker, fallback_store, sleep, clock)
        fallback_id = await self._stored_fallback(pipeline, breaker)
        await breaker.force_open("ai_analysis")

        attempt = await pipeline.attempt_upgrade(
            fallback_id, UpgradeOptions(force_upgrade=True)
        )
        assert not attempt.upgraded
        assert attempt.decision.reason == "Circuit breaker still open - wait for recovery"
        assert client.calls == []

    @pytest.mark.asyncio()
    async def test_failed_upgrade_call_reported(
        self, breaker, fallback_store, sleep, clock
    ) -> None:
        client = ScriptedClient([ServiceError("upstream 502")])
        pipeline = _pipeline(client, breaker, fallback_store, sleep, clock)
        fallback_id = await self._stored_fallback(pipeline, breaker)

        attempt = await pipeline.attempt_upgrade(
            fallback_id, UpgradeOptions(force_upgrade=True)
        )
        assert not attempt.upgraded
        assert attempt.error == "upstream 502"
        status = await breaker.get_status("ai_analysis")
        assert status.recent_failure_count == 1

    @pytest.mark.asyncio()
    async def test_unknown_fallback_raises(
        self, breaker, fallback_store, sleep, clock
    ) -> None:
        pipeline = _pipeline(ScriptedClient([]), breaker, fallback_store, sleep, clock)
        with pytest.raises(FallbackRecordNotFoundError):
            await pipeline.attempt_upgrade("missing")

    @pytest.mark.asyncio()
    async def test_scheduled_upgrade_runs(
        self, breaker, fallback_store, scheduler, sleep, clock
    ) -> None:
        client = ScriptedClient([ServiceError("upstream 503")] * 5)
        pipeline = _pipeline(client, breaker, fallback_store, sleep, clock, scheduler)
        outcome = await pipeline.analyze("e-1", RICH_ENTRY)
        assert outcome.upgrade_scheduled

        assert await scheduler.run_all() == 1


class TestWithInMemoryDefaults:
    """from_settings wires in-memory stores end to end."""

    @pytest.mark.asyncio()
    async def test_round_trip(self, isolated_cwd, sleep, clock) -> None:
        settings = Settings.load()
        breaker_store = InMemoryCircuitBreakerStore()
        pipeline = ResilientAnalysisPipeline.from_settings(
            settings,
            ScriptedClient([TransientError("timed out", ErrorKind.TIMEOUT), _ai_result()]),
            breaker_store=breaker_store,
            sleep=sleep,
            clock=clock,
            rng=random.Random(1),
        )
        outcome = await pipeline.analyze("e-1", "A good day")
        assert outcome.source == "ai"
        assert outcome.attempts == 2
        assert [r.service for r in await breaker_store.list_records()] == ["ai_analysis"]
