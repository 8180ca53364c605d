"""End-to-end analysis: AI call behind a breaker and retries, fallback otherwise.

The pipeline composes the resilience components around an injected
:class:`~resilient_insights.ports.AIAnalysisClient`:

    1. An open circuit routes straight to fallback analysis.
    2. Otherwise the AI call is retried by tenacity, with every retry
       decision (and its delay) delegated to the retry classifier.
    3. Validation and authentication failures surface as
       :class:`PermanentError`; other exhausted failures fall back.
    4. Stored fallback results get an upgrade attempt scheduled through
       the caller-owned task scheduler.
"""

from __future__ import annotations

import asyncio
import random
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from functools import partial
from typing import TYPE_CHECKING, Literal

import structlog
from pydantic import BaseModel
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from resilient_insights.adapters import InMemoryCircuitBreakerStore, InMemoryFallbackStore
from resilient_insights.breaker.circuit_breaker import CircuitBreaker, should_trip_circuit
from resilient_insights.comparison.engine import ComparisonEngine, compare_ai_and_fallback
from resilient_insights.comparison.models import (
    AIAnalysisResult,
    ComparisonResult,
    StoredFallback,
    UpgradeDecision,
    UpgradeOptions,
)
from resilient_insights.config import Settings, UpgradeSettings
from resilient_insights.enums import (
    PERMANENT_KINDS,
    ErrorKind,
    FallbackTrigger,
    Priority,
)
from resilient_insights.exceptions import (
    CircuitOpenError,
    ConfigurationError,
    FallbackRecordNotFoundError,
    PermanentError,
)
from resilient_insights.fallback.integration import FallbackIntegrator, should_use_fallback
from resilient_insights.fallback.models import IntegratedFallbackResult
from resilient_insights.logging import operation_logging_context
from resilient_insights.ports import AIAnalysisClient, Clock, utcnow
from resilient_insights.retry.classifier import RetryClassifier, create_retry_context
from resilient_insights.retry.models import RetryDecision

if TYPE_CHECKING:
    from resilient_insights.ports import (
        CircuitBreakerStore,
        CostEstimator,
        FallbackResultStore,
        TaskScheduler,
    )

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]

# Hard ceiling on AI calls per entry; the classifier normally stops earlier.
_MAX_CALLS = 10


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class AnalysisOutcome(BaseModel):
    """What :meth:`ResilientAnalysisPipeline.analyze` produced for one entry."""

    entry_id: str
    source: Literal["ai", "fallback"]
    ai_result: AIAnalysisResult | None = None
    fallback: IntegratedFallbackResult | None = None
    fallback_id: str | None = None
    trigger: FallbackTrigger | None = None
    error_kind: ErrorKind | None = None
    attempts: int = 0
    upgrade_scheduled: bool = False


class UpgradeAttempt(BaseModel):
    """Result of one attempt to replace a stored fallback with an AI result."""

    fallback_id: str
    decision: UpgradeDecision
    upgraded: bool = False
    ai_result: AIAnalysisResult | None = None
    comparison: ComparisonResult | None = None
    error: str | None = None


@dataclass(slots=True)
class _RetryState:
    priority: Priority
    created_at: datetime
    calls: int = 0
    decision: RetryDecision | None = None


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class ResilientAnalysisPipeline:
    """Analyzes entries with the AI service, degrading to fallback analysis.

    Args:
        client: The upstream AI analysis client. Required.
        circuit_breaker: Breaker guarding the AI service.
        fallback_store: Where gated fallback results and AI results live.
        classifier: Retry and fallback-eligibility decisions.
        integrator: Fallback analysis.
        comparison_engine: Upgrade decisions; built from the store and
            breaker when omitted.
        scheduler: Runs deferred upgrade attempts. Without one no upgrade
            is scheduled.
        upgrade_settings: Delay before an upgrade attempt.
        service_name: Breaker key of the AI service.
        sleep: Awaitable used between retries.
        clock: Time source.

    Raises:
        ConfigurationError: If ``client`` is missing or does not implement
            ``analyze``.
    """

    def __init__(
        self,
        client: AIAnalysisClient | None,
        *,
        circuit_breaker: CircuitBreaker,
        fallback_store: FallbackResultStore,
        classifier: RetryClassifier | None = None,
        integrator: FallbackIntegrator | None = None,
        comparison_engine: ComparisonEngine | None = None,
        scheduler: TaskScheduler | None = None,
        upgrade_settings: UpgradeSettings | None = None,
        service_name: str = "ai_analysis",
        sleep: Sleep = asyncio.sleep,
        clock: Clock = utcnow,
    ) -> None:
        if client is None:
            msg = "An AI analysis client is required to build the analysis pipeline."
            raise ConfigurationError(msg)
        if not isinstance(client, AIAnalysisClient):
            msg = f"{type(client).__name__} does not implement AIAnalysisClient.analyze."
            raise ConfigurationError(msg)

        self._client = client
        self._breaker = circuit_breaker
        self._store = fallback_store
        self._classifier = classifier or RetryClassifier()
        self._integrator = integrator or FallbackIntegrator()
        self._upgrade_settings = upgrade_settings or UpgradeSettings()
        self._engine = comparison_engine or ComparisonEngine(
            fallback_store,
            circuit_breaker,
            settings=self._upgrade_settings,
            service_name=service_name,
        )
        self._scheduler = scheduler
        self._service = service_name
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: AIAnalysisClient | None,
        *,
        breaker_store: CircuitBreakerStore | None = None,
        fallback_store: FallbackResultStore | None = None,
        scheduler: TaskScheduler | None = None,
        cost_estimator: CostEstimator | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = utcnow,
        rng: random.Random | None = None,
    ) -> ResilientAnalysisPipeline:
        """Build a pipeline, defaulting to in-memory stores."""
        service = settings.circuit_breaker.service_name
        breaker = CircuitBreaker.from_settings(
            settings.circuit_breaker,
            breaker_store or InMemoryCircuitBreakerStore(),
            clock=clock,
        )
        store = fallback_store or InMemoryFallbackStore()
        return cls(
            client,
            circuit_breaker=breaker,
            fallback_store=store,
            classifier=RetryClassifier(settings.retry, rng=rng),
            integrator=FallbackIntegrator(settings.fallback),
            comparison_engine=ComparisonEngine(
                store,
                breaker,
                cost_estimator=cost_estimator,
                settings=settings.upgrade,
                service_name=service,
            ),
            scheduler=scheduler,
            upgrade_settings=settings.upgrade,
            service_name=service,
            sleep=sleep,
            clock=clock,
        )

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._breaker

    @property
    def comparison_engine(self) -> ComparisonEngine:
        return self._engine

    # -- Analysis ----------------------------------------------------------

    async def analyze(
        self,
        entry_id: str,
        text: str,
        *,
        user_id: str | None = None,
        relationship_context: str | None = None,
        previous_entries: Sequence[str] | None = None,
        priority: Priority = Priority.NORMAL,
    ) -> AnalysisOutcome:
        """Analyze one entry.

        Args:
            entry_id: Caller's identifier for the entry.
            text: Entry text.
            user_id: Owner, used to predict AI quality for upgrades.
            relationship_context: Optional context passed to both analyzers.
            previous_entries: Earlier texts for fallback trend analysis.
            priority: Starting retry priority.

        Returns:
            The AI result, or the fallback result when the AI path failed
            with a fallback-eligible error or the circuit is open.

        Raises:
            PermanentError: For validation or authentication failures, which
                fallback analysis must not mask.
        """
        with operation_logging_context("analyze_entry", entry_id=entry_id):
            fallback = partial(
                self._fallback,
                entry_id,
                text,
                user_id=user_id,
                relationship_context=relationship_context,
                previous_entries=previous_entries,
            )

            try:
                await self._breaker.ensure_available(self._service)
            except CircuitOpenError:
                logger.info("circuit_open_routing_to_fallback", service=self._service)
                return await fallback(FallbackTrigger.CIRCUIT_BREAKER_OPEN)

            state = _RetryState(priority=priority, created_at=self._clock())
            try:
                result = await self._call_with_retry(
                    entry_id, text, relationship_context, state
                )
            except Exception as exc:
                kind = (
                    state.decision.error_kind
                    if state.decision is not None
                    else self._classifier.classify(exc)
                )
                if kind in PERMANENT_KINDS:
                    logger.error(
                        "ai_analysis_permanent_failure",
                        error_kind=kind.value,
                        error=str(exc),
                    )
                    if isinstance(exc, PermanentError):
                        raise
                    raise PermanentError(str(exc), kind=kind) from exc

                status = await self._breaker.get_status(self._service)
                trigger = (
                    should_use_fallback(
                        kind,
                        retry_count=state.calls - 1,
                        circuit_state=status.state,
                        max_retries=state.decision.max_attempts if state.decision else 0,
                    )
                    or FallbackTrigger.API_UNAVAILABLE
                )
                logger.warning(
                    "ai_analysis_failed_using_fallback",
                    error_kind=kind.value,
                    attempts=state.calls,
                    trigger=trigger.value,
                )
                return await fallback(trigger, attempts=state.calls, error_kind=kind)

            if user_id is not None and result.user_id is None:
                result = result.model_copy(update={"user_id": user_id})
            await self._store.record_ai_result(result)
            logger.info("ai_analysis_complete", attempts=state.calls)
            return AnalysisOutcome(
                entry_id=entry_id,
                source="ai",
                ai_result=result,
                attempts=state.calls,
            )

    async def _call_with_retry(
        self,
        entry_id: str,
        text: str,
        relationship_context: str | None,
        state: _RetryState,
    ) -> AIAnalysisResult:
        def _should_retry(exc: BaseException) -> bool:
            return state.decision is not None and state.decision.should_retry

        def _wait(retry_state: RetryCallState) -> float:
            return state.decision.delay_ms / 1000 if state.decision else 0.0

        async for attempt in AsyncRetrying(
            retry=retry_if_exception(_should_retry),
            wait=_wait,
            stop=stop_after_attempt(_MAX_CALLS),
            sleep=self._sleep,
            reraise=True,
        ):
            with attempt:
                return await self._attempt(entry_id, text, relationship_context, state)

        msg = "AI retry loop ended without a result or an error."
        raise RuntimeError(msg)

    async def _attempt(
        self,
        entry_id: str,
        text: str,
        relationship_context: str | None,
        state: _RetryState,
    ) -> AIAnalysisResult:
        """One AI call; on failure, records it and decides whether to retry."""
        state.calls += 1
        started = time.perf_counter()
        try:
            result = await self._client.analyze(text, relationship_context)
        except Exception as exc:
            kind = self._classifier.classify(exc)
            if kind not in PERMANENT_KINDS and should_trip_circuit(exc):
                status = await self._breaker.record_failure(self._service, exc)
            else:
                status = await self._breaker.get_status(self._service)
            context = create_retry_context(
                exc,
                attempt=state.calls - 1,
                circuit_status=status,
                priority=state.priority,
                created_at=state.created_at,
                queued_at=self._clock(),
                analysis_id=entry_id,
            ).model_copy(update={"error_kind": kind})
            state.decision = self._classifier.calculate_retry_strategy(context)
            state.priority = state.decision.priority
            raise

        latency_ms = round((time.perf_counter() - started) * 1000, 3)
        await self._breaker.record_success(self._service, latency_ms)
        if result.processing_time_ms is None:
            result = result.model_copy(update={"processing_time_ms": latency_ms})
        return result

    async def _fallback(
        self,
        entry_id: str,
        text: str,
        trigger: FallbackTrigger,
        *,
        user_id: str | None,
        relationship_context: str | None,
        previous_entries: Sequence[str] | None,
        attempts: int = 0,
        error_kind: ErrorKind | None = None,
    ) -> AnalysisOutcome:
        result = self._integrator.execute(
            text,
            trigger,
            relationship_context=relationship_context,
            previous_entries=previous_entries,
        )
        outcome = AnalysisOutcome(
            entry_id=entry_id,
            source="fallback",
            fallback=result,
            trigger=trigger,
            error_kind=error_kind,
            attempts=attempts,
        )
        if not result.should_store:
            logger.info(
                "fallback_result_not_stored",
                combined_confidence=result.combined_confidence,
                quality_valid=result.quality.is_valid,
            )
            return outcome

        record = await self._store.save(
            StoredFallback(
                entry_id=entry_id,
                user_id=user_id,
                text=text,
                relationship_context=relationship_context,
                trigger=trigger,
                result=result,
                created_at=self._clock(),
            )
        )
        outcome.fallback_id = record.id
        if self._scheduler is not None:
            self._scheduler.run_after(
                self._upgrade_settings.upgrade_delay_seconds,
                partial(self._scheduled_upgrade, record.id),
            )
            outcome.upgrade_scheduled = True
            logger.info(
                "fallback_upgrade_scheduled",
                fallback_id=record.id,
                delay_seconds=self._upgrade_settings.upgrade_delay_seconds,
            )
        return outcome

    # -- Upgrades ----------------------------------------------------------

    async def _scheduled_upgrade(self, fallback_id: str) -> None:
        await self.attempt_upgrade(fallback_id)

    async def attempt_upgrade(
        self, fallback_id: str, options: UpgradeOptions | None = None
    ) -> UpgradeAttempt:
        """Replace a stored fallback result with a fresh AI result when worthwhile.

        Raises:
            FallbackRecordNotFoundError: If ``fallback_id`` is not stored.
        """
        record = await self._store.get(fallback_id)
        if record is None:
            msg = f"Stored fallback '{fallback_id}' not found."
            raise FallbackRecordNotFoundError(msg)

        decision = await self._engine.should_upgrade_fallback_result(fallback_id, options)
        if not decision.should_upgrade:
            return UpgradeAttempt(fallback_id=fallback_id, decision=decision)
        if not await self._breaker.allow_request(self._service):
            logger.info("upgrade_deferred_circuit_open", fallback_id=fallback_id)
            return UpgradeAttempt(
                fallback_id=fallback_id,
                decision=decision,
                error="circuit breaker open",
            )

        started = time.perf_counter()
        try:
            ai_result = await self._client.analyze(record.text, record.relationship_context)
        except Exception as exc:
            if should_trip_circuit(exc):
                await self._breaker.record_failure(self._service, exc)
            logger.warning("upgrade_ai_call_failed", fallback_id=fallback_id, error=str(exc))
            return UpgradeAttempt(fallback_id=fallback_id, decision=decision, error=str(exc))

        latency_ms = round((time.perf_counter() - started) * 1000, 3)
        await self._breaker.record_success(self._service, latency_ms)
        ai_result = ai_result.model_copy(
            update={
                "user_id": ai_result.user_id or record.user_id,
                "processing_time_ms": ai_result.processing_time_ms or latency_ms,
            }
        )
        comparison = compare_ai_and_fallback(ai_result, record.result)
        await self._store.record_ai_result(ai_result)
        await self._store.save(
            record.model_copy(
                update={
                    "ai_result": ai_result,
                    "upgraded": True,
                    "upgraded_at": self._clock(),
                }
            )
        )
        logger.info(
            "fallback_upgraded",
            fallback_id=fallback_id,
            sentiment_agreement=comparison.sentiment_agreement.agreement,
            quality_advantage=comparison.quality_comparison.advantage,
        )
        return UpgradeAttempt(
            fallback_id=fallback_id,
            decision=decision,
            upgraded=True,
            ai_result=ai_result,
            comparison=comparison,
        )
