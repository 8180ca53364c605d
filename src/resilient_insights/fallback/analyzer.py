"""Deterministic keyword, pattern and rule sentiment analysis.

Used in place of the AI service when it is unavailable. The analysis is a
pure function of the input text: it reads only the frozen configuration in
:mod:`resilient_insights.fallback.lexicon`, performs no I/O and never raises.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

import structlog

from resilient_insights.enums import Sentiment
from resilient_insights.fallback.lexicon import DEFAULT_CONFIG, AnalyzerConfig
from resilient_insights.fallback.models import FallbackMetadata, FallbackResult

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

_DEFAULT_REASON = "API unavailable"
_DEFAULT_BUDGET_MS = 100.0
_DEFAULT_MAX_CHARS = 20_000

_SENTIMENT_THRESHOLD = 0.2
_NEGATION_PENALTY = 0.5
_INTENSIFIER_FACTOR = 1.3
_DIMINISHER_FACTOR = 0.7
_QUESTION_PENALTY = 0.1
_EXCLAMATION_STEP = 0.2
_EXCLAMATION_CAP = 0.6
_SHORT_ENTRY_WORDS = 10
_DETAILED_ENTRY_WORDS = 50
_SHORT_ENTRY_FACTOR = 0.7
_DETAILED_ENTRY_FACTOR = 1.2

_MIN_CONFIDENCE = 0.1
_MAX_CONFIDENCE = 0.9
_WEIGHT_CONFIDENCE_CAP = 0.6
_SIGNAL_BONUS = {"keywords": 0.1, "patterns": 0.15, "rules": 0.1}
_LONG_ENTRY_WORDS = 20


@dataclass(slots=True)
class _Tally:
    """Running state of one analysis; never shared between calls."""

    score: float = 0.0
    weight: float = 0.0
    keywords: list[str] = field(default_factory=list)
    patterns: list[str] = field(default_factory=list)
    rules: list[str] = field(default_factory=list)
    insights: list[str] = field(default_factory=list)


class _Deadline:
    def __init__(self, budget_ms: float) -> None:
        self._expires = time.perf_counter() + budget_ms / 1000

    def expired(self) -> bool:
        return time.perf_counter() >= self._expires


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------


def _score_keywords(text: str, tally: _Tally, config: AnalyzerConfig) -> None:
    for lexicon in config.lexicons:
        for keyword, matcher in lexicon.matchers:
            if matcher.search(text):
                weight = lexicon.weight(keyword)
                tally.score += weight
                tally.weight += abs(weight)
                tally.keywords.append(f"{lexicon.tag_prefix}{keyword}")


def _match_patterns(text: str, tally: _Tally, config: AnalyzerConfig) -> None:
    for pattern in config.patterns:
        if pattern.pattern.search(text):
            tally.score += pattern.signed_confidence
            tally.weight += pattern.confidence
            tally.patterns.append(pattern.name)
            tally.insights.append(pattern.insight)


def _apply_rules(
    text: str, word_count: int, tally: _Tally, config: AnalyzerConfig
) -> None:
    if config.negation.search(text):
        if tally.score > 0:
            tally.score = -abs(tally.score) * _NEGATION_PENALTY
        tally.score -= _NEGATION_PENALTY
        tally.weight += _NEGATION_PENALTY
        tally.rules.append("negation_adjustment")

    multiplier = 1.0
    if config.intensifiers.search(text):
        multiplier = _INTENSIFIER_FACTOR
        tally.rules.append("intensity_boost")
    # A diminisher wins over an intensifier in the same entry.
    if config.diminishers.search(text):
        multiplier = _DIMINISHER_FACTOR
        tally.rules.append("intensity_reduction")
    tally.score *= multiplier

    questions = text.count("?")
    if questions:
        tally.score -= questions * _QUESTION_PENALTY
        tally.weight += questions * _QUESTION_PENALTY
        tally.rules.append("question_uncertainty")
        tally.insights.append("Questions indicate reflection or uncertainty")

    exclamations = text.count("!")
    if exclamations:
        boost = min(exclamations * _EXCLAMATION_STEP, _EXCLAMATION_CAP)
        if tally.score > 0:
            tally.score += boost
        elif tally.score < 0:
            tally.score -= boost
        tally.weight += boost
        tally.rules.append("exclamation_emphasis")
        tally.insights.append("Strong emotional expression detected")

    if word_count < _SHORT_ENTRY_WORDS:
        tally.weight *= _SHORT_ENTRY_FACTOR
        tally.rules.append("short_entry_adjustment")
    elif word_count > _DETAILED_ENTRY_WORDS:
        tally.weight *= _DETAILED_ENTRY_FACTOR
        tally.rules.append("detailed_entry_boost")


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


def _classify(normalized: float) -> Sentiment:
    if normalized > _SENTIMENT_THRESHOLD:
        return Sentiment.POSITIVE
    if normalized < -_SENTIMENT_THRESHOLD:
        return Sentiment.NEGATIVE
    return Sentiment.NEUTRAL


def _confidence(tally: _Tally, word_count: int) -> float:
    confidence = min(tally.weight / 3, _WEIGHT_CONFIDENCE_CAP)
    if tally.keywords:
        confidence += _SIGNAL_BONUS["keywords"]
    if tally.patterns:
        confidence += _SIGNAL_BONUS["patterns"]
    if tally.rules:
        confidence += _SIGNAL_BONUS["rules"]
    if word_count >= _LONG_ENTRY_WORDS:
        confidence += 0.05
    elif word_count < _SHORT_ENTRY_WORDS:
        confidence -= 0.1
    return round(max(_MIN_CONFIDENCE, min(_MAX_CONFIDENCE, confidence)), 4)


def _suggest_mood(
    text: str, sentiment: Sentiment, normalized: float, config: AnalyzerConfig
) -> str:
    for indicator in config.moods:
        if any(matcher.search(text) for matcher in indicator.matchers):
            return indicator.mood
    if sentiment is Sentiment.POSITIVE:
        if normalized > 1.0:
            return "joyful"
        return "content" if normalized > 0.5 else "hopeful"
    if sentiment is Sentiment.NEGATIVE:
        if normalized < -1.0:
            return "sad"
        return "frustrated" if normalized < -0.5 else "anxious"
    return "content"


def _method(tally: _Tally) -> str:
    if tally.keywords:
        return "keyword_sentiment"
    if tally.patterns:
        return "pattern_matching"
    return "rule_based"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def analyze_sentiment_fallback(
    text: str | None,
    reason: str = _DEFAULT_REASON,
    *,
    budget_ms: float = _DEFAULT_BUDGET_MS,
    max_chars: int = _DEFAULT_MAX_CHARS,
    config: AnalyzerConfig = DEFAULT_CONFIG,
) -> FallbackResult:
    """Analyze ``text`` with keyword, pattern and rule scoring.

    The three stages run in order against the lower-cased text. The
    deadline is checked between stages; when it passes, the remaining
    stages are skipped and the result is marked ``truncated`` rather than
    overrunning the budget.

    Args:
        text: Raw entry text. ``None`` and empty strings are accepted.
        reason: Why fallback analysis was used, stored in metadata.
        budget_ms: Soft wall-clock budget for the analysis.
        max_chars: Longer input is cut to this many characters first.
        config: Lexicon and pattern configuration.

    Returns:
        A structurally valid :class:`FallbackResult`; never raises.
    """
    started = time.perf_counter()
    try:
        return _analyze(text, reason, budget_ms, max_chars, config, started)
    except Exception:
        logger.exception("fallback_analysis_error", reason=reason)
        return FallbackResult(
            sentiment=Sentiment.NEUTRAL,
            confidence_score=_MIN_CONFIDENCE,
            mood_suggestion="content",
            insights=[],
            method="rule_based",
            processing_time_ms=_elapsed_ms(started),
            metadata=FallbackMetadata(
                rules_fired=["analysis_error"], fallback_reason=reason
            ),
        )


def _analyze(
    text: str | None,
    reason: str,
    budget_ms: float,
    max_chars: int,
    config: AnalyzerConfig,
    started: float,
) -> FallbackResult:
    deadline = _Deadline(budget_ms)
    normalized_text = (text or "")[:max_chars].lower().strip()
    word_count = len(normalized_text.split())
    tally = _Tally()
    truncated = False

    stages = (
        lambda: _score_keywords(normalized_text, tally, config),
        lambda: _match_patterns(normalized_text, tally, config),
        lambda: _apply_rules(normalized_text, word_count, tally, config),
    )
    for index, stage in enumerate(stages):
        if index and deadline.expired():
            truncated = True
            tally.rules.append("deadline_truncated")
            break
        stage()

    normalized = tally.score / tally.weight if tally.weight > 0 else 0.0
    if not any(ch.isalnum() for ch in normalized_text):
        # Punctuation alone carries no direction.
        normalized = 0.0
    sentiment = _classify(normalized)
    result = FallbackResult(
        sentiment=sentiment,
        confidence_score=_confidence(tally, word_count),
        mood_suggestion=_suggest_mood(normalized_text, sentiment, normalized, config),
        insights=tally.insights,
        method=_method(tally),
        processing_time_ms=_elapsed_ms(started),
        metadata=FallbackMetadata(
            keywords_matched=tally.keywords,
            rules_fired=tally.rules,
            pattern_matches=tally.patterns,
            fallback_reason=reason,
            word_count=word_count,
            truncated=truncated,
        ),
    )
    if truncated:
        logger.warning(
            "fallback_analysis_truncated", budget_ms=budget_ms, word_count=word_count
        )
    logger.debug(
        "fallback_analysis_complete",
        sentiment=result.sentiment.value,
        confidence=result.confidence_score,
        keywords=len(tally.keywords),
        patterns=len(tally.patterns),
        rules=len(tally.rules),
        processing_time_ms=result.processing_time_ms,
    )
    return result


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)
