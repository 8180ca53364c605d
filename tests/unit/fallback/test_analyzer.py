"""Unit tests for resilient_insights.fallback.analyzer - rule-based sentiment."""

from __future__ import annotations

import pytest

from resilient_insights.enums import Sentiment
from resilient_insights.fallback import analyze_sentiment_fallback


class TestSentimentDirection:
    """Keyword, pattern and rule stages pull the score the right way."""

    def test_positive_entry(self) -> None:
        result = analyze_sentiment_fallback(
            "I am so happy and grateful today, we laughed together!"
        )
        assert result.sentiment is Sentiment.POSITIVE
        assert "+happy" in result.metadata.keywords_matched
        assert "+grateful" in result.metadata.keywords_matched
        assert "quality_time" in result.metadata.pattern_matches
        assert "exclamation_emphasis" in result.metadata.rules_fired
        assert result.method == "keyword_sentiment"

    def test_intensifier_boosts_positive(self) -> None:
        result = analyze_sentiment_fallback("I'm extremely happy and absolutely thrilled!")
        assert result.sentiment is Sentiment.POSITIVE
        assert "intensity_boost" in result.metadata.rules_fired
        assert "exclamation_emphasis" in result.metadata.rules_fired

    def test_negative_entry(self) -> None:
        result = analyze_sentiment_fallback(
            "I feel sad and lonely, we had another terrible fight about money"
        )
        assert result.sentiment is Sentiment.NEGATIVE
        assert "-terrible" in result.metadata.keywords_matched
        assert "-rel:fight" in result.metadata.keywords_matched

    def test_negation_flips_positive(self) -> None:
        result = analyze_sentiment_fallback("I am not happy")
        assert result.sentiment is Sentiment.NEGATIVE
        assert "negation_adjustment" in result.metadata.rules_fired
        assert "short_entry_adjustment" in result.metadata.rules_fired

    def test_contraction_counts_as_negation(self) -> None:
        result = analyze_sentiment_fallback("We can't seem to feel hopeful")
        assert "negation_adjustment" in result.metadata.rules_fired

    def test_questions_add_insight(self) -> None:
        result = analyze_sentiment_fallback("Is this working? Are we okay?")
        assert "question_uncertainty" in result.metadata.rules_fired
        assert "Questions indicate reflection or uncertainty" in result.insights

    def test_keywords_match_whole_words_only(self) -> None:
        result = analyze_sentiment_fallback("The unsaddled horse stood there")
        assert "-sad" not in result.metadata.keywords_matched

    def test_inflections_match(self) -> None:
        result = analyze_sentiment_fallback("Sadly, the evening ended early")
        assert "-sad" in result.metadata.keywords_matched

    def test_mood_indicator_wins(self) -> None:
        result = analyze_sentiment_fallback("Tears all evening, I could not stop")
        assert result.mood_suggestion == "sad"


class TestEdgeCases:
    """Degenerate input still yields a valid result."""

    @pytest.mark.parametrize("text", [None, "", "   "])
    def test_empty_input_is_neutral(self, text: str | None) -> None:
        result = analyze_sentiment_fallback(text)
        assert result.sentiment is Sentiment.NEUTRAL
        assert result.confidence_score == 0.1
        assert result.method == "rule_based"
        assert result.metadata.word_count == 0
        assert result.metadata.keywords_matched == []

    @pytest.mark.parametrize("text", ["!!!", "Okay!", "?!"])
    def test_punctuation_without_direction_stays_neutral(self, text: str) -> None:
        result = analyze_sentiment_fallback(text)
        assert result.sentiment is Sentiment.NEUTRAL
        assert result.mood_suggestion == "content"
        assert result.confidence_score <= 0.2
        assert "exclamation_emphasis" in result.metadata.rules_fired

    def test_reason_recorded(self) -> None:
        result = analyze_sentiment_fallback("fine", reason="Circuit breaker open")
        assert result.metadata.fallback_reason == "Circuit breaker open"

    def test_input_truncated_to_max_chars(self) -> None:
        result = analyze_sentiment_fallback("sad " * 100, max_chars=3)
        assert result.metadata.word_count == 1

    def test_deadline_truncates_remaining_stages(self) -> None:
        result = analyze_sentiment_fallback(
            "We talked and it got better, not worse!", budget_ms=1e-9
        )
        assert result.metadata.truncated
        assert result.metadata.rules_fired == ["deadline_truncated"]
        assert result.metadata.pattern_matches == []

    def test_confidence_bounds(self) -> None:
        text = " ".join(["amazing wonderful love trust together"] * 30) + "!!!"
        result = analyze_sentiment_fallback(text)
        assert 0.1 <= result.confidence_score <= 0.9

    def test_deterministic(self) -> None:
        text = "We argued again about the same problem, I feel exhausted"
        first = analyze_sentiment_fallback(text)
        second = analyze_sentiment_fallback(text)
        assert first.sentiment is second.sentiment
        assert first.confidence_score == second.confidence_score
        assert first.metadata == second.metadata
