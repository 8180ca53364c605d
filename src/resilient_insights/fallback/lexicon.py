"""Immutable lexicons, mood tables and sentiment patterns for fallback analysis.

Everything here is built once at import time into frozen, process-wide
configuration. Analyzer calls only read from it, so concurrent analyses
share no mutable state.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from resilient_insights.enums import Sentiment

# ---------------------------------------------------------------------------
# Building blocks
# ---------------------------------------------------------------------------


_INFLECTIONS = r"(?:s|es|d|ed|ing|ly|ful|ness)?"


def _keyword(term: str) -> re.Pattern[str]:
    """Match ``term`` as a whole word, allowing common inflections.

    "sad" matches "sadly" and "sadness" but not "unsaddled"; "mad" does not
    match "made".
    """
    return re.compile(rf"\b{re.escape(term)}{_INFLECTIONS}\b")


@dataclass(frozen=True, slots=True)
class Lexicon:
    """A weighted keyword list.

    Attributes:
        name: Lexicon identifier.
        tag_prefix: Prefix used for matched keywords in result metadata.
        default_weight: Signed weight for keywords without an override.
        keywords: Keywords in match order.
        overrides: Per-keyword signed weights.
    """

    name: str
    tag_prefix: str
    default_weight: float
    keywords: tuple[str, ...]
    overrides: Mapping[str, float] = field(default_factory=dict)
    matchers: tuple[tuple[str, re.Pattern[str]], ...] = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "overrides", MappingProxyType(dict(self.overrides)))
        object.__setattr__(
            self, "matchers", tuple((kw, _keyword(kw)) for kw in self.keywords)
        )

    def weight(self, keyword: str) -> float:
        return self.overrides.get(keyword, self.default_weight)


@dataclass(frozen=True, slots=True)
class MoodIndicator:
    """Keywords suggesting a mood, with the mood's signed weight."""

    mood: str
    keywords: tuple[str, ...]
    weight: float
    matchers: tuple[re.Pattern[str], ...] = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "matchers", tuple(_keyword(kw) for kw in self.keywords)
        )


@dataclass(frozen=True, slots=True)
class SentimentPattern:
    """A named regex signal with polarity, confidence and an insight."""

    name: str
    pattern: re.Pattern[str]
    sentiment: Sentiment
    confidence: float
    insight: str

    @property
    def signed_confidence(self) -> float:
        if self.sentiment is Sentiment.NEGATIVE:
            return -self.confidence
        if self.sentiment is Sentiment.POSITIVE:
            return self.confidence
        return 0.0


@dataclass(frozen=True, slots=True)
class AnalyzerConfig:
    """Complete read-only configuration for the rule-based analyzer."""

    lexicons: tuple[Lexicon, ...]
    moods: tuple[MoodIndicator, ...]
    patterns: tuple[SentimentPattern, ...]
    negation: re.Pattern[str]
    intensifiers: re.Pattern[str]
    diminishers: re.Pattern[str]


# ---------------------------------------------------------------------------
# Lexicons
# ---------------------------------------------------------------------------

POSITIVE = Lexicon(
    name="positive",
    tag_prefix="+",
    default_weight=1.0,
    keywords=(
        "happy", "joy", "love", "excited", "wonderful", "amazing", "great",
        "fantastic", "grateful", "blessed", "content", "peaceful", "fulfilled",
        "delighted", "thrilled", "overjoyed", "ecstatic", "blissful", "cheerful",
        "optimistic", "hopeful", "confident", "proud", "accomplished", "successful",
    ),  # fmt: skip
    overrides={
        "love": 2.0,
        "amazing": 1.8,
        "wonderful": 1.6,
        "ecstatic": 1.9,
        "blissful": 1.7,
        "overjoyed": 1.8,
        "thrilled": 1.5,
        "grateful": 1.4,
        "fulfilled": 1.5,
    },
)

NEGATIVE = Lexicon(
    name="negative",
    tag_prefix="-",
    default_weight=-1.0,
    keywords=(
        "sad", "angry", "frustrated", "disappointed", "terrible", "awful", "hate",
        "depressed", "miserable", "devastated", "heartbroken", "lonely", "isolated",
        "anxious", "worried", "stressed", "overwhelmed", "exhausted", "bitter",
        "resentful", "betrayed", "hurt", "pain", "suffering", "despair",
    ),  # fmt: skip
    overrides={
        "hate": -2.0,
        "terrible": -1.8,
        "awful": -1.6,
        "devastated": -1.9,
        "heartbroken": -1.8,
        "despair": -1.7,
        "betrayed": -1.6,
        "miserable": -1.5,
        "suffering": -1.4,
    },
)

RELATIONSHIP_POSITIVE = Lexicon(
    name="relationship_positive",
    tag_prefix="+rel:",
    default_weight=1.1,
    keywords=(
        "connection", "support", "understanding", "communication", "trust",
        "intimacy", "closeness", "bond", "partnership", "teamwork", "harmony",
        "respect", "appreciation", "affection", "romance", "passion", "commitment",
        "loyalty", "devotion", "caring", "nurturing", "growth", "progress",
        "improvement", "breakthrough", "resolution", "forgiveness", "acceptance",
    ),  # fmt: skip
    overrides={
        "trust": 1.5,
        "intimacy": 1.4,
        "connection": 1.3,
        "understanding": 1.3,
        "communication": 1.2,
        "forgiveness": 1.4,
        "breakthrough": 1.3,
    },
)

RELATIONSHIP_NEGATIVE = Lexicon(
    name="relationship_negative",
    tag_prefix="-rel:",
    default_weight=-1.1,
    keywords=(
        "conflict", "argument", "distance", "misunderstanding", "tension",
        "disagreement", "fight", "quarrel", "discord", "friction", "strain",
        "pressure", "stress", "breakdown", "separation", "divorce", "breakup",
        "rejection", "abandonment", "neglect", "indifference", "coldness",
        "hostility", "resentment", "bitterness", "jealousy", "insecurity", "doubt",
        "mistrust", "betrayal", "infidelity", "deception", "lies",
    ),  # fmt: skip
    overrides={
        "betrayal": -1.8,
        "infidelity": -1.9,
        "divorce": -1.7,
        "breakup": -1.6,
        "abandonment": -1.5,
        "rejection": -1.4,
        "conflict": -1.3,
        "fight": -1.2,
    },
)

# ---------------------------------------------------------------------------
# Mood indicators (first match wins, in table order)
# ---------------------------------------------------------------------------

MOOD_INDICATORS: tuple[MoodIndicator, ...] = (
    MoodIndicator(
        "joyful",
        ("celebration", "laughter", "smile", "giggle", "chuckle", "beam", "grin"),
        1.3,
    ),
    MoodIndicator(
        "content",
        ("peaceful", "calm", "serene", "tranquil", "relaxed", "comfortable"),
        1.1,
    ),
    MoodIndicator(
        "excited",
        ("adventure", "surprise", "spontaneous", "energy", "enthusiasm", "eager"),
        1.2,
    ),
    MoodIndicator(
        "grateful", ("thankful", "blessed", "appreciate", "fortunate", "lucky"), 1.1
    ),
    MoodIndicator(
        "hopeful", ("future", "plans", "dreams", "goals", "potential", "possibility"), 1.0
    ),
    MoodIndicator("sad", ("tears", "cry", "weep", "sob", "mourn", "grieve"), -1.3),
    MoodIndicator(
        "anxious", ("worry", "concern", "fear", "nervous", "uneasy", "restless"), -1.2
    ),
    MoodIndicator(
        "angry", ("rage", "fury", "mad", "irritated", "annoyed", "livid"), -1.4
    ),
    MoodIndicator(
        "frustrated",
        ("stuck", "blocked", "hindered", "obstacle", "barrier", "difficulty"),
        -1.1,
    ),
    MoodIndicator(
        "lonely", ("alone", "isolated", "solitary", "abandoned", "disconnected"), -1.2
    ),
)

# ---------------------------------------------------------------------------
# Sentiment patterns
# ---------------------------------------------------------------------------


def _pattern(
    name: str, regex: str, sentiment: Sentiment, confidence: float, insight: str
) -> SentimentPattern:
    return SentimentPattern(
        name=name,
        pattern=re.compile(regex, re.IGNORECASE),
        sentiment=sentiment,
        confidence=confidence,
        insight=insight,
    )


SENTIMENT_PATTERNS: tuple[SentimentPattern, ...] = (
    _pattern(
        "communication_improvement",
        r"\b(talk|discuss|share|express|listen|hear|understand)\b.*"
        r"\b(better|more|improve|progress)\b",
        Sentiment.POSITIVE,
        0.7,
        "Communication patterns show improvement",
    ),
    _pattern(
        "communication_breakdown",
        r"\b(can't talk|won't listen|ignore|silent treatment|shut down|"
        r"communication.*breakdown|communication.*problems|communication.*issues)\b",
        Sentiment.NEGATIVE,
        0.8,
        "Communication challenges detected",
    ),
    _pattern(
        "quality_time",
        r"\b(together|date|spend.*time|spent.*time|enjoy|fun|laugh|wonderful.*time)\b",
        Sentiment.POSITIVE,
        0.6,
        "Positive quality time activities",
    ),
    _pattern(
        "physical_affection",
        r"\b(hug|kiss|hold hands|cuddle|intimate|close|touch)\b",
        Sentiment.POSITIVE,
        0.7,
        "Physical intimacy and affection present",
    ),
    _pattern(
        "conflict_resolution",
        r"\b(resolved|worked out|compromised|agreed|forgave|apologized)\b",
        Sentiment.POSITIVE,
        0.8,
        "Conflict resolution skills demonstrated",
    ),
    _pattern(
        "recurring_issues",
        r"\b(again|same|always|never|every time|constantly)\b.*"
        r"\b(problem|issue|fight|argument)\b",
        Sentiment.NEGATIVE,
        0.7,
        "Recurring relationship patterns identified",
    ),
    _pattern(
        "growth_mindset",
        r"\b(learn|grow|improve|work on|develop|progress|better)\b.*"
        r"\b(relationship|us|we|together)\b",
        Sentiment.POSITIVE,
        0.6,
        "Growth-oriented relationship approach",
    ),
    _pattern(
        "emotional_distance",
        r"\b(distant|cold|withdrawn|separate|apart|disconnected)\b",
        Sentiment.NEGATIVE,
        0.7,
        "Emotional distance or disconnection noted",
    ),
)

# ---------------------------------------------------------------------------
# Rule word lists
# ---------------------------------------------------------------------------

_NEGATION_RE = re.compile(
    r"\b(?:not|no|never|nothing|nobody|nowhere|none|neither|nor|without)\b|n['’]t\b"
)
_INTENSIFIER_RE = re.compile(
    r"\b(?:very|extremely|incredibly|absolutely|completely|totally)\b"
)
_DIMINISHER_RE = re.compile(r"\b(?:slightly|somewhat|a bit|kind of|sort of)\b")

DEFAULT_CONFIG = AnalyzerConfig(
    lexicons=(POSITIVE, NEGATIVE, RELATIONSHIP_POSITIVE, RELATIONSHIP_NEGATIVE),
    moods=MOOD_INDICATORS,
    patterns=SENTIMENT_PATTERNS,
    negation=_NEGATION_RE,
    intensifiers=_INTENSIFIER_RE,
    diminishers=_DIMINISHER_RE,
)
