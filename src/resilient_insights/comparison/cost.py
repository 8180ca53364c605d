"""Cost estimation for re-running fallback results through the AI service."""

from __future__ import annotations

from resilient_insights.comparison.models import StoredFallback


class KeywordCountCostEstimator:
    """Rough USD estimate from the number of matched fallback keywords.

    The keyword count stands in for entry length: roughly ten tokens per
    keyword at ``per_thousand_tokens`` dollars per thousand tokens, on top
    of a fixed per-request charge.
    """

    def __init__(
        self,
        base_cost: float = 0.02,
        tokens_per_keyword: int = 10,
        per_thousand_tokens: float = 0.01,
    ) -> None:
        self._base_cost = base_cost
        self._tokens_per_keyword = tokens_per_keyword
        self._per_thousand_tokens = per_thousand_tokens

    def estimate(self, record: StoredFallback) -> float:
        keywords = len(record.result.sentiment.metadata.keywords_matched)
        tokens = keywords * self._tokens_per_keyword
        return round(self._base_cost + tokens / 1000 * self._per_thousand_tokens, 6)
