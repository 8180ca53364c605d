"""resilient-insights: Resilience and degradation layer for AI text analysis."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("resilient-insights")
except PackageNotFoundError:
    __version__ = "0.1.0"

__all__ = ["__version__"]
