"""
League source adapters.

One adapter per league, each owning its own authentication, pagination and
rate limiting. Adapters emit RawRecords; they know nothing about canonical
forms or about each other.

Usage:
    from laxstats.providers import get_adapter

    async with get_adapter("PLL", season=2026) as adapter:
        result = await adapter.fetch_batch(since=None)
        for record in result.records:
            print(record.source_local_id)
"""

from typing import Any

from ..core.config import Settings, get_settings
from ..core.types import SourceId
from .base import FetchResult, SourceAdapter

__all__ = [
    "FetchResult",
    "SourceAdapter",
    "get_adapter",
]


def get_adapter(
    source: str | SourceId,
    season: int | None = None,
    settings: Settings | None = None,
    **kwargs: Any,
) -> SourceAdapter:
    """
    Build the adapter for a source from settings.

    Args:
        source: Source id ("PLL", "NLL", "WLA")
        season: Season year to read (defaults to settings.current_season)
        settings: Settings to take credentials and throttles from
        **kwargs: Passed through to the adapter (e.g. transport for tests)

    Returns:
        Configured SourceAdapter

    Raises:
        ValueError: If the source is not known
    """
    settings = settings or get_settings()
    source_id = SourceId(source)
    season = season if season is not None else settings.current_season
    common = {
        "timeout": settings.request_timeout_seconds,
        "page_size": settings.batch_size,
        "requests_per_minute": settings.requests_per_minute[source_id.value],
        **kwargs,
    }

    if source_id is SourceId.PLL:
        from .pll import PLLAdapter
        return PLLAdapter(token=settings.pll_graphql_token, season=season, **common)
    if source_id is SourceId.NLL:
        from .nll import NLLAdapter
        return NLLAdapter(api_key=settings.nll_api_key, season=season, **common)
    if source_id is SourceId.WLA:
        from .wla import WLAAdapter
        return WLAAdapter(api_token=settings.wla_api_token, season=season, **common)
    raise ValueError(f"Unknown source: {source}")
