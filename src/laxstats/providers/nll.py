"""
National Lacrosse League stats adapter.

Reads completed matches from the NLL stats REST API. Each match carries its
play-by-play and a per-player box score; the adapter slices both into raw
records:

- one record per play (local id ``play:<play id>``)
- one record per box-score cell (local id ``box:<match>:<player>:<column>``)

The API pages by page number, so the cursor is the next page to read. Once
the last page has been read the cursor stays on it, so the next run picks up
matches appended to that page.
"""

import logging
from typing import Any

from ..core.errors import MalformedResponse
from ..core.models import utcnow
from ..core.types import SourceId, get_source_config
from .base import FetchResult, SourceAdapter

logger = logging.getLogger(__name__)

# Row keys that are not per-game stat cells (PTS is derived from G and A)
NON_STAT_COLUMNS = frozenset({"player_id", "player_name", "team_id", "position", "jersey", "PTS"})


def _parse_page(cursor: str | None) -> int:
    if cursor is None:
        return 1
    try:
        page = int(cursor)
    except ValueError as e:
        raise MalformedResponse(f"Invalid NLL cursor: {cursor!r}", SourceId.NLL.value) from e
    if page < 1:
        raise MalformedResponse(f"Invalid NLL cursor: {cursor!r}", SourceId.NLL.value)
    return page



class NLLAdapter(SourceAdapter):
    """NLL REST match-feed adapter."""

    source_id = SourceId.NLL
    SOURCE_ID = SourceId.NLL.value
    BASE_URL = get_source_config(SourceId.NLL).api_base_url

    def __init__(
        self,
        api_key: str | None,
        season: int,
        requests_per_minute: int = 120,
        **kwargs: Any,
    ):
        super().__init__(
            headers={
                "x-api-key": api_key or "",
                "Origin": "https://www.nll.com",
                "Referer": "https://www.nll.com/stats/",
            },
            requests_per_minute=requests_per_minute,
            **kwargs,
        )
        self._api_key = api_key
        self.season = season

    def is_configured(self) -> bool:
        return bool(self._api_key)

    def _match_records(self, match: dict[str, Any], fetched_at) -> list:
        match_id = match.get("id")
        if match_id is None:
            raise MalformedResponse("NLL match without id", self.SOURCE_ID)
        season = match.get("season", self.season)

        records = []
        for play in match.get("plays") or []:
            if not isinstance(play, dict) or play.get("id") is None:
                raise MalformedResponse(f"NLL match {match_id} has a play without id", self.SOURCE_ID)
            records.append(
                self._record(
                    f"play:{play['id']}",
                    {"match_id": match_id, "season": season, "play": play},
                    fetched_at,
                )
            )

        for row in match.get("player_stats") or []:
            if not isinstance(row, dict) or row.get("player_id") is None:
                raise MalformedResponse(f"NLL match {match_id} has a box score row without player", self.SOURCE_ID)
            for column, value in row.items():
                if column in NON_STAT_COLUMNS:
                    continue
                records.append(
                    self._record(
                        f"box:{match_id}:{row['player_id']}:{column}",
                        {
                            "match_id": match_id,
                            "season": season,
                            "player_id": row["player_id"],
                            "player_name": row.get("player_name"),
                            "team_id": row.get("team_id"),
                            "column": column,
                            "value": value,
                        },
                        fetched_at,
                    )
                )
        return records

    async def fetch_batch(self, since: str | None) -> FetchResult:
        page = _parse_page(since)
        response = await self._get(
            "/matches",
            {"season_id": self.season, "page": page, "per_page": self.page_size, "status": "final"},
        )

        matches = response.get("data")
        if not isinstance(matches, list):
            raise MalformedResponse("NLL response has no data list", self.SOURCE_ID)

        fetched_at = utcnow()
        records = []
        for match in matches:
            if not isinstance(match, dict):
                raise MalformedResponse("NLL match is not an object", self.SOURCE_ID)
            records.extend(self._match_records(match, fetched_at))

        has_more = bool((response.get("meta") or {}).get("has_more", False))
        next_cursor = str(page + 1) if has_more else str(page)

        logger.debug(f"NLL {self.season}: page {page} -> {len(matches)} matches, {len(records)} records")
        return FetchResult(records=records, next_cursor=next_cursor, has_more=has_more)
