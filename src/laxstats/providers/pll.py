"""
Premier Lacrosse League stats adapter.

Reads play-by-play logs from the PLL stats GraphQL API
(https://api.stats.premierlacrosseleague.com/graphql). The API pages by
offset, so the cursor is the offset of the next unread play.

GraphQL reports failures in an ``errors`` array with HTTP 200; an
UNAUTHENTICATED code there means the bearer token has expired.
"""

import logging
from typing import Any

from ..core.errors import AuthExpired, MalformedResponse
from ..core.models import utcnow
from ..core.types import SourceId, get_source_config
from .base import FetchResult, SourceAdapter

logger = logging.getLogger(__name__)

PLAY_LOGS_QUERY = """
query($year: Int!, $offset: Int!, $limit: Int!) {
  playLogs(year: $year, offset: $offset, limit: $limit) {
    total
    items {
      id
      year
      gameId
      period
      clock
      eventType
      teamId
      teamName
      playerId
      playerName
      description
    }
  }
}
"""


def _parse_offset(cursor: str | None) -> int:
    if cursor is None:
        return 0
    try:
        offset = int(cursor)
    except ValueError as e:
        raise MalformedResponse(f"Invalid PLL cursor: {cursor!r}", SourceId.PLL.value) from e
    if offset < 0:
        raise MalformedResponse(f"Invalid PLL cursor: {cursor!r}", SourceId.PLL.value)
    return offset



class PLLAdapter(SourceAdapter):
    """PLL GraphQL play-by-play adapter."""

    source_id = SourceId.PLL
    SOURCE_ID = SourceId.PLL.value
    BASE_URL = get_source_config(SourceId.PLL).api_base_url

    def __init__(
        self,
        token: str | None,
        season: int,
        requests_per_minute: int = 60,
        **kwargs: Any,
    ):
        super().__init__(
            headers={
                "Authorization": f"Bearer {token or ''}",
                "origin": "https://stats.premierlacrosseleague.com",
                "referer": "https://stats.premierlacrosseleague.com/",
            },
            requests_per_minute=requests_per_minute,
            **kwargs,
        )
        self._token = token
        self.season = season

    def is_configured(self) -> bool:
        return bool(self._token)

    async def _query(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        """Run a GraphQL query and return its ``data`` object."""
        body = await self._post("", json={"query": query, "variables": variables})

        errors = body.get("errors")
        if errors:
            codes = {
                (error.get("extensions") or {}).get("code")
                for error in errors
                if isinstance(error, dict)
            }
            messages = "; ".join(
                str(error.get("message", error)) if isinstance(error, dict) else str(error)
                for error in errors
            )
            if "UNAUTHENTICATED" in codes or "FORBIDDEN" in codes:
                raise AuthExpired(f"PLL GraphQL rejected credentials: {messages}", self.SOURCE_ID)
            raise MalformedResponse(f"PLL GraphQL errors: {messages}", self.SOURCE_ID)

        data = body.get("data")
        if not isinstance(data, dict):
            raise MalformedResponse("PLL GraphQL response has no data object", self.SOURCE_ID)
        return data

    async def fetch_batch(self, since: str | None) -> FetchResult:
        offset = _parse_offset(since)
        data = await self._query(
            PLAY_LOGS_QUERY,
            {"year": self.season, "offset": offset, "limit": self.page_size},
        )

        logs = data.get("playLogs")
        if not isinstance(logs, dict) or not isinstance(logs.get("items"), list):
            raise MalformedResponse("PLL playLogs missing items", self.SOURCE_ID)

        fetched_at = utcnow()
        records = []
        for item in logs["items"]:
            if not isinstance(item, dict) or item.get("id") is None:
                raise MalformedResponse("PLL play log item without id", self.SOURCE_ID)
            records.append(self._record(item["id"], item, fetched_at))

        total = logs.get("total")
        next_offset = offset + len(records)
        has_more = bool(records) and isinstance(total, int) and next_offset < total

        logger.debug(f"PLL {self.season}: fetched {len(records)} plays at offset {offset}")
        return FetchResult(records=records, next_cursor=str(next_offset), has_more=has_more)
