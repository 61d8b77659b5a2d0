"""
Western Lacrosse Association stats adapter.

Reads game events from the WLA stats feed, which authenticates with an
``api_token`` query parameter and pages with an opaque ``next_cursor``.
When the feed reports no further cursor the adapter keeps the one it was
given, so the next run re-reads the tail of the feed.
"""

import logging
from typing import Any

from ..core.errors import MalformedResponse
from ..core.models import utcnow
from ..core.types import SourceId, get_source_config
from .base import FetchResult, SourceAdapter

logger = logging.getLogger(__name__)


class WLAAdapter(SourceAdapter):
    """WLA REST event-feed adapter."""

    source_id = SourceId.WLA
    SOURCE_ID = SourceId.WLA.value
    BASE_URL = get_source_config(SourceId.WLA).api_base_url

    def __init__(
        self,
        api_token: str | None,
        season: int,
        requests_per_minute: int = 30,
        **kwargs: Any,
    ):
        # WLA uses api_token as a query parameter, not a header
        super().__init__(
            params={"api_token": api_token or ""},
            requests_per_minute=requests_per_minute,
            **kwargs,
        )
        self._api_token = api_token
        self.season = season

    def is_configured(self) -> bool:
        return bool(self._api_token)

    async def fetch_batch(self, since: str | None) -> FetchResult:
        params: dict[str, Any] = {"season": self.season, "per_page": self.page_size}
        if since:
            params["cursor"] = since
        response = await self._get("/events", params)

        events = response.get("data")
        if not isinstance(events, list):
            raise MalformedResponse("WLA response has no data list", self.SOURCE_ID)

        fetched_at = utcnow()
        records = []
        for event in events:
            if not isinstance(event, dict) or event.get("event_id") is None:
                raise MalformedResponse("WLA event without event_id", self.SOURCE_ID)
            records.append(self._record(event["event_id"], event, fetched_at))

        next_cursor = (response.get("meta") or {}).get("next_cursor")
        has_more = bool(next_cursor)

        logger.debug(f"WLA {self.season}: fetched {len(records)} events after cursor {since!r}")
        return FetchResult(
            records=records,
            next_cursor=str(next_cursor) if next_cursor else since,
            has_more=has_more,
        )
