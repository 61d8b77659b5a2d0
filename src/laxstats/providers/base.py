"""
Base source adapter protocol and types.

Defines the interface that every league adapter implements so the
orchestrator can drive them without knowing any source's API shape.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from ..core.http import BaseApiClient
from ..core.models import RawRecord, utcnow
from ..core.types import SourceId


@dataclass
class FetchResult:
    """
    Result of one fetch_batch call.

    Attributes:
        records: Raw records in source order
        next_cursor: Cursor to resume from after this batch is persisted
        has_more: Whether the source reported further pages
    """

    records: list[RawRecord]
    next_cursor: str | None = None
    has_more: bool = False


class SourceAdapter(BaseApiClient, ABC):
    """
    Abstract interface for league source adapters.

    The adapter is responsible for:
    1. Authenticated, rate-limited calls to one source's API
    2. Pagination through a resumable cursor
    3. Slicing responses into RawRecords tagged with the source id

    The adapter is NOT responsible for:
    - Canonical mapping or identity resolution (handled by the normalizer)
    - Retries and backoff (handled by the orchestrator)
    - Persistence (handled by repositories)
    """

    source_id: SourceId

    def __init__(self, *, page_size: int = 100, **kwargs: Any):
        super().__init__(**kwargs)
        self.page_size = page_size

    @abstractmethod
    async def fetch_batch(self, since: str | None) -> FetchResult:
        """
        Fetch the batch that follows ``since``.

        Args:
            since: Cursor previously returned by this adapter, or None to
                start from the beginning of the configured season

        Returns:
            FetchResult with records and the cursor to resume from

        Raises:
            SourceError: RateLimited, AuthExpired, Unavailable or
                MalformedResponse
        """
        ...

    def _record(self, local_id: Any, payload: dict[str, Any], fetched_at=None) -> RawRecord:
        return RawRecord(
            source_id=self.source_id,
            source_local_id=str(local_id),
            payload=payload,
            fetched_at=fetched_at or utcnow(),
        )

    def is_configured(self) -> bool:
        """Whether credentials for this source are present."""
        return True
