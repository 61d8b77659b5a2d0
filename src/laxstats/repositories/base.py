"""
Canonical store interface.

Defines the persistence contract the orchestrator, identity map and
aggregation engine rely on, so the PostgreSQL store and the in-process store
are interchangeable.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Iterable, Optional

from ..core.models import (
    BoxScoreLine,
    CanonicalEntity,
    Checkpoint,
    Event,
    EventFilter,
    IdentityLink,
    PendingReview,
)
from ..core.types import EntityKind, SourceId


class CanonicalStore(ABC):
    """
    Abstract interface for the canonical statistics store.

    Invariants every implementation keeps:
    - An event is stored at most once per event_id; a box-score line at most
      once per line_key. Re-inserting either is a no-op, not an update.
    - Events and lines may only reference canonical entities that exist.
    - persist_batch writes the batch and the checkpoint together or not at all.
    """

    # =========================================================================
    # Events and box scores
    # =========================================================================

    @abstractmethod
    async def upsert(
        self,
        events: Iterable[Event],
        lines: Iterable[BoxScoreLine] = (),
    ) -> int:
        """
        Insert events and box-score lines that are not already stored.

        Args:
            events: Canonical events
            lines: Canonical box-score lines

        Returns:
            Number of newly inserted records (events plus lines)

        Raises:
            ConstraintViolation: A record references an unknown entity
            StoreUnavailable: The store could not be written
        """
        ...

    @abstractmethod
    async def persist_batch(
        self,
        events: Iterable[Event],
        lines: Iterable[BoxScoreLine],
        checkpoint: Checkpoint,
    ) -> int:
        """
        Atomically upsert a batch and advance its source's checkpoint.

        Returns:
            Number of newly inserted records
        """
        ...

    @abstractmethod
    def query_events(self, filter: Optional[EventFilter] = None) -> AsyncIterator[Event]:
        """
        Iterate stored events matching ``filter``.

        Each call starts a fresh, finite iteration in insertion order.
        """
        ...

    @abstractmethod
    def query_box_scores(self, filter: Optional[EventFilter] = None) -> AsyncIterator[BoxScoreLine]:
        """Iterate stored box-score lines matching ``filter``."""
        ...

    # =========================================================================
    # Checkpoints
    # =========================================================================

    @abstractmethod
    async def get_checkpoint(self, source_id: SourceId) -> Optional[Checkpoint]:
        ...

    @abstractmethod
    async def list_checkpoints(self) -> list[Checkpoint]:
        ...

    # =========================================================================
    # Identity
    # =========================================================================

    @abstractmethod
    async def add_entity(self, kind: EntityKind, display_name: str) -> CanonicalEntity:
        """Create a canonical entity with the next free id for its kind."""
        ...

    @abstractmethod
    async def get_entity(self, kind: EntityKind, canonical_id: int) -> Optional[CanonicalEntity]:
        ...

    @abstractmethod
    async def list_entities(self, kind: Optional[EntityKind] = None) -> list[CanonicalEntity]:
        ...

    @abstractmethod
    async def add_identity_link(self, link: IdentityLink) -> None:
        """
        Store an identity mapping.

        Raises:
            ConstraintViolation: The canonical entity does not exist, or the
                source id is already mapped elsewhere
        """
        ...

    @abstractmethod
    async def list_identity_links(self) -> list[IdentityLink]:
        ...

    # =========================================================================
    # Pending review
    # =========================================================================

    @abstractmethod
    async def add_pending(self, items: Iterable[PendingReview]) -> int:
        """Queue records for review, replacing any earlier entry for the same record."""
        ...

    @abstractmethod
    async def list_pending(self, source_id: Optional[SourceId] = None) -> list[PendingReview]:
        ...

    @abstractmethod
    async def remove_pending(self, source_id: SourceId, source_local_ids: Iterable[str]) -> int:
        ...

    # =========================================================================
    # Ingest run log
    # =========================================================================

    @abstractmethod
    async def record_run(self, run: dict[str, Any]) -> None:
        """Append one orchestrator cycle result (IngestRunResult.to_dict())."""
        ...

    @abstractmethod
    async def list_runs(self, source_id: Optional[SourceId] = None, limit: int = 20) -> list[dict[str, Any]]:
        """Most recent runs first."""
        ...

    async def close(self) -> None:
        """Release store resources."""
        return None
