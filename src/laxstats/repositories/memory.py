"""
In-process canonical store.

Keeps everything in dicts behind one asyncio.Lock. Used by the test suite and
by ``laxstats ingest --dry-run``; semantics match the PostgreSQL store,
including constraint checks and all-or-nothing batches.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Iterable, Optional

from ..core.errors import ConstraintViolation
from ..core.models import (
    BoxScoreLine,
    CanonicalEntity,
    Checkpoint,
    EntityRef,
    Event,
    EventFilter,
    IdentityLink,
    PendingReview,
)
from ..core.types import EntityKind, SourceId
from .base import CanonicalStore

logger = logging.getLogger(__name__)


class InMemoryStore(CanonicalStore):
    """Dict-backed CanonicalStore."""

    def __init__(self):
        self._lock = asyncio.Lock()
        self._events: dict[str, Event] = {}
        self._lines: dict[str, BoxScoreLine] = {}
        self._checkpoints: dict[SourceId, Checkpoint] = {}
        self._entities: dict[tuple[EntityKind, int], CanonicalEntity] = {}
        self._links: dict[tuple[EntityKind, SourceId, str], IdentityLink] = {}
        self._pending: dict[tuple[SourceId, str], PendingReview] = {}
        self._runs: list[dict[str, Any]] = []

    # -- Events and box scores ------------------------------------------------

    def _check_ref(self, ref: EntityRef) -> None:
        if (ref.kind, ref.canonical_id) not in self._entities:
            raise ConstraintViolation(
                f"Unknown canonical {ref.kind.value} {ref.canonical_id}",
                constraint=f"{ref.kind.value}_exists",
            )

    def _insert(self, events: list[Event], lines: list[BoxScoreLine]) -> int:
        # Validate everything before writing anything
        for event in events:
            self._check_ref(event.team_ref)
            if event.player_ref is not None:
                self._check_ref(event.player_ref)
        for line in lines:
            self._check_ref(line.player_ref)

        inserted = 0
        for event in events:
            if event.event_id not in self._events:
                self._events[event.event_id] = event
                inserted += 1
        for line in lines:
            if line.line_key not in self._lines:
                self._lines[line.line_key] = line
                inserted += 1
        return inserted

    async def upsert(self, events: Iterable[Event], lines: Iterable[BoxScoreLine] = ()) -> int:
        async with self._lock:
            return self._insert(list(events), list(lines))

    async def persist_batch(
        self,
        events: Iterable[Event],
        lines: Iterable[BoxScoreLine],
        checkpoint: Checkpoint,
    ) -> int:
        async with self._lock:
            inserted = self._insert(list(events), list(lines))
            self._checkpoints[checkpoint.source_id] = checkpoint
        return inserted

    async def query_events(self, filter: Optional[EventFilter] = None) -> AsyncIterator[Event]:
        # Iterate a copy so concurrent inserts never disturb a running query
        for event in list(self._events.values()):
            if filter is None or filter.matches(event):
                yield event

    async def query_box_scores(self, filter: Optional[EventFilter] = None) -> AsyncIterator[BoxScoreLine]:
        for line in list(self._lines.values()):
            if filter is None or filter.matches_line(line):
                yield line

    # -- Checkpoints ----------------------------------------------------------

    async def get_checkpoint(self, source_id: SourceId) -> Optional[Checkpoint]:
        return self._checkpoints.get(source_id)

    async def list_checkpoints(self) -> list[Checkpoint]:
        return sorted(self._checkpoints.values(), key=lambda c: c.source_id.value)

    # -- Identity -------------------------------------------------------------

    async def add_entity(self, kind: EntityKind, display_name: str) -> CanonicalEntity:
        async with self._lock:
            next_id = max((cid for k, cid in self._entities if k is kind), default=0) + 1
            entity = CanonicalEntity(kind=kind, canonical_id=next_id, display_name=display_name)
            self._entities[(kind, next_id)] = entity
        return entity

    async def get_entity(self, kind: EntityKind, canonical_id: int) -> Optional[CanonicalEntity]:
        return self._entities.get((kind, canonical_id))

    async def list_entities(self, kind: Optional[EntityKind] = None) -> list[CanonicalEntity]:
        return [
            entity
            for (entity_kind, _), entity in sorted(self._entities.items(), key=lambda item: (item[0][0].value, item[0][1]))
            if kind is None or entity_kind is kind
        ]

    async def add_identity_link(self, link: IdentityLink) -> None:
        async with self._lock:
            if (link.kind, link.canonical_id) not in self._entities:
                raise ConstraintViolation(
                    f"Unknown canonical {link.kind.value} {link.canonical_id}",
                    constraint=f"{link.kind.value}_exists",
                )
            key = (link.kind, link.source_id, link.source_local_id)
            existing = self._links.get(key)
            if existing is not None and existing.canonical_id != link.canonical_id:
                raise ConstraintViolation(
                    f"{link.kind.value} {link.source_id.value}:{link.source_local_id} already linked",
                    constraint="identity_links_pkey",
                )
            self._links[key] = link

    async def list_identity_links(self) -> list[IdentityLink]:
        return list(self._links.values())

    # -- Pending review -------------------------------------------------------

    async def add_pending(self, items: Iterable[PendingReview]) -> int:
        count = 0
        async with self._lock:
            for item in items:
                self._pending[(item.source_id, item.source_local_id)] = item
                count += 1
        return count

    async def list_pending(self, source_id: Optional[SourceId] = None) -> list[PendingReview]:
        items = [p for p in self._pending.values() if source_id is None or p.source_id is source_id]
        return sorted(items, key=lambda p: (p.queued_at, p.source_id.value, p.source_local_id))

    async def remove_pending(self, source_id: SourceId, source_local_ids: Iterable[str]) -> int:
        removed = 0
        async with self._lock:
            for local_id in source_local_ids:
                if self._pending.pop((source_id, local_id), None) is not None:
                    removed += 1
        return removed

    # -- Ingest run log -------------------------------------------------------

    async def record_run(self, run: dict[str, Any]) -> None:
        async with self._lock:
            self._runs.append(dict(run))

    async def list_runs(self, source_id: Optional[SourceId] = None, limit: int = 20) -> list[dict[str, Any]]:
        runs = [
            run for run in reversed(self._runs)
            if source_id is None or run.get("source_id") == source_id.value
        ]
        return runs[:limit]
