"""
Per-source ingestion orchestrator.

Drives one source adapter through fetch -> normalize -> deduplicate ->
persist, one batch at a time, resuming from the source's checkpoint:

    Idle -> Fetching -> Normalizing -> Persisting -> Idle
               |  ^
               v  |
             Backoff

Failure handling:
- RateLimited / Unavailable (including fetch timeouts): retried with
  exponential backoff; after max attempts the source is degraded and
  skipped for this cycle.
- AuthExpired: the source is blocked until reset_credentials() is called.
- MalformedResponse: the cycle stops, the checkpoint stays where it was.
- Record-level NormalizationErrors are counted and never stop the batch;
  unmappable identities go to the pending-review queue.
- StoreError: the cycle stops; the batch and its checkpoint were written
  together or not at all.

Cancellation is honoured between batches. A persist that has started is
shielded and completes before the CancelledError propagates, and the
cancelled run is still written to the run log.

Usage:
    orchestrator = Orchestrator(adapter, store, normalizer)
    result = await orchestrator.run_cycle()
    print(result.to_dict())
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from ..core.errors import (
    AuthExpired,
    MalformedResponse,
    NormalizationError,
    RateLimited,
    SourceError,
    StoreError,
    Unavailable,
    UnmappableIdentity,
    UnrecognizedShape,
)
from ..core.models import BoxScoreLine, Checkpoint, Event, PendingReview, RawRecord, utcnow
from ..core.types import EntityKind

if TYPE_CHECKING:
    from ..normalizer import Normalizer
    from ..providers.base import FetchResult, SourceAdapter
    from ..repositories.base import CanonicalStore

logger = logging.getLogger(__name__)

PersistCallback = Callable[[list[Event], list[BoxScoreLine]], Optional[Awaitable[Any]]]


class IngestState(str, Enum):
    idle = "idle"
    fetching = "fetching"
    normalizing = "normalizing"
    persisting = "persisting"
    backoff = "backoff"


class RunStatus(str, Enum):
    success = "success"
    degraded = "degraded"
    auth_failed = "auth_failed"
    malformed = "malformed"
    store_failed = "store_failed"
    cancelled = "cancelled"


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff for transient source failures."""

    max_attempts: int = 5
    base_delay: float = 1.0
    max_delay: float = 60.0

    def delay(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """
        Seconds to wait after the given (1-based) failed attempt.

        A source-supplied Retry-After is honoured when it asks for longer
        than the computed backoff.
        """
        backoff = min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))
        if retry_after is not None:
            return max(backoff, retry_after)
        return backoff


@dataclass
class IngestRunResult:
    """Result of one orchestrator cycle for one source."""

    source_id: str
    status: RunStatus = RunStatus.success
    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    batches: int = 0
    fetched: int = 0
    normalized: int = 0
    inserted: int = 0
    unrecognized: int = 0
    pending: int = 0
    attempts: int = 0
    last_cursor: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is RunStatus.success

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_id": self.source_id,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "batches": self.batches,
            "fetched": self.fetched,
            "normalized": self.normalized,
            "inserted": self.inserted,
            "unrecognized": self.unrecognized,
            "pending": self.pending,
            "attempts": self.attempts,
            "last_cursor": self.last_cursor,
            "error": self.error,
        }


@dataclass
class ReplayResult:
    """Result of replaying a source's pending-review queue."""

    source_id: str
    replayed: int = 0
    inserted: int = 0
    resolved: int = 0
    still_pending: int = 0
    unrecognized: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_id": self.source_id,
            "replayed": self.replayed,
            "inserted": self.inserted,
            "resolved": self.resolved,
            "still_pending": self.still_pending,
            "unrecognized": self.unrecognized,
        }


@dataclass
class NormalizedBatch:
    """Partitioned normalizer output for one fetched batch."""

    events: dict[str, Event] = field(default_factory=dict)
    lines: dict[str, BoxScoreLine] = field(default_factory=dict)
    pending: list[PendingReview] = field(default_factory=list)
    unrecognized: int = 0

    @property
    def normalized(self) -> int:
        return len(self.events) + len(self.lines)


def pending_entry(record: RawRecord, error: UnmappableIdentity) -> PendingReview:
    """Build the pending-review entry for a record whose identity did not resolve."""
    return PendingReview(
        source_id=record.source_id,
        source_local_id=record.source_local_id,
        kind=EntityKind(error.kind),
        unresolved_local_id=error.source_local_id,
        display_name=error.display_name,
        reason=error.message,
        payload=record.payload,
    )


class Orchestrator:
    """
    Ingestion state machine for one source.

    The orchestrator owns its source's checkpoint; nothing else writes it.
    """

    def __init__(
        self,
        adapter: "SourceAdapter",
        store: "CanonicalStore",
        normalizer: "Normalizer",
        policy: Optional[RetryPolicy] = None,
        fetch_timeout: float = 30.0,
        on_persisted: Optional[PersistCallback] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Args:
            adapter: Source adapter to drive
            store: Canonical store shared with the other orchestrators
            normalizer: Normalizer bound to the shared identity map
            policy: Backoff policy for transient failures
            fetch_timeout: Bound on one fetch_batch call; exceeding it counts
                as Unavailable
            on_persisted: Called with each persisted batch (e.g. to feed the
                aggregation engine incrementally)
            sleep: Awaitable sleep used for backoff (replaced in tests)
        """
        self.adapter = adapter
        self.store = store
        self.normalizer = normalizer
        self.policy = policy or RetryPolicy()
        self.fetch_timeout = fetch_timeout
        self.on_persisted = on_persisted
        self._sleep = sleep
        self.state = IngestState.idle
        self._auth_error: Optional[AuthExpired] = None

    @property
    def source_id(self):
        return self.adapter.source_id

    @property
    def auth_blocked(self) -> bool:
        return self._auth_error is not None

    def reset_credentials(self, adapter: Optional["SourceAdapter"] = None) -> None:
        """
        Clear the auth-failed block after credentials were refreshed.

        Args:
            adapter: Replacement adapter built with the new credentials
        """
        if adapter is not None:
            if adapter.source_id is not self.source_id:
                raise ValueError(f"Adapter for {adapter.source_id.value} cannot replace {self.source_id.value}")
            self.adapter = adapter
        self._auth_error = None
        logger.info(f"{self.source_id.value}: credentials reset")

    # =========================================================================
    # Cycle
    # =========================================================================

    async def run_cycle(self, max_batches: Optional[int] = None) -> IngestRunResult:
        """
        Ingest batches from the checkpoint until the source has no more.

        Args:
            max_batches: Stop after this many batches even if more remain

        Returns:
            IngestRunResult (also appended to the store's run log)
        """
        source = self.source_id.value
        result = IngestRunResult(source_id=source)

        if self._auth_error is not None:
            result.status = RunStatus.auth_failed
            result.error = f"Credentials rejected: {self._auth_error.message}"
            logger.warning(f"{source}: skipped, credentials must be refreshed")
            return await self._finish(result)

        try:
            checkpoint = await self.store.get_checkpoint(self.source_id)
            cursor = checkpoint.last_cursor if checkpoint else None
            result.last_cursor = cursor

            while max_batches is None or result.batches < max_batches:
                fetch = await self._fetch(cursor, result)
                batch = self._normalize(fetch.records)
                result.fetched += len(fetch.records)
                result.normalized += batch.normalized
                result.unrecognized += batch.unrecognized
                result.pending += len(batch.pending)

                inserted = await self._persist_shielded(batch, fetch.next_cursor)
                result.inserted += inserted
                result.batches += 1
                cursor = fetch.next_cursor
                result.last_cursor = cursor

                logger.info(
                    f"{source}: batch {result.batches} fetched={len(fetch.records)} "
                    f"normalized={batch.normalized} unrecognized={batch.unrecognized} "
                    f"pending={len(batch.pending)} inserted={inserted} cursor={cursor!r}"
                )
                if not fetch.has_more:
                    break

        except AuthExpired as e:
            self._auth_error = e
            result.status = RunStatus.auth_failed
            result.error = e.message
            logger.error(f"{source}: credentials rejected, source blocked until reset: {e.message}")
        except (RateLimited, Unavailable) as e:
            result.status = RunStatus.degraded
            result.error = e.message
            logger.warning(f"{source}: degraded after {self.policy.max_attempts} attempts: {e.message}")
        except (MalformedResponse, SourceError) as e:
            result.status = RunStatus.malformed
            result.error = e.message
            logger.error(f"{source}: malformed response, cycle aborted at cursor {result.last_cursor!r}: {e.message}")
        except StoreError as e:
            result.status = RunStatus.store_failed
            result.error = e.message
            logger.error(f"{source}: store failure, cycle aborted at cursor {result.last_cursor!r}: {e.message}")
        except asyncio.CancelledError:
            result.status = RunStatus.cancelled
            result.error = f"cancelled after {result.batches} batches"
            logger.info(f"{source}: cancelled after {result.batches} batches")
            self.state = IngestState.idle
            # The run log entry lands even though the cycle is being torn down
            await asyncio.shield(self._finish(result))
            raise
        finally:
            self.state = IngestState.idle

        return await self._finish(result)

    async def _finish(self, result: IngestRunResult) -> IngestRunResult:
        result.finished_at = utcnow()
        try:
            await self.store.record_run(result.to_dict())
        except StoreError as e:
            logger.warning(f"{result.source_id}: could not record ingest run: {e.message}")
        logger.info(
            f"{result.source_id}: cycle {result.status.value} "
            f"({result.batches} batches, {result.inserted} inserted, "
            f"{result.unrecognized} unrecognized, {result.pending} pending)"
        )
        return result

    # =========================================================================
    # Steps
    # =========================================================================

    async def _fetch(self, cursor: Optional[str], result: IngestRunResult) -> "FetchResult":
        """Fetch one batch, backing off on transient failures."""
        source = self.source_id.value
        attempt = 0
        while True:
            attempt += 1
            result.attempts += 1
            self.state = IngestState.fetching
            try:
                return await asyncio.wait_for(self.adapter.fetch_batch(cursor), timeout=self.fetch_timeout)
            except asyncio.TimeoutError:
                error: SourceError = Unavailable(f"fetch timed out after {self.fetch_timeout}s", source)
            except (RateLimited, Unavailable) as e:
                error = e

            if attempt >= self.policy.max_attempts:
                raise error

            retry_after = error.retry_after if isinstance(error, RateLimited) else None
            delay = self.policy.delay(attempt, retry_after)
            self.state = IngestState.backoff
            logger.warning(
                f"{source}: {error.code} on attempt {attempt}/{self.policy.max_attempts}, "
                f"retrying in {delay:.1f}s"
            )
            await self._sleep(delay)

    def _normalize(self, records: list[RawRecord]) -> NormalizedBatch:
        """Normalize and deduplicate a batch; record failures never abort it."""
        self.state = IngestState.normalizing
        batch = NormalizedBatch()
        for record in records:
            try:
                item = self.normalizer.normalize(record)
            except UnmappableIdentity as e:
                batch.pending.append(pending_entry(record, e))
                logger.debug(f"{record.source_id.value}:{record.source_local_id} queued for review: {e.message}")
            except UnrecognizedShape as e:
                batch.unrecognized += 1
                logger.warning(f"{record.source_id.value}:{record.source_local_id} skipped: {e.message}")
            except NormalizationError as e:
                batch.unrecognized += 1
                logger.warning(f"{record.source_id.value}:{record.source_local_id} skipped: {e.message}")
            else:
                if isinstance(item, Event):
                    batch.events.setdefault(item.event_id, item)
                else:
                    batch.lines.setdefault(item.line_key, item)
        return batch

    async def _persist(self, batch: NormalizedBatch, next_cursor: Optional[str]) -> int:
        self.state = IngestState.persisting
        # Pending entries first, so an advanced checkpoint never loses them
        if batch.pending:
            await self.store.add_pending(batch.pending)
        checkpoint = Checkpoint(
            source_id=self.source_id,
            last_cursor=next_cursor,
            last_success_at=utcnow(),
        )
        events = list(batch.events.values())
        lines = list(batch.lines.values())
        inserted = await self.store.persist_batch(events, lines, checkpoint)
        if self.on_persisted is not None and (events or lines):
            outcome = self.on_persisted(events, lines)
            if asyncio.iscoroutine(outcome):
                await outcome
        return inserted

    async def _persist_shielded(self, batch: NormalizedBatch, next_cursor: Optional[str]) -> int:
        persist = asyncio.ensure_future(self._persist(batch, next_cursor))
        try:
            return await asyncio.shield(persist)
        except asyncio.CancelledError:
            # Let the write land before honouring cancellation
            await persist
            raise

    # =========================================================================
    # Pending review
    # =========================================================================

    async def replay_pending(self) -> ReplayResult:
        """
        Re-normalize this source's pending-review records.

        Records that now resolve are persisted (the checkpoint is untouched)
        and removed from the queue; records that still do not resolve stay.
        """
        source = self.source_id.value
        result = ReplayResult(source_id=source)
        items = await self.store.list_pending(self.source_id)
        if not items:
            return result

        records = [
            RawRecord(
                source_id=item.source_id,
                source_local_id=item.source_local_id,
                payload=item.payload,
                fetched_at=item.queued_at,
            )
            for item in items
        ]
        batch = NormalizedBatch()
        resolved: list[str] = []
        for record in records:
            result.replayed += 1
            try:
                item = self.normalizer.normalize(record)
            except UnmappableIdentity:
                result.still_pending += 1
                continue
            except NormalizationError as e:
                result.unrecognized += 1
                resolved.append(record.source_local_id)
                logger.warning(f"{source}:{record.source_local_id} dropped from review queue: {e.message}")
                continue
            if isinstance(item, Event):
                batch.events.setdefault(item.event_id, item)
            else:
                batch.lines.setdefault(item.line_key, item)
            resolved.append(record.source_local_id)

        events = list(batch.events.values())
        lines = list(batch.lines.values())
        if events or lines:
            result.inserted = await self.store.upsert(events, lines)
            if self.on_persisted is not None:
                outcome = self.on_persisted(events, lines)
                if asyncio.iscoroutine(outcome):
                    await outcome
        if resolved:
            await self.store.remove_pending(self.source_id, resolved)
        result.resolved = result.replayed - result.still_pending - result.unrecognized

        logger.info(
            f"{source}: replayed {result.replayed} pending records, "
            f"{result.resolved} resolved, {result.inserted} inserted, {result.still_pending} still pending"
        )
        return result
