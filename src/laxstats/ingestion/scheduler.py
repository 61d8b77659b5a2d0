"""
Ingestion scheduler.

Runs one orchestrator per source as its own asyncio task. Sources share state
only through the canonical store, and a failing source never blocks the
others: results are gathered with ``return_exceptions=True``.

Usage:
    scheduler = IngestionScheduler(orchestrators, poll_interval=300)
    results = await scheduler.run_once(active_only=True)
    await scheduler.run_forever()
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable, Optional

from ..core.seasons import active_sources
from ..core.types import SourceId
from .orchestrator import IngestRunResult, Orchestrator

logger = logging.getLogger(__name__)


@dataclass
class SchedulerResult:
    """Results of one scheduler pass across sources."""

    results: dict[str, IngestRunResult] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)

    @property
    def inserted(self) -> int:
        return sum(r.inserted for r in self.results.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": {source: r.to_dict() for source, r in self.results.items()},
            "errors": self.errors,
            "skipped": self.skipped,
            "inserted": self.inserted,
        }


class IngestionScheduler:
    """Fans ingestion cycles out over sources, one task per source."""

    def __init__(self, orchestrators: Iterable[Orchestrator], poll_interval: float = 300.0):
        self.orchestrators: dict[SourceId, Orchestrator] = {o.source_id: o for o in orchestrators}
        self.poll_interval = poll_interval

    def _selected(self, sources: Optional[Iterable[SourceId]], active_only: bool, day: Optional[date]) -> list[Orchestrator]:
        selected = set(sources) if sources is not None else set(self.orchestrators)
        if active_only:
            selected &= set(active_sources(day))
        return [o for source, o in self.orchestrators.items() if source in selected]

    async def run_once(
        self,
        sources: Optional[Iterable[SourceId]] = None,
        active_only: bool = False,
        day: Optional[date] = None,
        max_batches: Optional[int] = None,
    ) -> SchedulerResult:
        """
        Run one cycle for each selected source concurrently.

        Args:
            sources: Restrict to these sources (default: all configured)
            active_only: Only sources whose season includes ``day``
            day: Date for the season check (default: today)
            max_batches: Per-source batch cap for the cycle

        Returns:
            SchedulerResult with per-source results and unexpected errors
        """
        result = SchedulerResult()
        selected = self._selected(sources, active_only, day)
        result.skipped = sorted(s.value for s in set(self.orchestrators) - {o.source_id for o in selected})
        if not selected:
            logger.info("No sources to ingest")
            return result

        outcomes = await asyncio.gather(
            *(o.run_cycle(max_batches=max_batches) for o in selected),
            return_exceptions=True,
        )
        for orchestrator, outcome in zip(selected, outcomes):
            source = orchestrator.source_id.value
            if isinstance(outcome, IngestRunResult):
                result.results[source] = outcome
            else:
                result.errors[source] = f"{type(outcome).__name__}: {outcome}"
                logger.error(f"{source}: ingestion task failed: {outcome!r}")

        logger.info(
            f"Ingestion pass complete: {len(result.results)} sources, "
            f"{result.inserted} inserted, {len(result.errors)} failed"
        )
        return result

    async def run_forever(
        self,
        active_only: bool = True,
        stop: Optional[asyncio.Event] = None,
    ) -> None:
        """Run passes every poll_interval seconds until ``stop`` is set or the task is cancelled."""
        stop = stop or asyncio.Event()
        while not stop.is_set():
            await self.run_once(active_only=active_only)
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                continue
        logger.info("Ingestion scheduler stopped")

    async def replay_pending(self) -> dict[str, Any]:
        """Replay every source's pending-review queue."""
        results = {}
        for source, orchestrator in self.orchestrators.items():
            results[source.value] = (await orchestrator.replay_pending()).to_dict()
        return results

    async def close(self) -> None:
        for orchestrator in self.orchestrators.values():
            await orchestrator.adapter.close()
