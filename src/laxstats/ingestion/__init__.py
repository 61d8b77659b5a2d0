"""
Ingestion: per-source orchestrators and the scheduler that runs them.

Usage:
    from laxstats.ingestion import Orchestrator, IngestionScheduler

    orchestrator = Orchestrator(adapter, store, normalizer)
    result = await orchestrator.run_cycle()
"""

from .orchestrator import (
    IngestRunResult,
    IngestState,
    Orchestrator,
    ReplayResult,
    RetryPolicy,
    RunStatus,
)
from .scheduler import IngestionScheduler, SchedulerResult

__all__ = [
    "IngestRunResult",
    "IngestState",
    "IngestionScheduler",
    "Orchestrator",
    "ReplayResult",
    "RetryPolicy",
    "RunStatus",
    "SchedulerResult",
]
