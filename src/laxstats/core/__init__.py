"""
Core module for laxstats.

This module provides the foundational components:
- Configuration management (config.py)
- Canonical data models (models.py)
- Type definitions and source registry (types.py)
- Error taxonomy (errors.py)
- Shared HTTP client infrastructure (http.py)
- League season windows (seasons.py)

Usage:
    from laxstats.core import Settings, get_settings
    from laxstats.core import SourceId, EventKind, get_source_config
    from laxstats.core import Event, BoxScoreLine, RawRecord
    from laxstats.core.http import BaseApiClient
"""

# Configuration
from .config import Settings, get_settings

# Types
from .types import (
    EVENT_STATS,
    SOURCE_REGISTRY,
    STAT_NAMES,
    EntityKind,
    EventKind,
    Scope,
    SourceConfig,
    SourceId,
    get_source_config,
)

# Models
from .models import (
    AggregatedStat,
    BoxScoreLine,
    CanonicalEntity,
    Checkpoint,
    EntityRef,
    Event,
    EventFilter,
    IdentityLink,
    PendingReview,
    RawRecord,
    derive_event_id,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Types
    "EVENT_STATS",
    "SOURCE_REGISTRY",
    "STAT_NAMES",
    "EntityKind",
    "EventKind",
    "Scope",
    "SourceConfig",
    "SourceId",
    "get_source_config",
    # Models
    "AggregatedStat",
    "BoxScoreLine",
    "CanonicalEntity",
    "Checkpoint",
    "EntityRef",
    "Event",
    "EventFilter",
    "IdentityLink",
    "PendingReview",
    "RawRecord",
    "derive_event_id",
]
