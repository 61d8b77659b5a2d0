"""
Normalizer service.

Maps RawRecords into canonical Events and BoxScoreLines by dispatching on the
record's source id. Each source branch is a pure function of the record and
an identity snapshot; the service turns shape failures into
UnrecognizedShape and lets identity failures (UnmappablePlayer /
UnmappableTeam) propagate for the orchestrator to queue.
"""

import logging
from typing import Callable

from ..core.errors import NormalizationError, UnrecognizedShape
from ..core.models import BoxScoreLine, Event, RawRecord
from ..core.types import SourceId
from .identity import IdentityMap, IdentityResolver
from .nll import normalize_nll
from .pll import normalize_pll
from .wla import normalize_wla

logger = logging.getLogger(__name__)

SourceNormalizer = Callable[[RawRecord, IdentityResolver], "Event | BoxScoreLine"]

NORMALIZERS: dict[SourceId, SourceNormalizer] = {
    SourceId.PLL: normalize_pll,
    SourceId.NLL: normalize_nll,
    SourceId.WLA: normalize_wla,
}


class Normalizer:
    """Dispatches raw records to their source's mapping function."""

    def __init__(self, identity: IdentityMap):
        self.identity = identity

    def normalize(self, record: RawRecord) -> Event | BoxScoreLine:
        """
        Map one raw record to its canonical form.

        Args:
            record: Record emitted by a source adapter

        Returns:
            A validated Event or BoxScoreLine

        Raises:
            UnrecognizedShape: Payload matches no known schema version
            UnmappablePlayer: Player id has no canonical mapping
            UnmappableTeam: Team id has no canonical mapping
        """
        branch = NORMALIZERS.get(record.source_id)
        if branch is None:
            raise UnrecognizedShape(f"No normalizer for source {record.source_id!r}", record)

        resolver = IdentityResolver(self.identity.snapshot, record)
        try:
            return branch(record, resolver)
        except NormalizationError:
            raise
        except (ValueError, TypeError) as e:
            # pydantic's ValidationError is a ValueError
            raise UnrecognizedShape(
                f"{record.source_id.value} record {record.source_local_id}: {e}",
                record,
            ) from e
