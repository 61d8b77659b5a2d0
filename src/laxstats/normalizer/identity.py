"""
Cross-source identity resolution.

The identity table maps ``(kind, source_id, source_local_id)`` to a canonical
player or team id. Resolution is exact-match only: an id that is not in the
table is never guessed, it goes to the pending-review queue and waits for an
operator to link it.

The table is read-mostly. Readers take the current IdentitySnapshot, which is
never mutated; writers serialize on one lock, persist the change, then
publish a fresh snapshot.
"""

from __future__ import annotations

import asyncio
import logging
import re
import unicodedata
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Mapping, Optional

from ..core.errors import AlreadyLinkedError, UnmappablePlayer, UnmappableTeam
from ..core.models import CanonicalEntity, EntityRef, IdentityLink, RawRecord
from ..core.types import EntityKind, SourceId

if TYPE_CHECKING:
    from ..repositories.base import CanonicalStore

logger = logging.getLogger(__name__)

# Letters NFKD does not decompose into a base letter plus combining marks
SPECIAL_CHARACTERS = {
    "ø": "o",
    "æ": "ae",
    "å": "a",
    "ß": "ss",
    "ð": "d",
    "þ": "th",
    "ł": "l",
    "đ": "d",
    "œ": "oe",
    "ı": "i",
}

_PUNCTUATION = re.compile(r"[^\w\s]")


def normalize_name(name: str) -> str:
    """
    Normalize a display name for ordering and candidate lookup.

    Lowercases, transliterates special letters, strips diacritics and
    punctuation, and collapses whitespace:

        >>> normalize_name("  Zed  Williams-O'Neil ")
        'zed williamsoneil'
        >>> normalize_name("Bjørn Ødegård")
        'bjorn odegard'
    """
    lowered = name.lower()
    transliterated = "".join(SPECIAL_CHARACTERS.get(c, c) for c in lowered)
    decomposed = unicodedata.normalize("NFKD", transliterated)
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    stripped = _PUNCTUATION.sub("", stripped).replace("_", "")
    return " ".join(stripped.split())


# =============================================================================
# Snapshot
# =============================================================================

LinkKey = tuple[EntityKind, SourceId, str]
EntityKey = tuple[EntityKind, int]


@dataclass(frozen=True)
class IdentitySnapshot:
    """Immutable view of the identity table at one point in time."""

    links: Mapping[LinkKey, int] = field(default_factory=lambda: MappingProxyType({}))
    entities: Mapping[EntityKey, CanonicalEntity] = field(default_factory=lambda: MappingProxyType({}))

    def resolve(self, kind: EntityKind, source_id: SourceId, source_local_id: str) -> Optional[int]:
        return self.links.get((kind, source_id, str(source_local_id)))

    def entity(self, kind: EntityKind, canonical_id: int) -> Optional[CanonicalEntity]:
        return self.entities.get((kind, canonical_id))

    def with_link(self, link: IdentityLink) -> "IdentitySnapshot":
        links = dict(self.links)
        links[(link.kind, link.source_id, link.source_local_id)] = link.canonical_id
        return IdentitySnapshot(links=MappingProxyType(links), entities=self.entities)

    def with_entity(self, entity: CanonicalEntity) -> "IdentitySnapshot":
        entities = dict(self.entities)
        entities[(entity.kind, entity.canonical_id)] = entity
        return IdentitySnapshot(links=self.links, entities=MappingProxyType(entities))


class IdentityResolver:
    """
    Resolves the source-local ids of one raw record against a snapshot.

    Raises UnmappablePlayer / UnmappableTeam carrying the record, so the
    orchestrator can queue it for review.
    """

    def __init__(self, snapshot: IdentitySnapshot, record: RawRecord):
        self.snapshot = snapshot
        self.record = record

    def _ref(self, kind: EntityKind, local_id: str, display_name: Optional[str], error_cls) -> EntityRef:
        local_id = str(local_id)
        canonical_id = self.snapshot.resolve(kind, self.record.source_id, local_id)
        if canonical_id is None:
            raise error_cls(
                f"No canonical {kind.value} for {self.record.source_id.value}:{local_id}",
                record=self.record,
                source_local_id=local_id,
                display_name=display_name,
            )
        return EntityRef(
            kind=kind,
            canonical_id=canonical_id,
            source_id=self.record.source_id,
            source_local_id=local_id,
        )

    def team(self, local_id: str, display_name: Optional[str] = None) -> EntityRef:
        return self._ref(EntityKind.team, local_id, display_name, UnmappableTeam)

    def player(self, local_id: str, display_name: Optional[str] = None) -> EntityRef:
        return self._ref(EntityKind.player, local_id, display_name, UnmappablePlayer)


# =============================================================================
# Identity map
# =============================================================================


class IdentityMap:
    """
    Editable identity table backed by the canonical store.

    Single writer, copy-on-write: ``snapshot`` can be read at any time without
    locking and never changes underneath the reader.
    """

    def __init__(self, store: "CanonicalStore"):
        self.store = store
        self._snapshot = IdentitySnapshot()
        self._write_lock = asyncio.Lock()

    @property
    def snapshot(self) -> IdentitySnapshot:
        return self._snapshot

    async def load(self) -> IdentitySnapshot:
        """Load the full identity table from the store."""
        async with self._write_lock:
            entities = await self.store.list_entities()
            links = await self.store.list_identity_links()
            self._snapshot = IdentitySnapshot(
                links=MappingProxyType(
                    {(link.kind, link.source_id, link.source_local_id): link.canonical_id for link in links}
                ),
                entities=MappingProxyType({(e.kind, e.canonical_id): e for e in entities}),
            )
        logger.info(f"Loaded identity table: {len(entities)} entities, {len(links)} links")
        return self._snapshot

    def resolve(self, kind: EntityKind, source_id: SourceId, source_local_id: str) -> Optional[int]:
        return self._snapshot.resolve(kind, source_id, source_local_id)

    def display_name(self, kind: EntityKind, canonical_id: int) -> Optional[str]:
        entity = self._snapshot.entity(kind, canonical_id)
        return entity.display_name if entity else None

    def candidates(self, kind: EntityKind, name: Optional[str]) -> list[CanonicalEntity]:
        """
        Canonical entities whose normalized name equals ``name``'s.

        Used to suggest links for pending-review entries; never applied
        automatically.
        """
        if not name:
            return []
        target = normalize_name(name)
        matches = [
            entity
            for (entity_kind, _), entity in self._snapshot.entities.items()
            if entity_kind is kind and normalize_name(entity.display_name) == target
        ]
        return sorted(matches, key=lambda e: e.canonical_id)

    async def add_entity(self, kind: EntityKind, display_name: str) -> CanonicalEntity:
        """Create a new canonical entity and publish it."""
        async with self._write_lock:
            entity = await self.store.add_entity(kind, display_name)
            self._snapshot = self._snapshot.with_entity(entity)
        logger.info(f"Created canonical {kind.value} {entity.canonical_id}: {display_name}")
        return entity

    async def link(
        self,
        kind: EntityKind,
        source_id: SourceId,
        source_local_id: str,
        canonical_id: int,
        match_method: str = "manual",
    ) -> IdentityLink:
        """
        Map a source-local id to a canonical entity.

        Linking an id to the canonical id it already has is a no-op.

        Raises:
            AlreadyLinkedError: If the id is mapped to a different entity
            ConstraintViolation: If the canonical entity does not exist
        """
        link = IdentityLink(
            kind=kind,
            source_id=source_id,
            source_local_id=str(source_local_id),
            canonical_id=canonical_id,
            match_method=match_method,
        )
        async with self._write_lock:
            existing = self._snapshot.resolve(kind, source_id, link.source_local_id)
            if existing == canonical_id:
                return link
            if existing is not None:
                raise AlreadyLinkedError(
                    f"{kind.value} {source_id.value}:{link.source_local_id} is already linked to {existing}",
                    existing_canonical_id=existing,
                )
            await self.store.add_identity_link(link)
            self._snapshot = self._snapshot.with_link(link)

        logger.info(
            f"Linked {kind.value} {source_id.value}:{link.source_local_id} -> {canonical_id} ({match_method})"
        )
        return link
