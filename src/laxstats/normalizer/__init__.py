"""
Normalization of source records into the canonical statistics model.

Usage:
    from laxstats.normalizer import IdentityMap, Normalizer

    identity = IdentityMap(store)
    await identity.load()
    normalizer = Normalizer(identity)
    event_or_line = normalizer.normalize(record)
"""

from .identity import IdentityMap, IdentityResolver, IdentitySnapshot, normalize_name
from .service import NORMALIZERS, Normalizer

__all__ = [
    "IdentityMap",
    "IdentityResolver",
    "IdentitySnapshot",
    "NORMALIZERS",
    "Normalizer",
    "normalize_name",
]
