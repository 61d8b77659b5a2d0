"""
Error taxonomy for laxstats.

Four families:
- SourceError: raised by source adapters (transient vs fatal-for-source)
- NormalizationError: raised per record by the normalizer (skip, never abort)
- StoreError: raised by the canonical store (constraint vs availability)
- QueryError: the only errors surfaced to callers of the stats query service

Each error carries a machine-readable ``code``; query errors also carry the
``status_code`` the HTTP layer responds with.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models import RawRecord


# ---------------------------------------------------------------------------
# Source errors
# ---------------------------------------------------------------------------

class SourceError(Exception):
    """Base exception for source adapter failures."""

    code = "SOURCE_ERROR"
    transient = False

    def __init__(self, message: str, source_id: str | None = None):
        super().__init__(message)
        self.message = message
        self.source_id = source_id


class RateLimited(SourceError):
    """Source rejected the request for exceeding its rate limit."""

    code = "RATE_LIMITED"
    transient = True

    def __init__(self, message: str, source_id: str | None = None, retry_after: float | None = None):
        super().__init__(message, source_id)
        self.retry_after = retry_after


class AuthExpired(SourceError):
    """Credentials were rejected; fatal for the source until refreshed."""

    code = "AUTH_EXPIRED"


class Unavailable(SourceError):
    """Source unreachable, erroring server-side, or timed out."""

    code = "UNAVAILABLE"
    transient = True


class MalformedResponse(SourceError):
    """Source answered with something that cannot be read as a batch."""

    code = "MALFORMED_RESPONSE"


# ---------------------------------------------------------------------------
# Normalization errors
# ---------------------------------------------------------------------------

class NormalizationError(Exception):
    """Base exception for a single record that could not be normalized."""

    code = "NORMALIZATION_ERROR"

    def __init__(self, message: str, record: "RawRecord | None" = None):
        super().__init__(message)
        self.message = message
        self.record = record


class UnrecognizedShape(NormalizationError):
    """Payload matches no known version of the source's schema."""

    code = "UNRECOGNIZED_SHAPE"


class UnmappableIdentity(NormalizationError):
    """A source-local id has no entry in the identity table."""

    code = "UNMAPPABLE"
    kind = ""

    def __init__(
        self,
        message: str,
        record: "RawRecord | None" = None,
        source_local_id: str = "",
        display_name: str | None = None,
    ):
        super().__init__(message, record)
        self.source_local_id = source_local_id
        self.display_name = display_name


class UnmappablePlayer(UnmappableIdentity):
    code = "UNMAPPABLE_PLAYER"
    kind = "player"


class UnmappableTeam(UnmappableIdentity):
    code = "UNMAPPABLE_TEAM"
    kind = "team"


# ---------------------------------------------------------------------------
# Identity errors
# ---------------------------------------------------------------------------

class AlreadyLinkedError(Exception):
    """A source identity is already mapped to a different canonical id."""

    def __init__(self, message: str, existing_canonical_id: int):
        super().__init__(message)
        self.existing_canonical_id = existing_canonical_id


# ---------------------------------------------------------------------------
# Store errors
# ---------------------------------------------------------------------------

class StoreError(Exception):
    """Base exception for canonical store failures."""

    code = "STORE_ERROR"

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class ConstraintViolation(StoreError):
    """A record references an identity with no canonical entity."""

    code = "CONSTRAINT_VIOLATION"

    def __init__(self, message: str, constraint: str = "", cause: Exception | None = None):
        super().__init__(message, cause)
        self.constraint = constraint


class StoreUnavailable(StoreError):
    """The store could not be reached or the transaction failed."""

    code = "STORE_UNAVAILABLE"


# ---------------------------------------------------------------------------
# External query errors
# ---------------------------------------------------------------------------

class QueryError(Exception):
    """
    Base class for errors returned to callers of the stats query service.

    Serializes to the response body shape:
    {"error": {"code": "...", "message": "...", "detail": "..."}}
    """

    code = "QUERY_ERROR"
    status_code = 500

    def __init__(self, message: str, detail: str | None = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> dict[str, Any]:
        return {"error": {"code": self.code, "message": self.message, "detail": self.detail}}


class NotFoundError(QueryError):
    """Requested subject has no aggregated statistics (404)."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, resource: str, identifier: Any, context: str | None = None):
        detail = f"{resource} with ID {identifier}"
        if context:
            detail = f"{detail} in {context}"
        super().__init__(f"{resource} not found", detail)


class ValidationError(QueryError):
    """Malformed request input (400)."""

    code = "VALIDATION_ERROR"
    status_code = 400


class DatabaseError(QueryError):
    """Canonical store unavailable (500)."""

    code = "DATABASE_ERROR"
    status_code = 500


class ConstraintViolationError(QueryError):
    """Stored data violates an identity constraint (400)."""

    code = "CONSTRAINT_VIOLATION"
    status_code = 400

    def __init__(self, constraint: str, detail: str | None = None):
        super().__init__(f"Constraint violated: {constraint}", detail)
        self.constraint = constraint
