"""
Error kinds raised by the linking pipeline.

Every failure is tagged with an ErrorKind where it happens; the web layer
maps kinds to HTTP statuses and user-facing messages in one place
(web/responses.py). The `detail` carries raw store text for the server log
only and is never sent to clients.
"""

from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    MATCHER_UNAVAILABLE = "matcher_unavailable"
    LINK_CONFLICT = "link_conflict"
    PERSISTENCE = "persistence"
    DUPLICATE = "duplicate"


class LinkingError(Exception):
    """Base class for linking failures."""

    kind: ErrorKind = ErrorKind.PERSISTENCE

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.kind.value)
        self.detail = detail


class ValidationError(LinkingError):
    """Request is missing auth_user_id or email."""

    kind = ErrorKind.VALIDATION


class MatcherUnavailable(LinkingError):
    """Candidate matcher failed or timed out. Never fatal."""

    kind = ErrorKind.MATCHER_UNAVAILABLE


class LinkConflict(LinkingError):
    """Target profile was linked by someone else first."""

    kind = ErrorKind.LINK_CONFLICT


class PersistenceError(LinkingError):
    """An authoritative write (claim, link, promote) failed."""

    kind = ErrorKind.PERSISTENCE


class DuplicateError(LinkingError):
    """Unique constraint violated by a concurrent registration."""

    kind = ErrorKind.DUPLICATE
