"""
Typed values passed between the linking steps.

Each step returns one of these instead of a loose dict so that the
orchestrator's branches are explicit about which fields exist.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Optional

from pelada.players.keys import derive_player_id, full_name, normalize_email


class Outcome(str, Enum):
    """Terminal states of one registration. Values double as audit actions."""

    CLAIMED_VIA_TOKEN = "CLAIMED_VIA_TOKEN"
    AUTO_LINK = "AUTO_LINK"
    PARTIAL_PENDING = "PARTIAL_PENDING"
    NO_MATCH = "NO_MATCH"
    FALLBACK_CREATED = "FALLBACK_CREATED"
    ALREADY_LINKED = "ALREADY_LINKED"

    @property
    def links_existing_profile(self) -> bool:
        return self in (Outcome.CLAIMED_VIA_TOKEN, Outcome.AUTO_LINK)


@dataclass(frozen=True)
class RegistrationRequest:
    """Identity attributes sent by the signup flow."""

    auth_user_id: str
    email: str
    birth_date: Optional[date] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    position: Optional[str] = None
    claim_token: Optional[str] = None

    @property
    def normalized_email(self) -> str:
        return normalize_email(self.email)

    @property
    def player_id(self) -> Optional[str]:
        return derive_player_id(self.email, self.birth_date)

    @property
    def full_name(self) -> str:
        return full_name(self.first_name, self.last_name)

    @property
    def token(self) -> Optional[str]:
        """Trimmed claim token, or None when blank."""
        if self.claim_token is None:
            return None
        return self.claim_token.strip() or None

    def audit_attributes(self) -> dict[str, Any]:
        """Raw input for the audit log. The claim token itself is never stored."""
        return {
            "auth_user_id": self.auth_user_id,
            "email": self.email,
            "birth_date": self.birth_date.isoformat() if self.birth_date else None,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "position": self.position,
            "has_claim_token": self.token is not None,
        }


@dataclass(frozen=True)
class MatchQuery:
    email: str
    birth_date: Optional[date] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    @classmethod
    def from_request(cls, request: RegistrationRequest) -> "MatchQuery":
        return cls(
            email=request.normalized_email,
            birth_date=request.birth_date,
            first_name=request.first_name,
            last_name=request.last_name,
        )


@dataclass(frozen=True)
class MatchCandidate:
    """
    One candidate returned by a CandidateMatcher.

    user_id is the candidate's current owner, if any. Candidates that
    already have an owner are never used as link targets.
    """
    profile_id: str
    match_score: int  # 0 to 100
    match_reason: str
    name: Optional[str] = None
    email: Optional[str] = None
    birth_date: Optional[date] = None
    player_id: Optional[str] = None
    user_id: Optional[str] = None

    @property
    def is_linked(self) -> bool:
        return self.user_id is not None

    def __repr__(self) -> str:
        return (
            f"<MatchCandidate(id={self.profile_id}, score={self.match_score}, "
            f"reason='{self.match_reason}')>"
        )


@dataclass(frozen=True)
class LinkDecision:
    """What the decision engine concluded about the best candidate."""

    outcome: Outcome
    candidate: Optional[MatchCandidate] = None
    discarded_linked: int = 0

    @property
    def score(self) -> Optional[int]:
        return self.candidate.match_score if self.candidate else None


@dataclass
class LinkingResult:
    """Terminal result of one registration, consumed by the response composer."""

    outcome: Outcome
    profile_id: Optional[str]
    player_id: Optional[str] = None
    linked: bool = False
    created: bool = False
    score: Optional[int] = None
    suggestion: Optional[MatchCandidate] = None
    display_name: Optional[str] = None
    # Set when an auto-link target was taken by a concurrent registration
    lost_race: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)
