"""
Player linking service.

Runs once right after a user signs up, to reconcile the new auth user
with a player profile that may already exist because an admin imported
the roster before the player ever registered. The goal is that one human
never ends up with two disconnected histories, and nobody can take over
someone else's history by registering with similar details.

The strategy (in priority order):
1. Claim token - deterministic, single use
2. Matcher candidate with score >= 90 - auto-link to that profile
3. Candidate with 60 <= score < 90 - pending profile plus admin suggestion
4. Otherwise - pending profile, no suggestion

Every step commits its own change; the audit entry is written last and
may fail without undoing anything.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from pelada.config import Settings, settings as default_settings
from pelada.db.models import STATUS_PENDING, Profile
from pelada.players.audit import AuditRecorder
from pelada.players.decision import LinkingDecisionEngine
from pelada.players.errors import LinkConflict, ValidationError
from pelada.players.linker import ProfileLinker
from pelada.players.matching import CandidateMatcher, SqlCandidateMatcher
from pelada.players.outcomes import (
    LinkDecision,
    LinkingResult,
    MatchCandidate,
    MatchQuery,
    Outcome,
    RegistrationRequest,
)
from pelada.players.reconciler import TemporaryProfileReconciler
from pelada.players.store import ProfileStore
from pelada.players.tokens import TokenClaimPath

logger = logging.getLogger(__name__)


def validate_request(request: RegistrationRequest) -> None:
    """
    Raises:
        ValidationError: auth_user_id or email missing
    """
    missing = [
        name for name in ("auth_user_id", "email")
        if not (getattr(request, name) or "").strip()
    ]
    if missing:
        raise ValidationError(f"missing required field(s): {', '.join(missing)}")


class PlayerLinkingService:
    """
    Resolve a freshly registered user to a player profile.

    Stateless apart from its collaborators; build one per request.

    Usage:
        service = PlayerLinkingService(db_session)
        result = service.link_player(RegistrationRequest(
            auth_user_id="...",
            email="joao@example.com",
            birth_date=date(1990, 3, 7),
        ))

        if result.linked:
            # user now owns an existing profile (result.profile_id)
        else:
            # user has a pending profile awaiting admin approval
    """

    def __init__(
        self,
        db: Session,
        matcher: Optional[CandidateMatcher] = None,
        settings: Settings = default_settings,
    ):
        self.db = db
        self.store = ProfileStore(db)
        self.matcher = matcher if matcher is not None else SqlCandidateMatcher(db, settings)
        self.tokens = TokenClaimPath(self.store)
        self.engine = LinkingDecisionEngine(settings)
        self.linker = ProfileLinker(self.store)
        self.reconciler = TemporaryProfileReconciler(self.store)
        self.audit = AuditRecorder(db)

    # =========================================================================
    # Main Public Methods
    # =========================================================================

    def link_player(self, request: RegistrationRequest) -> LinkingResult:
        """
        Resolve one registration to exactly one terminal outcome.

        Safe to call again with the same input: once the user owns a
        canonical profile, later calls report it and change nothing.

        Raises:
            ValidationError: Required fields missing (nothing is written)
            DuplicateError: A concurrent registration inserted the same row
            PersistenceError: An authoritative write failed
        """
        validate_request(request)
        user_id = request.auth_user_id

        existing, placeholder = self._load_identity(user_id)
        if existing is not None:
            logger.info("User %s already owns profile %s, nothing to do", user_id, existing.id)
            if placeholder is not None:
                # Left behind by an earlier run whose cleanup failed
                self.linker.discard_placeholder(placeholder.id)
            return self._finish(request, self._already_linked(existing))

        # Strategy 1: claim token
        claim = self.tokens.claim(request.token, user_id)
        if claim.claimed:
            if placeholder is not None:
                self.linker.discard_placeholder(placeholder.id)
            return self._finish(request, LinkingResult(
                outcome=Outcome.CLAIMED_VIA_TOKEN,
                profile_id=claim.profile.id,
                player_id=claim.profile.player_id,
                linked=True,
                display_name=claim.profile.display_name,
            ))

        # Strategy 2: matcher + thresholds
        decision, decision_failed = self._decide(request)

        lost_race = False
        if decision.outcome == Outcome.AUTO_LINK:
            candidate = decision.candidate
            try:
                profile = self.linker.link(
                    candidate.profile_id, user_id, email=request.email, placeholder=placeholder
                )
            except LinkConflict:
                existing = self.store.find_canonical_by_user(user_id)
                if existing is not None:
                    # A duplicate of this same registration won the race
                    logger.info("User %s was linked by a concurrent request", user_id)
                    return self._finish(request, self._already_linked(existing))

                logger.info(
                    "Profile %s was linked concurrently; user %s continues as unmatched",
                    candidate.profile_id,
                    user_id,
                )
                lost_race = True
                # The winner may have removed rows this request loaded earlier
                placeholder = self.store.find_placeholder(user_id)
                decision = LinkDecision(
                    outcome=Outcome.NO_MATCH, discarded_linked=decision.discarded_linked + 1
                )
            else:
                return self._finish(request, LinkingResult(
                    outcome=Outcome.AUTO_LINK,
                    profile_id=profile.id,
                    player_id=profile.player_id,
                    linked=True,
                    score=candidate.match_score,
                    display_name=profile.display_name,
                    metadata={"match_reason": candidate.match_reason},
                ))

        # Strategies 3 and 4: keep the user on a pending profile
        suggestion = decision.candidate if decision.outcome == Outcome.PARTIAL_PENDING else None
        reconciliation = self.reconciler.reconcile(request, placeholder, suggestion=suggestion)

        outcome = decision.outcome
        if reconciliation.fallback or decision_failed:
            outcome = Outcome.FALLBACK_CREATED

        profile = reconciliation.profile
        return self._finish(request, LinkingResult(
            outcome=outcome,
            profile_id=profile.id,
            player_id=profile.player_id,
            linked=False,
            created=True,
            score=decision.score,
            suggestion=suggestion,
            display_name=profile.display_name,
            lost_race=lost_race,
            metadata={"discarded_linked": decision.discarded_linked},
        ))

    def claim_with_token(self, token: Optional[str], user_id: str) -> LinkingResult:
        """
        Claim a profile with a token after registration.

        For a user who signed up without the token and is sitting on a
        pending profile. Their own pending profile is removed in the same
        transaction as the claim.

        Raises:
            ValidationError: token or user_id blank
            DuplicateError / PersistenceError: from the store
        """
        token = (token or "").strip()
        if not token or not (user_id or "").strip():
            raise ValidationError("token and user_id are required")

        existing, placeholder = self._load_identity(user_id)
        release_id = None
        if existing is not None:
            if existing.created_by_admin or existing.status != STATUS_PENDING:
                # Imported or approved profiles hold history; a claim would orphan it
                return self._already_linked(existing)
            release_id = existing.id

        claim = self.tokens.claim(token, user_id, release_profile_id=release_id)
        if not claim.claimed:
            return LinkingResult(outcome=Outcome.NO_MATCH, profile_id=None)

        if placeholder is not None:
            self.linker.discard_placeholder(placeholder.id)

        result = LinkingResult(
            outcome=Outcome.CLAIMED_VIA_TOKEN,
            profile_id=claim.profile.id,
            player_id=claim.profile.player_id,
            linked=True,
            display_name=claim.profile.display_name,
            metadata={"released_profile_id": release_id},
        )
        self.audit.append(
            action=Outcome.CLAIMED_VIA_TOKEN.value,
            actor_id=user_id,
            target_profile_id=result.profile_id,
            metadata={"reason": "token_after_signup", **result.metadata},
        )
        return result

    # =========================================================================
    # Private Helper Methods
    # =========================================================================

    def _load_identity(self, user_id: str) -> tuple[Optional[Profile], Optional[Profile]]:
        """Return (canonical profile owned by user, user's placeholder)."""
        return (
            self.store.find_canonical_by_user(user_id),
            self.store.find_placeholder(user_id),
        )

    @staticmethod
    def _already_linked(existing: Profile) -> LinkingResult:
        return LinkingResult(
            outcome=Outcome.ALREADY_LINKED,
            profile_id=existing.id,
            player_id=existing.player_id,
            linked=existing.created_by_admin,
            created=False,
            display_name=existing.display_name,
        )

    def _decide(self, request: RegistrationRequest) -> tuple[LinkDecision, bool]:
        """
        Consult the matcher and apply the thresholds.

        Returns:
            (decision, failed) - failed is True when something other than
            the matcher broke and the registration must take the fallback path
        """
        candidates = self._find_candidates(request)
        try:
            return self.engine.decide(candidates), False
        except Exception:
            logger.exception("Decision failed for user %s, using fallback", request.auth_user_id)
            return LinkDecision(outcome=Outcome.NO_MATCH), True

    def _find_candidates(self, request: RegistrationRequest) -> list[MatchCandidate]:
        """Matcher failures fail open to an empty candidate list."""
        try:
            return list(self.matcher.find_matching_profiles(MatchQuery.from_request(request)))
        except Exception as exc:
            # Any matcher problem, including timeouts, must not block signup
            logger.warning(
                "Candidate matcher unavailable for user %s: %s", request.auth_user_id, exc
            )
            return []

    def _finish(self, request: RegistrationRequest, result: LinkingResult) -> LinkingResult:
        """Record the terminal decision. Runs after every profile change is committed."""
        metadata = {
            "reason": result.metadata.get("match_reason") or result.outcome.value,
            "score": result.score,
            "candidate_id": result.suggestion.profile_id if result.suggestion else None,
            "lost_race": result.lost_race,
            "input": request.audit_attributes(),
        }
        metadata.update(
            (key, value) for key, value in result.metadata.items() if key != "match_reason"
        )
        if result.outcome.links_existing_profile:
            metadata["candidate_id"] = result.profile_id

        self.audit.append(
            action=result.outcome.value,
            actor_id=request.auth_user_id,
            target_profile_id=result.profile_id,
            metadata=metadata,
        )
        logger.info(
            "Registration for user %s resolved as %s (profile %s)",
            request.auth_user_id,
            result.outcome.value,
            result.profile_id,
        )
        return result
