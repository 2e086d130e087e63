"""
Admin-side operations around player linking.

- Issue claim tokens for imported players so they can link deterministically
- Review merge suggestions left by partial matches
- Link a pending user to an existing profile by hand
- Approve a pending signup (as player or observer) or reject it
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from pelada.config import Settings, settings as default_settings
from pelada.db.models import (
    PROFILE_STATUSES,
    STATUS_APPROVED,
    STATUS_PENDING,
    STATUS_REJECTED,
    MergeSuggestion,
    Profile,
)
from pelada.players.audit import AuditRecorder
from pelada.players.errors import PersistenceError
from pelada.players.linker import ProfileLinker
from pelada.players.store import ProfileStore
from pelada.players.tokens import generate_claim_token

logger = logging.getLogger(__name__)

# Attempts before giving up on a token that keeps colliding
TOKEN_ATTEMPTS = 5


class AdminLinkingService:
    """
    Admin workflows for player identity.

    Usage:
        service = AdminLinkingService(db_session)
        token = service.issue_claim_token(profile_id, actor_id=admin_user_id)
    """

    def __init__(self, db: Session, settings: Settings = default_settings):
        self.db = db
        self.store = ProfileStore(db)
        self.linker = ProfileLinker(self.store)
        self.audit = AuditRecorder(db)
        self.token_length = settings.claim_token_length

    def issue_claim_token(self, profile_id: str, actor_id: Optional[str] = None) -> str:
        """
        Give an unlinked profile a fresh claim token, replacing any old one.

        Raises:
            ValueError: Profile missing, a placeholder, or already linked
            PersistenceError: Could not store a unique token
        """
        profile = self.store.get(profile_id)
        if profile is None or profile.is_placeholder:
            raise ValueError(f"Profile {profile_id} not found")
        if profile.user_id is not None:
            raise ValueError(f"Profile {profile_id} is already linked to a user")

        for attempt in range(1, TOKEN_ATTEMPTS + 1):
            token = generate_claim_token(self.token_length)
            try:
                rows = (
                    self.db.query(Profile)
                    .filter(Profile.id == profile_id, Profile.user_id.is_(None))
                    .update({"claim_token": token}, synchronize_session=False)
                )
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                logger.debug("Token collision on attempt %d, retrying", attempt)
                continue
            except SQLAlchemyError as exc:
                self.db.rollback()
                logger.error("Could not store claim token for %s: %s", profile_id, exc)
                raise PersistenceError(str(exc)) from exc

            if rows != 1:
                raise ValueError(f"Profile {profile_id} is already linked to a user")

            self.audit.append(
                action="TOKEN_ISSUED",
                actor_id=actor_id,
                target_profile_id=profile_id,
                metadata={"reason": "admin_issued"},
            )
            return token

        raise PersistenceError(f"no unique claim token after {TOKEN_ATTEMPTS} attempts")

    def issue_missing_tokens(self, actor_id: Optional[str] = None) -> dict[str, str]:
        """Issue tokens for every admin-created, unlinked profile without one."""
        profile_ids = [
            row.id for row in (
                self.db.query(Profile.id)
                .filter(
                    Profile.created_by_admin.is_(True),
                    Profile.is_placeholder.is_(False),
                    Profile.user_id.is_(None),
                    Profile.claim_token.is_(None),
                )
                .order_by(Profile.name)
                .all()
            )
        ]
        return {pid: self.issue_claim_token(pid, actor_id=actor_id) for pid in profile_ids}

    def pending_suggestions(self) -> list[MergeSuggestion]:
        return (
            self.db.query(MergeSuggestion)
            .filter(MergeSuggestion.status == "pending")
            .order_by(MergeSuggestion.score.desc(), MergeSuggestion.created_at)
            .all()
        )

    def link_pending_to_profile(
        self,
        pending_profile_id: str,
        target_profile_id: str,
        actor_id: str,
    ) -> Profile:
        """
        Move a pending user onto an existing unlinked profile.

        The pending profile is deleted in the same transaction as the link,
        together with its merge suggestions.

        Raises:
            ValueError: Pending profile missing or not eligible
            LinkConflict: Target profile already has an owner
            DuplicateError / PersistenceError: from the store
        """
        pending = self.store.get(pending_profile_id)
        if pending is None or pending.user_id is None:
            raise ValueError(f"Pending profile {pending_profile_id} not found")
        if pending.created_by_admin or pending.status != STATUS_PENDING:
            raise ValueError(f"Profile {pending_profile_id} is not a pending signup")
        if pending_profile_id == target_profile_id:
            raise ValueError("Cannot link a profile to itself")

        user_id = pending.user_id
        email = pending.email
        placeholder = None if not pending.is_placeholder else pending

        profile = self.store.link_profile_to_user(
            target_profile_id,
            user_id,
            email=email,
            release_profile_id=None if placeholder is not None else pending_profile_id,
        )
        if placeholder is not None:
            self.linker.discard_placeholder(pending_profile_id)

        self.audit.append(
            action="ADMIN_LINK",
            actor_id=actor_id,
            target_profile_id=profile.id,
            metadata={
                "reason": "admin_link",
                "pending_profile_id": pending_profile_id,
                "user_id": user_id,
            },
        )
        return profile

    def approve_pending(self, profile_id: str, actor_id: str) -> Profile:
        """Accept a pending signup as a new player (no existing profile to link)."""
        return self._resolve_pending(
            profile_id,
            actor_id,
            action="APPROVE_NEW",
            status=STATUS_APPROVED,
            is_approved=True,
            is_player=True,
        )

    def approve_as_observer(self, profile_id: str, actor_id: str) -> Profile:
        """Accept a pending signup as a non-player member (never drafted into teams)."""
        return self._resolve_pending(
            profile_id,
            actor_id,
            action="APPROVE_OBSERVER",
            status=STATUS_APPROVED,
            is_approved=True,
            is_player=False,
        )

    def reject_pending(self, profile_id: str, actor_id: str) -> Profile:
        return self._resolve_pending(
            profile_id,
            actor_id,
            action="REJECT",
            status=STATUS_REJECTED,
            is_approved=False,
        )

    def dismiss_suggestion(self, suggestion_id: int, actor_id: str) -> MergeSuggestion:
        """
        Raises:
            ValueError: Suggestion missing or already resolved
        """
        suggestion = (
            self.db.query(MergeSuggestion)
            .filter(MergeSuggestion.id == suggestion_id)
            .first()
        )
        if suggestion is None or suggestion.status != "pending":
            raise ValueError(f"Suggestion {suggestion_id} not found")

        suggestion.status = "dismissed"
        suggestion.resolved_by = actor_id
        suggestion.resolved_at = datetime.utcnow()
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Could not dismiss suggestion %s: %s", suggestion_id, exc)
            raise PersistenceError(str(exc)) from exc
        return suggestion

    # =========================================================================
    # Private Helper Methods
    # =========================================================================

    def _resolve_pending(
        self,
        profile_id: str,
        actor_id: str,
        action: str,
        status: str,
        **flags: bool,
    ) -> Profile:
        """
        Move a pending signup out of review and close its open suggestions.

        Raises:
            ValueError: Profile missing, not a pending signup, or bad status
            PersistenceError: The update could not be committed
        """
        if status not in PROFILE_STATUSES:
            raise ValueError(f"Unknown profile status: {status}")

        pending = self.store.get(profile_id)
        if pending is None or pending.user_id is None or pending.is_placeholder:
            raise ValueError(f"Pending profile {profile_id} not found")
        if pending.created_by_admin or pending.status != STATUS_PENDING:
            raise ValueError(f"Profile {profile_id} is not a pending signup")

        user_id = pending.user_id
        pending.status = status
        for key, value in flags.items():
            setattr(pending, key, value)

        try:
            closed = (
                self.db.query(MergeSuggestion)
                .filter(
                    MergeSuggestion.pending_profile_id == profile_id,
                    MergeSuggestion.status == "pending",
                )
                .update(
                    {
                        "status": "dismissed",
                        "resolved_by": actor_id,
                        "resolved_at": datetime.utcnow(),
                    },
                    synchronize_session=False,
                )
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Could not %s profile %s: %s", action.lower(), profile_id, exc)
            raise PersistenceError(str(exc)) from exc

        logger.info("Pending profile %s resolved as %s by %s", profile_id, action, actor_id)
        self.audit.append(
            action=action,
            actor_id=actor_id,
            target_profile_id=profile_id,
            metadata={
                "reason": "admin_review",
                "status": status,
                "user_id": user_id,
                "suggestions_closed": closed,
            },
        )
        return pending
