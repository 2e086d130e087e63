"""
Profile persistence for the linking service.

All durable state lives in the database, so every race the linking flow
can hit is settled here with single conditional UPDATE statements:

- Claiming a token: UPDATE ... WHERE claim_token = :t AND user_id IS NULL
- Linking a profile: UPDATE ... WHERE id = :id AND user_id IS NULL

Exactly one concurrent caller sees rowcount == 1; the others see 0 and
the caller decides how to degrade. Store errors are converted to tagged
LinkingError subclasses here, and the raw text only goes to the log.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session
from sqlalchemy.orm.exc import StaleDataError

from pelada.db.models import STATUS_APPROVED, STATUS_PENDING, MergeSuggestion, Profile
from pelada.players.errors import DuplicateError, LinkConflict, PersistenceError

logger = logging.getLogger(__name__)


class ProfileStore:
    """
    Thin repository over the profiles table.

    Usage:
        store = ProfileStore(db_session)
        placeholder = store.find_placeholder(auth_user_id)
        profile = store.link_profile_to_user(target_id, auth_user_id)
    """

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, profile_id: str) -> Optional[Profile]:
        return self._first("load profile", self.db.query(Profile).filter(Profile.id == profile_id))

    def find_placeholder(self, user_id: str) -> Optional[Profile]:
        """Placeholder row created by the signup trigger for this auth user."""
        return self._first(
            "load placeholder",
            self.db.query(Profile)
            .filter(Profile.user_id == user_id, Profile.is_placeholder.is_(True))
            .order_by(Profile.created_at),
        )

    def find_canonical_by_user(self, user_id: str) -> Optional[Profile]:
        """Canonical profile already owned by this auth user, if any."""
        return self._first(
            "load canonical profile",
            self.db.query(Profile)
            .filter(Profile.user_id == user_id, Profile.is_placeholder.is_(False)),
        )

    def find_by_token(self, token: str) -> Optional[Profile]:
        return self._first(
            "load profile by token",
            self.db.query(Profile)
            .filter(Profile.claim_token == token, Profile.is_placeholder.is_(False)),
        )

    def player_id_taken(self, player_id: str, exclude_profile_id: Optional[str] = None) -> bool:
        query = self.db.query(Profile.id).filter(Profile.player_id == player_id)
        if exclude_profile_id is not None:
            query = query.filter(Profile.id != exclude_profile_id)
        return self._first("check player_id", query) is not None

    # =========================================================================
    # Conditional writes
    # =========================================================================

    def claim_token(
        self,
        token: str,
        user_id: str,
        release_profile_id: Optional[str] = None,
    ) -> Optional[Profile]:
        """
        Bind user_id to the profile holding token, and burn the token.

        The token is cleared in the same UPDATE that sets user_id, so a token
        can never be claimed twice. Returns None when no unclaimed profile
        holds the token (unknown, already used, or lost a race).

        Args:
            token: Trimmed claim token
            user_id: Auth user claiming the profile
            release_profile_id: Canonical profile currently owned by user_id
                (their own pending signup profile) to delete in the same
                transaction, so the one-profile-per-user index still holds

        Raises:
            DuplicateError: user_id already owns another canonical profile
            PersistenceError: any other store failure
        """
        try:
            target = self.find_by_token(token)
            if target is None or target.user_id is not None:
                return None
            target_id = target.id

            if release_profile_id is not None:
                self._delete_released_profile(release_profile_id, user_id)

            rows = (
                self.db.query(Profile)
                .filter(
                    Profile.id == target_id,
                    Profile.claim_token == token,
                    Profile.user_id.is_(None),
                )
                .update(
                    {
                        "user_id": user_id,
                        "claim_token": None,
                        "claimed_at": datetime.utcnow(),
                        "status": STATUS_APPROVED,
                        "is_approved": True,
                    },
                    synchronize_session=False,
                )
            )
            if rows != 1:
                self.db.rollback()
                return None
            self._commit("claim token")
        except SQLAlchemyError as exc:
            self._fail("claim token", exc)

        return self.get(target_id)

    def link_profile_to_user(
        self,
        profile_id: str,
        user_id: str,
        email: Optional[str] = None,
        release_profile_id: Optional[str] = None,
    ) -> Profile:
        """
        Set user_id on a canonical profile only if it is currently unowned.

        Args:
            profile_id: Target canonical profile
            user_id: Auth user to bind
            email: Registration email, stored when the profile has none
            release_profile_id: See claim_token()

        Raises:
            LinkConflict: The profile already has an owner (zero rows updated)
            DuplicateError: user_id already owns another canonical profile
            PersistenceError: any other store failure
        """
        values: dict[str, Any] = {
            "user_id": user_id,
            "status": STATUS_APPROVED,
            "is_approved": True,
        }

        try:
            if release_profile_id is not None:
                self._delete_released_profile(release_profile_id, user_id)

            rows = (
                self.db.query(Profile)
                .filter(
                    Profile.id == profile_id,
                    Profile.user_id.is_(None),
                    Profile.is_placeholder.is_(False),
                )
                .update(values, synchronize_session=False)
            )
            if rows != 1:
                self.db.rollback()
                raise LinkConflict(f"profile {profile_id} already linked")

            if email:
                (
                    self.db.query(Profile)
                    .filter(Profile.id == profile_id, Profile.email.is_(None))
                    .update({"email": email}, synchronize_session=False)
                )
            self._commit("link profile")
        except SQLAlchemyError as exc:
            self._fail("link profile", exc)

        return self.get(profile_id)

    # =========================================================================
    # Plain writes
    # =========================================================================

    def update(self, profile: Profile, **values: Any) -> Profile:
        """Apply values to an existing profile and commit."""
        for key, value in values.items():
            setattr(profile, key, value)
        try:
            self._commit("update profile")
        except SQLAlchemyError as exc:
            self._fail("update profile", exc)
        return profile

    def insert(self, profile: Profile) -> Profile:
        try:
            self.db.add(profile)
            self._commit("insert profile")
        except SQLAlchemyError as exc:
            self._fail("insert profile", exc)
        return profile

    def delete_placeholder(self, profile_id: str) -> bool:
        """
        Delete a placeholder row. A row that is already gone is not an error.

        Returns:
            True if a row was deleted, False if it no longer existed
        """
        try:
            rows = (
                self.db.query(Profile)
                .filter(Profile.id == profile_id, Profile.is_placeholder.is_(True))
                .delete(synchronize_session=False)
            )
            self._commit("delete placeholder")
        except SQLAlchemyError as exc:
            self._fail("delete placeholder", exc)
        return rows > 0

    def add_merge_suggestion(
        self,
        pending_profile_id: str,
        suggested_profile_id: str,
        score: int,
        reason: Optional[str],
    ) -> MergeSuggestion:
        suggestion = MergeSuggestion(
            pending_profile_id=pending_profile_id,
            suggested_profile_id=suggested_profile_id,
            score=score,
            reason=reason,
            status="pending",
        )
        try:
            self.db.add(suggestion)
            self._commit("add merge suggestion")
        except SQLAlchemyError as exc:
            self._fail("add merge suggestion", exc)
        return suggestion

    # =========================================================================
    # Private Helper Methods
    # =========================================================================

    def _delete_released_profile(self, profile_id: str, user_id: str) -> None:
        """
        Delete the user's own pending profile ahead of a relink.

        Only pending profiles the user created themselves qualify; admin-created
        or already approved profiles carry history and are never removed here.
        Does not commit.
        """
        (
            self.db.query(MergeSuggestion)
            .filter(MergeSuggestion.pending_profile_id == profile_id)
            .delete(synchronize_session=False)
        )
        (
            self.db.query(Profile)
            .filter(
                Profile.id == profile_id,
                Profile.user_id == user_id,
                Profile.created_by_admin.is_(False),
                Profile.status == STATUS_PENDING,
            )
            .delete(synchronize_session=False)
        )

    def _first(self, operation: str, query: Query) -> Any:
        try:
            return query.first()
        except SQLAlchemyError as exc:
            self._fail(operation, exc)

    def _commit(self, operation: str) -> None:
        self.db.commit()
        logger.debug("%s committed", operation)

    def _fail(self, operation: str, exc: SQLAlchemyError) -> None:
        """Roll back, log the raw error, and raise the tagged equivalent."""
        self.db.rollback()
        logger.error("%s failed: %s", operation, exc)
        # StaleDataError: the row was deleted under us by a concurrent registration
        if isinstance(exc, (IntegrityError, StaleDataError)):
            raise DuplicateError(str(exc)) from exc
        raise PersistenceError(str(exc)) from exc
