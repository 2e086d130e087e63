"""
Turn a registration that was not linked into a pending player profile.

The signup trigger already inserted a placeholder row for the user. It is
promoted in place, so a user never ends up with two rows. If the trigger
failed and there is no placeholder, a fresh pending profile is created
instead; a registration always ends with some usable profile.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from pelada.db.models import STATUS_PENDING, Profile
from pelada.players.errors import LinkingError
from pelada.players.outcomes import MatchCandidate, RegistrationRequest
from pelada.players.store import ProfileStore

logger = logging.getLogger(__name__)

DEFAULT_PLAYER_NAME = "Jogador"


@dataclass(frozen=True)
class Reconciliation:
    profile: Profile
    # True when no placeholder existed and a new row was inserted
    fallback: bool


class TemporaryProfileReconciler:

    def __init__(self, store: ProfileStore):
        self.store = store

    def reconcile(
        self,
        request: RegistrationRequest,
        placeholder: Optional[Profile],
        suggestion: Optional[MatchCandidate] = None,
    ) -> Reconciliation:
        """
        Promote the placeholder (or create a profile) with pending status.

        Args:
            request: Registration attributes
            placeholder: The user's placeholder row, if the trigger made one
            suggestion: Partial-match candidate to queue for admin review

        Raises:
            DuplicateError / PersistenceError: from the store
        """
        if placeholder is not None:
            values = self._pending_values(request, exclude_profile_id=placeholder.id)
            # Keep whatever the trigger already stored when the form left it blank
            for key in ("first_name", "last_name", "nickname", "birth_date", "position"):
                if values[key] is None:
                    values[key] = getattr(placeholder, key)
            if not request.full_name and placeholder.name:
                values["name"] = placeholder.name
            profile = self.store.update(placeholder, **values)
            fallback = False
            logger.info("Promoted placeholder %s to pending profile", profile.id)
        else:
            logger.warning(
                "No placeholder for user %s, creating pending profile from registration",
                request.auth_user_id,
            )
            profile = self.store.insert(
                Profile(user_id=request.auth_user_id, **self._pending_values(request))
            )
            fallback = True

        if suggestion is not None:
            self._suggest(profile.id, suggestion)

        return Reconciliation(profile=profile, fallback=fallback)

    def _pending_values(
        self,
        request: RegistrationRequest,
        exclude_profile_id: Optional[str] = None,
    ) -> dict[str, Any]:
        player_id = request.player_id
        if player_id and self.store.player_id_taken(player_id, exclude_profile_id):
            # The key belongs to someone else (only reachable when that profile
            # was filtered out as already linked); leave ours unset
            logger.warning("player_id %s already in use, leaving it unset", player_id)
            player_id = None

        return {
            "player_id": player_id,
            "email": request.email,
            "name": request.full_name or DEFAULT_PLAYER_NAME,
            "first_name": request.first_name,
            "last_name": request.last_name,
            "nickname": request.first_name,
            "birth_date": request.birth_date,
            "position": request.position,
            "status": STATUS_PENDING,
            "is_player": True,
            "is_approved": False,
            "is_placeholder": False,
        }

    def _suggest(self, profile_id: str, suggestion: MatchCandidate) -> None:
        """Suggestions are advisory; losing one must not fail the registration."""
        try:
            self.store.add_merge_suggestion(
                pending_profile_id=profile_id,
                suggested_profile_id=suggestion.profile_id,
                score=suggestion.match_score,
                reason=suggestion.match_reason,
            )
        except LinkingError as exc:
            logger.error(
                "Could not store merge suggestion %s -> %s (%s)",
                profile_id,
                suggestion.profile_id,
                exc.kind.value,
            )
