"""
Rebind an auth user to an existing canonical profile.

Used after a token claim or an auto-link decision. The rebind itself is
authoritative; removing the user's placeholder afterwards is cleanup and
never takes away access that was just granted.
"""

import logging
from typing import Optional

from pelada.db.models import Profile
from pelada.players.errors import LinkingError
from pelada.players.store import ProfileStore

logger = logging.getLogger(__name__)


class ProfileLinker:

    def __init__(self, store: ProfileStore):
        self.store = store

    def link(
        self,
        profile_id: str,
        user_id: str,
        email: Optional[str] = None,
        placeholder: Optional[Profile] = None,
    ) -> Profile:
        """
        Link user_id to profile_id, then drop the user's placeholder.

        Raises:
            LinkConflict: Someone else owns the profile by now
            DuplicateError / PersistenceError: from the store
        """
        placeholder_id = placeholder.id if placeholder is not None else None
        profile = self.store.link_profile_to_user(profile_id, user_id, email=email)
        logger.info("Linked user %s to profile %s", user_id, profile_id)

        if placeholder_id is not None and placeholder_id != profile_id:
            self.discard_placeholder(placeholder_id)
        return profile

    def discard_placeholder(self, placeholder_id: str) -> None:
        """Best-effort placeholder deletion; failures are logged only."""
        try:
            deleted = self.store.delete_placeholder(placeholder_id)
        except LinkingError as exc:
            logger.error(
                "Could not delete placeholder %s (%s); leaving it for cleanup",
                placeholder_id,
                exc.kind.value,
            )
            return
        if not deleted:
            logger.debug("Placeholder %s was already gone", placeholder_id)
