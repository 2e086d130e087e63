"""
Claim token handling.

Admins hand a short single-use code to a player whose profile they
imported. Presenting it at signup (or later, from the pending banner)
links the player deterministically, without any matching.
"""

import logging
import secrets
from dataclasses import dataclass
from typing import Optional

from pelada.db.models import Profile
from pelada.players.store import ProfileStore

logger = logging.getLogger(__name__)

# No 0/O or 1/I, tokens are read aloud and typed on phones
TOKEN_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def generate_claim_token(length: int = 8) -> str:
    """Random token from TOKEN_ALPHABET."""
    if length < 4:
        raise ValueError("claim tokens must be at least 4 characters")
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


@dataclass(frozen=True)
class TokenClaim:
    claimed: bool
    profile: Optional[Profile] = None


class TokenClaimPath:
    """
    Try to link a user through a claim token.

    An absent token skips the path. An unknown or already used token is
    not an error: the caller simply continues with candidate matching.
    """

    def __init__(self, store: ProfileStore):
        self.store = store

    def claim(
        self,
        token: Optional[str],
        user_id: str,
        release_profile_id: Optional[str] = None,
    ) -> TokenClaim:
        if not token:
            return TokenClaim(claimed=False)

        profile = self.store.claim_token(token, user_id, release_profile_id=release_profile_id)
        if profile is None:
            logger.info("Claim token not usable for user %s, falling through", user_id)
            return TokenClaim(claimed=False)

        logger.info("User %s claimed profile %s via token", user_id, profile.id)
        return TokenClaim(claimed=True, profile=profile)
