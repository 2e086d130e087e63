"""
Candidate matching for new registrations.

The linking service only depends on the CandidateMatcher protocol: given
the registrant's attributes, return candidates ordered by descending
score (0-100). How scores are produced is up to the implementation.

SqlCandidateMatcher is the default implementation. It scores every
canonical player profile with a small rule ladder:

    100  player_id_exact       derived player_id matches
    100  email_exact           same email, birth dates do not conflict
     70  email_dob_mismatch    same email, different birth dates
  60-85  name_birth_date       same birth date and similar name
  60-70  name_similar          similar name only

This is intentionally simple - for large leagues, move the scan into
the database (pg_trgm) behind the same protocol.
"""

import logging
from typing import Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pelada.config import Settings, settings as default_settings
from pelada.db.models import Profile
from pelada.players.errors import MatcherUnavailable
from pelada.players.keys import compare_names, derive_player_id, full_name, normalize_email
from pelada.players.outcomes import MatchCandidate, MatchQuery

logger = logging.getLogger(__name__)

# Minimum name similarity (0-1) for the name-based rules
NAME_WITH_BIRTH_DATE_MIN = 0.75
NAME_ONLY_MIN = 0.85


class CandidateMatcher(Protocol):
    def find_matching_profiles(self, query: MatchQuery) -> list[MatchCandidate]:
        """Return candidates ordered by descending match_score."""
        ...


class SqlCandidateMatcher:
    """
    Score canonical player profiles in the database against a registration.

    Usage:
        matcher = SqlCandidateMatcher(db_session)
        candidates = matcher.find_matching_profiles(MatchQuery(email="..."))
    """

    def __init__(self, db: Session, settings: Settings = default_settings):
        self.db = db
        self.limit = settings.matcher_candidate_limit

    def find_matching_profiles(self, query: MatchQuery) -> list[MatchCandidate]:
        """
        Raises:
            MatcherUnavailable: The profile scan failed
        """
        try:
            profiles = (
                self.db.query(Profile)
                .filter(Profile.is_placeholder.is_(False), Profile.is_player.is_(True))
                .all()
            )
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise MatcherUnavailable(str(exc)) from exc

        query_name = full_name(query.first_name, query.last_name)
        query_player_id = derive_player_id(query.email, query.birth_date)

        matches = []
        for profile in profiles:
            scored = score_profile(profile, query, query_name, query_player_id)
            if scored is None:
                continue
            score, reason = scored
            matches.append(MatchCandidate(
                profile_id=profile.id,
                match_score=score,
                match_reason=reason,
                name=profile.display_name,
                email=profile.email,
                birth_date=profile.birth_date,
                player_id=profile.player_id,
                user_id=profile.user_id,
            ))

        # Stable sort keeps insertion order between equal scores
        matches.sort(key=lambda m: m.match_score, reverse=True)
        return matches[:self.limit]


def score_profile(
    profile: Profile,
    query: MatchQuery,
    query_name: str,
    query_player_id: Optional[str],
) -> Optional[tuple[int, str]]:
    """
    Score one profile against the query.

    Returns:
        (score, reason) or None if the profile is not a candidate
    """
    if query_player_id and profile.player_id == query_player_id:
        return 100, "player_id_exact"

    email_match = bool(query.email) and normalize_email(profile.email) == query.email
    dob_known = query.birth_date is not None and profile.birth_date is not None
    dob_match = dob_known and profile.birth_date == query.birth_date

    if email_match:
        if dob_known and not dob_match:
            return 70, "email_dob_mismatch"
        return 100, "email_exact"

    if not query_name:
        return None

    similarity = max(
        compare_names(query_name, profile.name or ""),
        compare_names(query_name, full_name(profile.first_name, profile.last_name)),
    )

    if dob_match and similarity >= NAME_WITH_BIRTH_DATE_MIN:
        return 60 + round((similarity - NAME_WITH_BIRTH_DATE_MIN) * 100), "name_birth_date"

    if similarity >= NAME_ONLY_MIN:
        return max(60, round(similarity * 70)), "name_similar"

    return None
