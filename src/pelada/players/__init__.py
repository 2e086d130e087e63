"""
Player identity linking module.

This module reconciles a newly registered user with a player profile
that an admin may have imported before the player ever signed up, so
that one human never ends up with two disconnected histories.

Key components:
- PlayerLinkingService: Orchestrates one registration end to end
- LinkingDecisionEngine: Confidence thresholds over matcher candidates
- SqlCandidateMatcher: Default candidate matcher
- AdminLinkingService: Claim tokens and manual links for admins

The linking strategy (in priority order):
1. Claim token - deterministic, single use
2. Candidate score >= 90 - auto-link
3. Candidate score 60-89 - pending profile with merge suggestion
4. Otherwise - pending profile
"""

from pelada.players.admin import AdminLinkingService
from pelada.players.decision import LinkingDecisionEngine
from pelada.players.keys import derive_player_id, normalize_email
from pelada.players.linking import PlayerLinkingService
from pelada.players.matching import CandidateMatcher, SqlCandidateMatcher
from pelada.players.outcomes import (
    LinkingResult,
    MatchCandidate,
    MatchQuery,
    Outcome,
    RegistrationRequest,
)

__all__ = [
    "AdminLinkingService",
    "CandidateMatcher",
    "LinkingDecisionEngine",
    "LinkingResult",
    "MatchCandidate",
    "MatchQuery",
    "Outcome",
    "PlayerLinkingService",
    "RegistrationRequest",
    "SqlCandidateMatcher",
    "derive_player_id",
    "normalize_email",
]
