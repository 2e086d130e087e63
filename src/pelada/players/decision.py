"""
Confidence-threshold policy for matcher candidates.

    score >= 90        AUTO_LINK        bind the user to the candidate
    60 <= score < 90   PARTIAL_PENDING  keep a pending profile, suggest a merge
    score < 60 / none  NO_MATCH         keep a pending profile

A wrong auto-merge mixes two people's history, which is much harder to
undo than an admin clicking "link" on a suggestion, hence the high bar.
"""

import logging
from typing import Iterable, Optional

from pelada.config import Settings, settings as default_settings
from pelada.players.outcomes import LinkDecision, MatchCandidate, Outcome

logger = logging.getLogger(__name__)


class LinkingDecisionEngine:
    """
    Classify the best candidate of a matcher result.

    Thresholds are read from settings at construction time so tests can
    pass their own Settings.
    """

    def __init__(self, settings: Settings = default_settings):
        self.auto_link_threshold = settings.auto_link_threshold
        self.partial_match_threshold = settings.partial_match_threshold
        if self.partial_match_threshold > self.auto_link_threshold:
            raise ValueError("partial_match_threshold cannot exceed auto_link_threshold")

    def decide(self, candidates: Iterable[MatchCandidate]) -> LinkDecision:
        """
        Pick the outcome for a registration.

        Candidates that already belong to a user are dropped first, whatever
        their score. Among the rest the first one with the top score wins;
        the matcher's order is trusted and not re-sorted.
        """
        available = []
        discarded = 0
        for candidate in candidates:
            if candidate.is_linked:
                discarded += 1
                continue
            available.append(candidate)

        if discarded:
            logger.info("Discarded %d already-linked candidate(s)", discarded)

        best = self._best(available)
        if best is None:
            return LinkDecision(outcome=Outcome.NO_MATCH, discarded_linked=discarded)

        score = best.match_score
        if score >= self.auto_link_threshold:
            outcome = Outcome.AUTO_LINK
        elif score >= self.partial_match_threshold:
            outcome = Outcome.PARTIAL_PENDING
        else:
            return LinkDecision(outcome=Outcome.NO_MATCH, discarded_linked=discarded)

        return LinkDecision(outcome=outcome, candidate=best, discarded_linked=discarded)

    @staticmethod
    def _best(candidates: list[MatchCandidate]) -> Optional[MatchCandidate]:
        best = None
        for candidate in candidates:
            if best is None or candidate.match_score > best.match_score:
                best = candidate
        return best
