"""
Unit tests for PlayerLinkingService.

Covers the token, auto-link, partial and no-match paths, plus the retry
and race behaviour that keeps one profile per human.
"""

from datetime import date

import pytest
from sqlalchemy.exc import OperationalError

from pelada.db.models import STATUS_APPROVED, STATUS_PENDING, AuditLog, MergeSuggestion, Profile
from pelada.players.errors import DuplicateError, PersistenceError, ValidationError
from pelada.players.keys import derive_player_id
from pelada.players.linking import PlayerLinkingService
from pelada.players.outcomes import Outcome, RegistrationRequest
from pelada.players.store import ProfileStore

BIRTH = date(1990, 3, 7)
EMAIL = "Joao.Silva@gmail.com"


def _request(user_id="user-1", **kwargs):
    values = {
        "auth_user_id": user_id,
        "email": EMAIL,
        "birth_date": BIRTH,
        "first_name": "Joao",
        "last_name": "Silva",
        "position": "atacante",
    }
    values.update(kwargs)
    return RegistrationRequest(**values)


def _audit_actions(session):
    return [row.action for row in session.query(AuditLog).order_by(AuditLog.id).all()]


@pytest.fixture
def service_for(db_session, settings, stub_matcher):
    def _build(candidates=None, matcher=None):
        return PlayerLinkingService(
            db_session,
            matcher=matcher if matcher is not None else stub_matcher(candidates),
            settings=settings,
        )
    return _build


# =============================================================================
# Validation
# =============================================================================

class TestValidation:

    def test_missing_email(self, service_for, db_session):
        with pytest.raises(ValidationError):
            service_for().link_player(_request(email=""))
        assert _audit_actions(db_session) == []

    def test_missing_user(self, service_for, db_session):
        with pytest.raises(ValidationError):
            service_for().link_player(_request(user_id="  "))
        assert db_session.query(Profile).count() == 0


# =============================================================================
# Claim token
# =============================================================================

class TestTokenClaim:

    def test_valid_token_links_and_burns(self, service_for, db_session, make_profile, make_placeholder):
        target = make_profile(name="Joao Importado", claim_token="ABC123")
        placeholder = make_placeholder("user-1", EMAIL)
        placeholder_id = placeholder.id
        matcher_calls = []

        class RecordingMatcher:
            def find_matching_profiles(self, query):
                matcher_calls.append(query)
                return []

        result = service_for(matcher=RecordingMatcher()).link_player(_request(claim_token=" ABC123 "))

        assert result.outcome == Outcome.CLAIMED_VIA_TOKEN
        assert result.linked is True
        assert result.created is False
        assert result.profile_id == target.id
        assert matcher_calls == []

        db_session.expire_all()
        claimed = db_session.get(Profile, target.id)
        assert claimed.user_id == "user-1"
        assert claimed.claim_token is None
        assert claimed.claimed_at is not None
        assert db_session.get(Profile, placeholder_id) is None
        assert _audit_actions(db_session) == ["CLAIMED_VIA_TOKEN"]

    def test_token_reuse_falls_through(self, service_for, db_session, make_profile, make_placeholder):
        make_profile(claim_token="ABC123")
        service_for().link_player(_request(user_id="user-1", claim_token="ABC123"))

        make_placeholder("user-2", "outro@x.com")
        result = service_for().link_player(
            _request(user_id="user-2", email="outro@x.com", claim_token="ABC123")
        )

        assert result.outcome == Outcome.NO_MATCH
        assert result.linked is False
        assert result.created is True

    def test_unknown_token_is_not_an_error(self, service_for, db_session, make_placeholder):
        make_placeholder("user-1", EMAIL)
        result = service_for().link_player(_request(claim_token="NOPE99"))
        assert result.outcome == Outcome.NO_MATCH

    def test_blank_token_skipped(self, service_for, make_profile, make_placeholder):
        make_profile(claim_token="ABC123")
        make_placeholder("user-1", EMAIL)
        result = service_for().link_player(_request(claim_token="   "))
        assert result.outcome == Outcome.NO_MATCH

    def test_audit_never_stores_token(self, service_for, db_session, make_profile, make_placeholder):
        make_profile(claim_token="ABC123")
        make_placeholder("user-1", EMAIL)
        service_for().link_player(_request(claim_token="ABC123"))

        entry = db_session.query(AuditLog).one()
        assert "ABC123" not in str(entry.details)
        assert entry.details["input"]["has_claim_token"] is True


# =============================================================================
# Auto-link
# =============================================================================

class TestAutoLink:

    def test_high_score_links_candidate(self, service_for, db_session, make_profile,
                                        make_placeholder, make_candidate):
        target = make_profile(name="Joao Silva")
        placeholder = make_placeholder("user-1", EMAIL)
        placeholder_id = placeholder.id

        result = service_for([make_candidate(target.id, 100)]).link_player(_request())

        assert result.outcome == Outcome.AUTO_LINK
        assert result.linked is True
        assert result.created is False
        assert result.score == 100
        assert result.profile_id == target.id

        db_session.expire_all()
        assert db_session.get(Profile, target.id).user_id == "user-1"
        assert db_session.get(Profile, target.id).email == EMAIL
        assert db_session.get(Profile, placeholder_id) is None
        assert _audit_actions(db_session) == ["AUTO_LINK"]

    def test_linked_candidate_never_hijacked(self, service_for, db_session, make_profile,
                                             make_placeholder, make_candidate):
        owned = make_profile(name="Joao Silva", user_id="real-owner")
        make_placeholder("user-1", EMAIL)

        result = service_for([make_candidate(owned.id, 100, user_id="real-owner")]).link_player(
            _request()
        )

        assert result.outcome == Outcome.NO_MATCH
        db_session.expire_all()
        assert db_session.get(Profile, owned.id).user_id == "real-owner"

    def test_lost_race_degrades_to_no_match(self, service_for, db_session, make_profile,
                                            make_placeholder, make_candidate):
        """The matcher saw the profile unowned, but another signup linked it first."""
        target = make_profile(name="Joao Silva")
        stale = make_candidate(target.id, 95)
        target.user_id = "faster-user"
        db_session.commit()
        make_placeholder("user-1", EMAIL)

        result = service_for([stale]).link_player(_request())

        assert result.outcome == Outcome.NO_MATCH
        assert result.lost_race is True
        assert result.created is True
        db_session.expire_all()
        assert db_session.get(Profile, target.id).user_id == "faster-user"

    def test_concurrent_signups_single_winner(self, session_factory, settings, stub_matcher,
                                              make_profile, make_placeholder, make_candidate):
        target = make_profile(name="Joao Silva")
        make_placeholder("user-1", EMAIL)
        make_placeholder("user-2", EMAIL)
        same_candidate = make_candidate(target.id, 100)

        first = PlayerLinkingService(session_factory(), stub_matcher([same_candidate]), settings)
        second = PlayerLinkingService(session_factory(), stub_matcher([same_candidate]), settings)

        results = [
            first.link_player(_request(user_id="user-1")),
            second.link_player(_request(user_id="user-2")),
        ]

        outcomes = sorted(r.outcome.value for r in results)
        assert outcomes == ["AUTO_LINK", "NO_MATCH"]
        check = session_factory()
        assert check.query(Profile).filter(Profile.user_id.in_(["user-1", "user-2"]),
                                           Profile.id == target.id).count() == 1
        check.close()


# =============================================================================
# Pending paths
# =============================================================================

class TestPending:

    def test_partial_match_promotes_placeholder(self, service_for, db_session, make_profile,
                                                make_placeholder, make_candidate):
        suggested = make_profile(name="Joao S.")
        placeholder = make_placeholder("user-1", EMAIL)
        placeholder_id = placeholder.id

        result = service_for([make_candidate(suggested.id, 75, name="Joao S.")]).link_player(_request())

        assert result.outcome == Outcome.PARTIAL_PENDING
        assert result.linked is False
        assert result.created is True
        assert result.profile_id == placeholder_id
        assert result.player_id == derive_player_id(EMAIL, BIRTH)
        assert result.suggestion.profile_id == suggested.id

        db_session.expire_all()
        promoted = db_session.get(Profile, placeholder_id)
        assert promoted.is_placeholder is False
        assert promoted.status == STATUS_PENDING
        assert promoted.is_player is True
        assert promoted.is_approved is False
        assert promoted.position == "atacante"
        assert db_session.get(Profile, suggested.id).user_id is None
        assert db_session.query(Profile).count() == 2

        suggestion = db_session.query(MergeSuggestion).one()
        assert suggestion.pending_profile_id == placeholder_id
        assert suggestion.suggested_profile_id == suggested.id
        assert suggestion.score == 75
        assert _audit_actions(db_session) == ["PARTIAL_PENDING"]

    def test_no_candidates(self, service_for, db_session, make_placeholder):
        placeholder = make_placeholder("user-1", EMAIL)
        result = service_for([]).link_player(_request())

        assert result.outcome == Outcome.NO_MATCH
        assert result.profile_id == placeholder.id
        assert result.suggestion is None
        assert db_session.query(MergeSuggestion).count() == 0
        assert db_session.query(Profile).count() == 1

    def test_low_score_no_suggestion(self, service_for, db_session, make_profile,
                                     make_placeholder, make_candidate):
        other = make_profile()
        make_placeholder("user-1", EMAIL)
        result = service_for([make_candidate(other.id, 45)]).link_player(_request())

        assert result.outcome == Outcome.NO_MATCH
        assert result.score is None
        assert db_session.query(MergeSuggestion).count() == 0

    def test_no_birth_date_leaves_player_id_unset(self, service_for, db_session, make_placeholder):
        make_placeholder("user-1", EMAIL)
        result = service_for([]).link_player(_request(birth_date=None))
        assert result.player_id is None

    def test_missing_placeholder_falls_back_to_insert(self, service_for, db_session):
        result = service_for([]).link_player(_request())

        assert result.outcome == Outcome.FALLBACK_CREATED
        assert result.created is True
        profile = db_session.query(Profile).one()
        assert profile.user_id == "user-1"
        assert profile.is_placeholder is False
        assert profile.status == STATUS_PENDING
        assert profile.name == "Joao Silva"
        assert _audit_actions(db_session) == ["FALLBACK_CREATED"]


# =============================================================================
# Failure handling
# =============================================================================

class TestFailures:

    def test_matcher_failure_fails_open(self, service_for, db_session, make_placeholder,
                                        failing_matcher):
        make_placeholder("user-1", EMAIL)
        result = service_for(matcher=failing_matcher()).link_player(_request())
        assert result.outcome == Outcome.NO_MATCH
        assert result.created is True

    def test_broken_candidate_takes_fallback(self, service_for, db_session, make_placeholder):
        make_placeholder("user-1", EMAIL)

        class Broken:
            def find_matching_profiles(self, query):
                return [object()]

        result = service_for(matcher=Broken()).link_player(_request())
        assert result.outcome == Outcome.FALLBACK_CREATED
        assert db_session.query(Profile).count() == 1

    def test_audit_failure_does_not_undo_link(self, service_for, db_session, make_profile,
                                              make_placeholder, make_candidate, test_engine):
        target = make_profile(name="Joao Silva")
        make_placeholder("user-1", EMAIL)
        AuditLog.__table__.drop(test_engine)

        result = service_for([make_candidate(target.id, 100)]).link_player(_request())

        assert result.outcome == Outcome.AUTO_LINK
        db_session.expire_all()
        assert db_session.get(Profile, target.id).user_id == "user-1"

    def test_promote_failure_is_persistence_error(self, service_for, db_session,
                                                  make_placeholder, monkeypatch):
        make_placeholder("user-1", EMAIL)

        def failing_commit():
            raise OperationalError("UPDATE profiles", {}, Exception("disk I/O error"))

        monkeypatch.setattr(db_session, "commit", failing_commit)
        with pytest.raises(PersistenceError):
            service_for([]).link_player(_request())


# =============================================================================
# Retries
# =============================================================================

class TestIdempotence:

    def test_retry_after_auto_link(self, service_for, db_session, make_profile,
                                   make_placeholder, make_candidate):
        target = make_profile(name="Joao Silva")
        make_placeholder("user-1", EMAIL)
        service = service_for([make_candidate(target.id, 100)])

        first = service.link_player(_request())
        second = service.link_player(_request())

        assert first.outcome == Outcome.AUTO_LINK
        assert second.outcome == Outcome.ALREADY_LINKED
        assert second.profile_id == target.id
        assert second.linked is True
        assert db_session.query(Profile).count() == 1
        assert _audit_actions(db_session) == ["AUTO_LINK", "ALREADY_LINKED"]

    def test_retry_after_no_match(self, service_for, db_session, make_placeholder):
        make_placeholder("user-1", EMAIL)
        service = service_for([])

        first = service.link_player(_request())
        second = service.link_player(_request())

        assert second.outcome == Outcome.ALREADY_LINKED
        assert second.profile_id == first.profile_id
        assert second.linked is False
        assert second.created is False
        assert db_session.query(Profile).count() == 1

    def test_retry_with_other_candidate_does_not_relink(self, service_for, db_session,
                                                        make_profile, make_placeholder,
                                                        make_candidate):
        first_target = make_profile(name="Joao Silva")
        other = make_profile(name="Outro Joao")
        make_placeholder("user-1", EMAIL)
        service_for([make_candidate(first_target.id, 100)]).link_player(_request())

        result = service_for([make_candidate(other.id, 100)]).link_player(_request())

        assert result.profile_id == first_target.id
        db_session.expire_all()
        assert db_session.get(Profile, other.id).user_id is None


# =============================================================================
# Token claim after signup
# =============================================================================

class TestClaimAfterSignup:

    def test_pending_user_claims_token(self, service_for, db_session, make_profile, make_placeholder):
        make_placeholder("user-1", EMAIL)
        pending = service_for([]).link_player(_request())
        target = make_profile(name="Joao Importado", claim_token="XYZ789")

        result = service_for().claim_with_token("XYZ789", "user-1")

        assert result.outcome == Outcome.CLAIMED_VIA_TOKEN
        db_session.expire_all()
        assert db_session.get(Profile, target.id).user_id == "user-1"
        assert db_session.get(Profile, pending.profile_id) is None

    def test_invalid_token_keeps_pending_profile(self, service_for, db_session, make_placeholder):
        make_placeholder("user-1", EMAIL)
        pending = service_for([]).link_player(_request())

        result = service_for().claim_with_token("WRONG1", "user-1")

        assert result.outcome == Outcome.NO_MATCH
        db_session.expire_all()
        assert db_session.get(Profile, pending.profile_id) is not None

    def test_blank_token_rejected(self, service_for):
        with pytest.raises(ValidationError):
            service_for().claim_with_token("  ", "user-1")

    def test_approved_self_signup_is_never_released(self, service_for, db_session, make_profile):
        approved = make_profile(
            name="Joao Silva", user_id="user-1", created_by_admin=False, status=STATUS_APPROVED
        )
        target = make_profile(name="Joao Importado", claim_token="XYZ789")

        result = service_for().claim_with_token("XYZ789", "user-1")

        assert result.outcome == Outcome.ALREADY_LINKED
        assert result.profile_id == approved.id
        db_session.expire_all()
        assert db_session.get(Profile, approved.id) is not None
        assert db_session.get(Profile, target.id).claim_token == "XYZ789"
        assert db_session.get(Profile, target.id).user_id is None

    def test_store_refuses_to_release_approved_profile(self, db_session, make_profile):
        approved = make_profile(user_id="user-1", created_by_admin=False, status=STATUS_APPROVED)
        make_profile(claim_token="XYZ789")

        with pytest.raises(DuplicateError):
            ProfileStore(db_session).claim_token("XYZ789", "user-1", release_profile_id=approved.id)

        db_session.expire_all()
        assert db_session.get(Profile, approved.id) is not None


# =============================================================================
# Races between concurrent registrations
# =============================================================================

class TestRaces:

    def test_token_claimed_between_read_and_update(self, session_factory, settings, stub_matcher,
                                                   make_profile, make_placeholder, monkeypatch):
        target = make_profile(name="Joao Importado", claim_token="RACE2345")
        make_placeholder("user-1", EMAIL)
        make_placeholder("user-2", "outro@x.com")

        slow = PlayerLinkingService(session_factory(), stub_matcher(), settings)
        fast = PlayerLinkingService(session_factory(), stub_matcher(), settings)
        results = {}
        read_token = slow.store.find_by_token

        def read_then_lose(token):
            profile = read_token(token)
            results["fast"] = fast.link_player(
                _request(user_id="user-2", email="outro@x.com", claim_token=token)
            )
            return profile

        monkeypatch.setattr(slow.store, "find_by_token", read_then_lose)
        results["slow"] = slow.link_player(_request(user_id="user-1", claim_token="RACE2345"))

        assert results["fast"].outcome == Outcome.CLAIMED_VIA_TOKEN
        assert results["slow"].outcome == Outcome.NO_MATCH
        assert results["slow"].created is True

        check = session_factory()
        assert check.get(Profile, target.id).user_id == "user-2"
        assert check.query(AuditLog).filter(AuditLog.action == "CLAIMED_VIA_TOKEN").count() == 1
        check.close()

    def test_duplicate_request_wins_auto_link_first(self, db_session, session_factory, settings,
                                                    stub_matcher, make_profile, make_placeholder,
                                                    make_candidate):
        target = make_profile(name="Joao Silva")
        make_placeholder("user-1", EMAIL)
        same_candidate = make_candidate(target.id, 100)
        duplicate = PlayerLinkingService(session_factory(), stub_matcher([same_candidate]), settings)

        class DuplicateRunsFirst:
            def find_matching_profiles(self, query):
                duplicate.link_player(_request())
                return [same_candidate]

        result = PlayerLinkingService(db_session, DuplicateRunsFirst(), settings).link_player(
            _request()
        )

        assert result.outcome == Outcome.ALREADY_LINKED
        assert result.profile_id == target.id
        db_session.expire_all()
        assert db_session.query(Profile).count() == 1

    def test_promoting_deleted_placeholder_is_duplicate(self, db_session, session_factory,
                                                        make_placeholder):
        placeholder = make_placeholder("user-1", EMAIL)
        placeholder_id = placeholder.id

        other = session_factory()
        other.query(Profile).filter(Profile.id == placeholder_id).delete()
        other.commit()
        other.close()

        with pytest.raises(DuplicateError):
            ProfileStore(db_session).update(placeholder, name="Joao Silva")
