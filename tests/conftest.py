"""
Pytest configuration and fixtures.

This file is automatically loaded by pytest and provides
shared fixtures for all tests.
"""

from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from pelada.config import Settings
from pelada.db.models import STATUS_APPROVED, Base, Profile
from pelada.players.outcomes import MatchCandidate


@pytest.fixture
def test_engine(tmp_path):
    """
    Create a test database engine.

    Uses a throwaway SQLite file per test (rather than :memory:) so that
    several sessions, and the TestClient's worker thread, see the same data.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'pelada.db'}",
        connect_args={"check_same_thread": False},
        echo=False,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return sessionmaker(bind=test_engine, autoflush=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def settings():
    return Settings(_env_file=None)


@pytest.fixture
def make_profile(db_session):
    """Insert a profile and return it. Defaults describe an admin import."""

    def _make(**values):
        defaults = {
            "name": "Jogador Importado",
            "status": STATUS_APPROVED,
            "is_player": True,
            "is_approved": True,
            "is_placeholder": False,
            "created_by_admin": True,
        }
        defaults.update(values)
        profile = Profile(**defaults)
        db_session.add(profile)
        db_session.commit()
        return profile

    return _make


@pytest.fixture
def make_placeholder(db_session):
    """Insert the row the signup trigger creates for a new auth user."""

    def _make(user_id, email, name="Novo Jogador"):
        profile = Profile(
            user_id=user_id,
            email=email,
            name=name,
            is_placeholder=True,
            created_by_admin=False,
        )
        db_session.add(profile)
        db_session.commit()
        return profile

    return _make


class StubMatcher:
    """Matcher returning a fixed candidate list and recording its queries."""

    def __init__(self, candidates=None):
        self.candidates = list(candidates or [])
        self.queries = []

    def find_matching_profiles(self, query):
        self.queries.append(query)
        return list(self.candidates)


class FailingMatcher:
    def __init__(self, exc=None):
        self.exc = exc or TimeoutError("matcher timed out")

    def find_matching_profiles(self, query):
        raise self.exc


def candidate(profile_id, score, user_id=None, name="Candidato", reason="stub"):
    return MatchCandidate(
        profile_id=profile_id,
        match_score=score,
        match_reason=reason,
        name=name,
        birth_date=date(1990, 3, 7),
        user_id=user_id,
    )


@pytest.fixture
def stub_matcher():
    return StubMatcher


@pytest.fixture
def failing_matcher():
    return FailingMatcher


@pytest.fixture
def make_candidate():
    return candidate
