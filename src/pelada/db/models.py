"""
SQLAlchemy ORM models for Pelada.

The schema is built around one durable profile per human. A profile row is
either a placeholder (auto-created at signup, owned by the new auth user and
waiting for identity resolution) or canonical (the record that accumulates
history and stats). Admins bulk-import canonical profiles before the players
ever sign up; the linking service later binds an auth user to one of them.

Key design decisions:
- Placeholders and canonical profiles share one table, split by is_placeholder
- At most one canonical profile may hold a given user_id (partial unique index)
- Claim tokens are unique and cleared the moment they are used
- Audit entries are append-only

Tables:
- profiles: Placeholder and canonical player profiles
- merge_suggestions: Medium-confidence candidates awaiting admin review
- audit_logs: One row per linking decision
"""

import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# =============================================================================
# Constants
# =============================================================================

# Profile status values (kept in Portuguese, they are shown verbatim in the UI)
STATUS_PENDING = "pendente"
STATUS_APPROVED = "aprovado"
STATUS_FROZEN = "congelado"
STATUS_REJECTED = "rejeitado"

PROFILE_STATUSES = (STATUS_PENDING, STATUS_APPROVED, STATUS_FROZEN, STATUS_REJECTED)

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JsonType = JSON().with_variant(JSONB(), "postgresql")


def _new_uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


# =============================================================================
# Profile Models
# =============================================================================

class Profile(Base):
    """
    Player profile, placeholder or canonical.

    A placeholder (is_placeholder=True) is created by the signup trigger with
    user_id set to the new auth user. Resolution either deletes it (the user
    was linked to another profile) or promotes it in place to a canonical
    pending profile.

    A canonical profile created by an admin starts with user_id NULL and may
    carry a single-use claim_token handed to the real player.
    """
    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_uuid)

    # Auth identity that owns this profile (NULL for admin-imported players)
    user_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    # Deterministic key: normalized email + DDMMYYYY birth date
    player_id: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False, default="Jogador")
    first_name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    nickname: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    birth_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    position: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)  # 'goleiro', 'atacante', ...

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=STATUS_PENDING)
    is_player: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_placeholder: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    created_by_admin: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )

    # Single-use secret for direct linking; cleared atomically when claimed
    claim_token: Mapped[Optional[str]] = mapped_column(String(64), unique=True, nullable=True)
    claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        # One canonical profile per human; placeholders are excluded
        Index(
            "uq_profiles_canonical_user_id",
            "user_id",
            unique=True,
            postgresql_where=text("is_placeholder = false"),
            sqlite_where=text("is_placeholder = 0"),
        ),
        Index("idx_profiles_email", "email"),
        Index("idx_profiles_birth_date", "birth_date"),
    )

    @property
    def display_name(self) -> str:
        return self.nickname or self.name

    def __repr__(self) -> str:
        kind = "placeholder" if self.is_placeholder else "canonical"
        return f"<Profile(id={self.id}, name='{self.name}', {kind}, user_id={self.user_id})>"


class MergeSuggestion(Base):
    """
    Medium-confidence candidate recorded for admin review.

    Written when a registration lands in the partial-match band: the new
    pending profile is kept, and the candidate it probably duplicates is
    surfaced to admins.

    When an admin links the pending user to an existing profile, the pending
    profile and its suggestions are deleted together (the audit log keeps
    the record). Otherwise the admin marks the suggestion 'dismissed'.
    """
    __tablename__ = "merge_suggestions"

    id: Mapped[int] = mapped_column(primary_key=True)

    pending_profile_id: Mapped[str] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    suggested_profile_id: Mapped[str] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    status: Mapped[str] = mapped_column(String(20), default="pending")  # 'pending', 'dismissed'
    resolved_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_merge_suggestions_status", "status", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<MergeSuggestion(pending={self.pending_profile_id}, "
            f"suggested={self.suggested_profile_id}, score={self.score})>"
        )


# =============================================================================
# Audit Models
# =============================================================================

class AuditLog(Base):
    """
    Immutable record of one linking decision.

    Never updated or deleted by application code.
    """
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(primary_key=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    target_profile_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    # 'metadata' is reserved on declarative classes
    details: Mapped[Optional[dict]] = mapped_column("metadata", JsonType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_audit_logs_action_date", "action", "created_at"),
        Index("idx_audit_logs_target", "target_profile_id"),
    )

    def __repr__(self) -> str:
        return f"<AuditLog(action='{self.action}', target={self.target_profile_id})>"
