"""Append-only audit trail for linking decisions."""

import logging
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pelada.db.models import AuditLog

logger = logging.getLogger(__name__)


class AuditRecorder:
    """
    Write one AuditLog row per decision.

    Called only after the profile change it describes has been committed.
    A failed write is logged and swallowed: the audit trail never blocks or
    reverses a link that already happened.
    """

    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        action: str,
        actor_id: Optional[str],
        target_profile_id: Optional[str],
        metadata: Optional[dict[str, Any]] = None,
    ) -> Optional[AuditLog]:
        entry = AuditLog(
            action=action,
            actor_id=actor_id,
            target_profile_id=target_profile_id,
            details=metadata or {},
        )
        try:
            self.db.add(entry)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Audit write failed for %s on %s: %s", action, target_profile_id, exc)
            return None
        return entry
