"""Audit sink writing ``audit_logs`` rows."""

import logging
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from quorumgate.db.models import AuditLog, AuditSeverity

logger = logging.getLogger(__name__)

# Outcomes that move assets or change a project's phase
HIGH_SEVERITY_ACTIONS = {"completed", "ready", "executed"}
WARNING_ACTIONS = {"expired", "rejected"}


def severity_for(action: str) -> AuditSeverity:
    if action in HIGH_SEVERITY_ACTIONS:
        return AuditSeverity.HIGH
    if action in WARNING_ACTIONS:
        return AuditSeverity.WARNING
    return AuditSeverity.INFO


class DatabaseAuditSink:
    """
    Persists audit entries, each in its own short session.

    Entries are written after the approval transaction committed, so a
    failed write never affects the recorded outcome.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def record(
        self,
        entity_type: str,
        entity_id: str,
        actor_id: Optional[str],
        action: str,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        entry = AuditLog.create_entry(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_id=actor_id,
            old_values=before,
            new_values=after,
            details=details,
            severity=severity_for(action),
        )
        db = self.session_factory()
        try:
            db.add(entry)
            db.commit()
        finally:
            db.close()
        logger.debug("Audit %s on %s %s by %s", action, entity_type, entity_id, actor_id or "system")
