"""Audit log model for QuorumGate.

Entries are append-only: the application never updates or deletes them.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any
from sqlalchemy import Column, String, DateTime, JSON, Uuid

from quorumgate.db.base import Base


class AuditSeverity(str, Enum):
    """Severity levels for audit log entries."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    HIGH = "high"         # Asset-moving or phase-changing actions
    CRITICAL = "critical" # Security-relevant events


class AuditLog(Base):
    """
    Immutable audit log entry.

    Records every state transition produced by the approval engine.
    """
    __tablename__ = "audit_logs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Actor information (None for system actions such as lazy expiry)
    actor_id = Column(String(64), nullable=True, index=True)

    # Action details
    action = Column(String(100), nullable=False, index=True)
    entity_type = Column(String(100), nullable=False, index=True)
    entity_id = Column(String(64), nullable=True, index=True)

    # Change tracking
    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    details = Column(JSON, nullable=True)

    severity = Column(String(20), nullable=False, default="info", index=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    def __repr__(self) -> str:
        return f"<AuditLog {self.action} on {self.entity_type} by {self.actor_id}>"

    @classmethod
    def create_entry(
        cls,
        action: str,
        entity_type: str,
        *,
        entity_id: Optional[str] = None,
        actor_id: Optional[str] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: AuditSeverity = AuditSeverity.INFO,
    ) -> "AuditLog":
        """
        Factory method to create a new audit log entry.

        Args:
            action: Action performed (e.g., 'create', 'approve', 'complete', 'expire')
            entity_type: Type of entity (e.g., 'approval_request', 'tokenization_project')
            entity_id: ID of affected entity
            actor_id: ID of user performing action (None for system actions)
            old_values: Previous values
            new_values: New values
            details: Additional context
            severity: Log severity level
        """
        return cls(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_id=actor_id,
            old_values=old_values,
            new_values=new_values,
            details=details,
            severity=severity.value if isinstance(severity, AuditSeverity) else severity,
        )
