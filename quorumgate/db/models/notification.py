"""Notification models: in-app notifications and webhook delivery log."""

import uuid
from datetime import datetime
from enum import Enum
from sqlalchemy import Column, String, DateTime, JSON, Boolean, Text, Integer, Uuid

from quorumgate.db.base import Base


class NotificationChannel(str, Enum):
    """Available notification channels."""
    IN_APP = "in_app"
    WEBHOOK = "webhook"


class NotificationEventType(str, Enum):
    """Events that can trigger notifications."""
    REQUEST_COMPLETED = "approval.completed"
    REQUEST_READY = "approval.ready"

    # Project phase events
    INTAKE_COMPLETE = "token_project.intake_complete"
    METADATA_DRAFT = "token_project.metadata_draft"
    METADATA_APPROVED = "token_project.metadata_approved"
    COMPLIANCE_APPROVED = "token_project.compliance_approved"
    CUSTODY_READY = "token_project.custody_ready"
    MINTED = "token_project.minted"

    # Transaction events
    TRANSACTION_READY = "multisign.ready"


class Notification(Base):
    """
    In-app notification for one recipient user.
    """
    __tablename__ = "notifications"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(64), nullable=False, index=True)

    event_type = Column(String(80), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)

    entity_type = Column(String(100), nullable=True)
    entity_id = Column(String(64), nullable=True)
    data = Column(JSON, nullable=True)

    is_read = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    def __repr__(self) -> str:
        return f"<Notification {self.event_type} to {self.user_id}>"


class NotificationLog(Base):
    """
    Log of webhook deliveries for audit and debugging.
    """
    __tablename__ = "notification_logs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    channel = Column(String(50), nullable=False)
    event_type = Column(String(80), nullable=False)
    recipient = Column(String(512), nullable=False)  # Webhook URL

    approval_request_id = Column(Uuid(as_uuid=True), nullable=True, index=True)

    payload = Column(JSON, nullable=True)

    # Status
    status = Column(String(50), nullable=False, default="pending")  # pending, sent, failed
    error_message = Column(Text, nullable=True)
    attempts = Column(Integer, default=0)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    sent_at = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<NotificationLog {self.event_type} to {self.recipient}>"
