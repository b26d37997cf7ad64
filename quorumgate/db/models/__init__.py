"""Database models for QuorumGate."""

from quorumgate.db.models.user import UserRole
from quorumgate.db.models.policy import ApprovalPolicyRow
from quorumgate.db.models.request import PendingRequest
from quorumgate.db.models.approval import ApprovalRecord
from quorumgate.db.models.audit import AuditLog, AuditSeverity
from quorumgate.db.models.project import TokenizationProject
from quorumgate.db.models.transaction import MultiSignTransaction
from quorumgate.db.models.notification import (
    Notification,
    NotificationLog,
    NotificationChannel,
    NotificationEventType,
)

__all__ = [
    "UserRole",
    "ApprovalPolicyRow",
    "PendingRequest",
    "ApprovalRecord",
    "AuditLog",
    "AuditSeverity",
    "TokenizationProject",
    "MultiSignTransaction",
    "Notification",
    "NotificationLog",
    "NotificationChannel",
    "NotificationEventType",
]
