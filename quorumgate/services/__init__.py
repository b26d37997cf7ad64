"""Collaborator services for QuorumGate."""

from quorumgate.services.audit import DatabaseAuditSink
from quorumgate.services.notifications import NotificationService

__all__ = [
    "DatabaseAuditSink",
    "NotificationService",
]
