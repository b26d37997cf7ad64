"""Pending request model.

A pending request is the unit of work under approval. Its status column is
the single point of mutual exclusion for quorum crossing.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, JSON, Integer, Text, Uuid
from sqlalchemy.orm import relationship

from quorumgate.db.base import Base


class PendingRequest(Base):
    """
    An action awaiting threshold approval.

    ``policy_snapshot`` holds the approval policy as it was when the request
    was opened; later policy edits never reach in-flight requests.
    """
    __tablename__ = "pending_requests"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    action_class = Column(String(120), nullable=False, index=True)

    # Opaque reference to the entity being acted on
    target_ref = Column(JSON, nullable=False, default=dict)
    policy_snapshot = Column(JSON, nullable=False)

    # Workflow state
    status = Column(String(20), nullable=False, default="pending", index=True)
    version = Column(Integer, nullable=False, default=1)

    # Request tracking
    created_by = Column(String(64), nullable=False, index=True)
    notes = Column(Text, nullable=True)
    expires_at = Column(DateTime, nullable=True, index=True)

    # Completion tracking (quorum reached)
    completed_at = Column(DateTime, nullable=True)
    completed_by = Column(String(64), nullable=True)

    # Rejection tracking
    rejected_at = Column(DateTime, nullable=True)
    rejected_by = Column(String(64), nullable=True)
    rejection_reason = Column(Text, nullable=True)

    # Execution tracking (transaction mode)
    executed_at = Column(DateTime, nullable=True)
    executed_by = Column(String(64), nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    records = relationship(
        "ApprovalRecord",
        back_populates="request",
        order_by="ApprovalRecord.sequence",
    )

    def __repr__(self) -> str:
        return f"<PendingRequest {self.action_class} [{self.status}]>"
