"""Approval record model.

Approval records are append-only attestations against a pending request.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, ForeignKey, Integer, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from quorumgate.db.base import Base


class ApprovalRecord(Base):
    """
    One attestation by one approver.

    Rows are never updated or deleted. The unique constraint enforces one
    record per approver per request.
    """
    __tablename__ = "approval_records"
    __table_args__ = (
        UniqueConstraint("request_id", "approver_id", name="uq_approval_records_request_approver"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    request_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("pending_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Approver, with the role used to qualify snapshotted at approval time
    approver_id = Column(String(64), nullable=False, index=True)
    approver_role = Column(String(64), nullable=False)
    weight = Column(Integer, nullable=False, default=1)

    # Append order within the request (1-based)
    sequence = Column(Integer, nullable=False)

    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    # Relationships
    request = relationship("PendingRequest", back_populates="records")

    def __repr__(self) -> str:
        return f"<ApprovalRecord {self.approver_id} as {self.approver_role} (w={self.weight})>"
