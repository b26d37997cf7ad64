import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, JSON, Boolean, Integer, Text, Uuid

from quorumgate.db.base import Base


class ApprovalPolicyRow(Base):
    """Persisted approval policy, one per action class."""
    __tablename__ = "approval_policies"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    action_class = Column(String(120), unique=True, nullable=False, index=True)
    description = Column(Text, nullable=True)

    authorized_roles = Column(JSON, nullable=False, default=list)
    override_roles = Column(JSON, nullable=False, default=list)
    initiator_roles = Column(JSON, nullable=False, default=list)
    reject_roles = Column(JSON, nullable=False, default=list)
    executor_roles = Column(JSON, nullable=False, default=list)
    signers = Column(JSON, nullable=False, default=dict)  # approver id -> weight

    quorum_mode = Column(String(20), nullable=False, default="count")
    quorum_threshold = Column(Integer, nullable=False, default=1)
    expiry_seconds = Column(Integer, nullable=True)
    auto_apply_on_quorum = Column(Boolean, nullable=False, default=True)

    notify_roles = Column(JSON, nullable=False, default=list)
    notify_all = Column(Boolean, nullable=False, default=False)
    notify_assignee = Column(Boolean, nullable=False, default=False)

    enabled = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<ApprovalPolicyRow {self.action_class}>"
