import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, UniqueConstraint, Uuid

from quorumgate.db.base import Base


class UserRole(Base):
    """Platform role assignment. A user may hold several roles."""
    __tablename__ = "user_roles"
    __table_args__ = (
        UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(64), nullable=False, index=True)
    role = Column(String(64), nullable=False, index=True)
    granted_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<UserRole {self.user_id}={self.role}>"
