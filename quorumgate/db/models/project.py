import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Uuid

from quorumgate.db.base import Base


class TokenizationProject(Base):
    """Real-world asset tokenization project advanced phase by phase."""
    __tablename__ = "tokenization_projects"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    status = Column(String(50), nullable=False, default="INTAKE_PENDING", index=True)
    assignee_id = Column(String(64), nullable=True)  # user who owns the project
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<TokenizationProject {self.name} [{self.status}]>"
