import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, JSON, Numeric, Text, Uuid

from quorumgate.db.base import Base


class MultiSignTransaction(Base):
    """
    Ledger transaction prepared for a multi-sign wallet.

    Status moves ``pending`` -> ``executable`` once the signing quorum is
    met, then ``executed`` when submitted.
    """
    __tablename__ = "multisign_transactions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    wallet_id = Column(String(64), nullable=False, index=True)
    tx_type = Column(String(40), nullable=False)
    description = Column(Text, nullable=True)

    amount = Column(Numeric(38, 6), nullable=True)
    amount_currency = Column(String(40), nullable=True)
    destination = Column(String(128), nullable=True)
    payload = Column(JSON, nullable=True)

    status = Column(String(20), nullable=False, default="pending", index=True)
    executed_tx_hash = Column(String(128), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<MultiSignTransaction {self.tx_type} [{self.status}]>"
