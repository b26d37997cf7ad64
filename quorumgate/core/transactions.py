"""Multi-sign ledger transactions.

A transaction collects signer approvals under an action class
``tx:<TYPE>``. Meeting the quorum makes it executable; execution is a
separate step.
"""

import logging
from enum import Enum
from typing import Any, Dict, Iterable, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from quorumgate.core.approval.errors import ApprovalError, OperationNotSupported
from quorumgate.core.phases import ProjectPhaseApplier
from quorumgate.db.models import MultiSignTransaction

logger = logging.getLogger(__name__)

TX_PREFIX = "tx:"


class MultiSignTxType(str, Enum):
    """Ledger transaction types a multi-sign wallet can prepare."""
    TOKEN_ISSUANCE = "TOKEN_ISSUANCE"
    TOKEN_MINT = "TOKEN_MINT"
    TOKEN_BURN = "TOKEN_BURN"
    TOKEN_FREEZE = "TOKEN_FREEZE"
    ESCROW_CREATE = "ESCROW_CREATE"
    ESCROW_FINISH = "ESCROW_FINISH"
    ESCROW_CANCEL = "ESCROW_CANCEL"
    CLAWBACK = "CLAWBACK"
    PAYMENT = "PAYMENT"
    SIGNER_LIST_UPDATE = "SIGNER_LIST_UPDATE"
    OTHER = "OTHER"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    EXECUTABLE = "executable"
    EXECUTED = "executed"


class TransactionConflict(ApprovalError):
    """The transaction is missing or not in the expected status."""

    code = "transaction_conflict"


def tx_action_class(tx_type: str) -> str:
    """Build the action class for a transaction type."""
    return f"{TX_PREFIX}{MultiSignTxType(tx_type).value}"


def is_tx_action_class(action_class: str) -> bool:
    return action_class.startswith(TX_PREFIX)


def transaction_target(transaction_id: UUID) -> Dict[str, Any]:
    """Target reference for a multi-sign transaction."""
    return {"type": "multisign_transaction", "transaction_id": str(transaction_id)}


class TransactionApplier:
    """Moves multi-sign transactions through pending -> executable -> executed."""

    def __init__(self, db: Session):
        self.db = db

    def _get_transaction(self, target_ref: Dict[str, Any]) -> MultiSignTransaction:
        transaction_id = target_ref.get("transaction_id")
        tx = None
        if transaction_id:
            tx = self.db.query(MultiSignTransaction).filter(
                MultiSignTransaction.id == UUID(str(transaction_id))
            ).first()
        if tx is None:
            raise TransactionConflict(f"Multi-sign transaction {transaction_id} not found")
        return tx

    def apply_transition(self, target_ref: Dict[str, Any], from_state: str, to_state: str) -> None:
        raise OperationNotSupported("Transactions become executable on quorum, not transitioned")

    def mark_executable(self, target_ref: Dict[str, Any]) -> None:
        tx = self._get_transaction(target_ref)
        if tx.status != TransactionStatus.PENDING.value:
            raise TransactionConflict(f"Transaction {tx.id} is {tx.status}, expected pending")
        tx.status = TransactionStatus.EXECUTABLE.value
        self.db.flush()
        logger.info("Transaction %s (%s) is executable", tx.id, tx.tx_type)

    def mark_executed(self, target_ref: Dict[str, Any], tx_hash: Optional[str] = None) -> None:
        tx = self._get_transaction(target_ref)
        if tx.status != TransactionStatus.EXECUTABLE.value:
            raise TransactionConflict(f"Transaction {tx.id} is {tx.status}, expected executable")
        tx.status = TransactionStatus.EXECUTED.value
        tx.executed_tx_hash = tx_hash
        self.db.flush()
        logger.info("Transaction %s (%s) executed", tx.id, tx.tx_type)


class CompositeApplier:
    """Routes applier calls by target type.

    The lifecycle manager calls appliers with a target reference only, so
    routing uses the ``type`` key of the reference.
    """

    def __init__(self, appliers: Dict[str, Any]):
        """
        Args:
            appliers: Target type (``target_ref["type"]``) to applier
        """
        self._appliers = dict(appliers)

    @classmethod
    def for_session(cls, db: Session) -> "CompositeApplier":
        """Applier covering projects and multi-sign transactions."""
        return cls({
            "tokenization_project": ProjectPhaseApplier(db),
            "multisign_transaction": TransactionApplier(db),
        })

    def target_types(self) -> Iterable[str]:
        return sorted(self._appliers)

    def _route(self, target_ref: Dict[str, Any]):
        target_type = target_ref.get("type")
        applier = self._appliers.get(target_type)
        if applier is None:
            raise OperationNotSupported(f"No applier for target type {target_type!r}")
        return applier

    def apply_transition(self, target_ref: Dict[str, Any], from_state: str, to_state: str) -> None:
        self._route(target_ref).apply_transition(target_ref, from_state, to_state)

    def mark_executable(self, target_ref: Dict[str, Any]) -> None:
        self._route(target_ref).mark_executable(target_ref)

    def mark_executed(self, target_ref: Dict[str, Any], tx_hash: Optional[str] = None) -> None:
        self._route(target_ref).mark_executed(target_ref, tx_hash)
