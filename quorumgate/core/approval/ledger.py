"""Append-only ledger of approval records."""

import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from quorumgate.db.models import ApprovalRecord

from .errors import DuplicateApproval

logger = logging.getLogger(__name__)


class ApprovalLedger:
    """
    Records approvals against pending requests.

    The ledger never updates or deletes a record. It does not commit; the
    caller owns the transaction.
    """

    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        request_id: UUID,
        approver_id: str,
        approver_role: str,
        weight: int = 1,
        notes: Optional[str] = None,
    ) -> ApprovalRecord:
        """
        Append an approval record.

        Args:
            request_id: Request being approved
            approver_id: Approver identity
            approver_role: Role the approver qualified under
            weight: Approval weight (1 in count mode)
            notes: Optional approver comment

        Returns:
            The new record

        Raises:
            DuplicateApproval: If the approver already has a record
        """
        if self.has_approved(request_id, approver_id):
            raise DuplicateApproval(request_id, approver_id)

        sequence = (
            self.db.query(func.coalesce(func.max(ApprovalRecord.sequence), 0))
            .filter(ApprovalRecord.request_id == request_id)
            .scalar()
        ) + 1

        record = ApprovalRecord(
            request_id=request_id,
            approver_id=approver_id,
            approver_role=approver_role,
            weight=weight,
            sequence=sequence,
            notes=notes,
        )

        # The unique constraint catches a concurrent insert the lookup missed
        savepoint = self.db.begin_nested()
        try:
            self.db.add(record)
            self.db.flush()
        except IntegrityError:
            savepoint.rollback()
            raise DuplicateApproval(request_id, approver_id)
        savepoint.commit()

        logger.debug(
            "Recorded approval #%d on %s by %s as %s (weight %d)",
            sequence, request_id, approver_id, approver_role, weight,
        )
        return record

    def list_for(self, request_id: UUID) -> List[ApprovalRecord]:
        """Get a request's records in append order."""
        return (
            self.db.query(ApprovalRecord)
            .filter(ApprovalRecord.request_id == request_id)
            .order_by(ApprovalRecord.sequence)
            .all()
        )

    def has_approved(self, request_id: UUID, approver_id: str) -> bool:
        """Check if an approver already has a record on a request."""
        return self.db.query(ApprovalRecord.id).filter(
            ApprovalRecord.request_id == request_id,
            ApprovalRecord.approver_id == approver_id,
        ).first() is not None

    def approved_request_ids(self, approver_id: str) -> set[UUID]:
        """Get ids of all requests an approver has approved."""
        rows = self.db.query(ApprovalRecord.request_id).filter(
            ApprovalRecord.approver_id == approver_id,
        ).all()
        return {row.request_id for row in rows}
