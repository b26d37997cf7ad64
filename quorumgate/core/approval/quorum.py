"""Quorum evaluation.

Pure functions over a policy and a set of approval records. The result
does not depend on record order, so any reader computes the same answer
from the same records.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Sequence

from .policy import ApprovalPolicy, QuorumMode


@dataclass(frozen=True)
class QuorumResult:
    """Outcome of evaluating a request's records against its policy."""
    met: bool
    current_measure: int
    required_measure: int

    @property
    def remaining(self) -> int:
        """Measure still missing before the quorum is met."""
        return max(self.required_measure - self.current_measure, 0)

    @property
    def progress(self) -> str:
        """Progress as ``current/required``, e.g. ``2/3``."""
        return f"{self.current_measure}/{self.required_measure}"

    def to_dict(self) -> dict:
        return {
            "met": self.met,
            "current": self.current_measure,
            "required": self.required_measure,
            "remaining": self.remaining,
        }


def _qualifying_by_approver(policy: ApprovalPolicy, records: Iterable) -> Dict[str, object]:
    """Qualifying records keyed by approver, one per approver."""
    by_approver: Dict[str, object] = {}
    for record in records:
        if not policy.record_qualifies(record.approver_id, record.approver_role):
            continue
        current = by_approver.get(record.approver_id)
        # Order-independent pick if an approver ever appears twice
        if current is None or (record.weight, record.approver_role) > (current.weight, current.approver_role):
            by_approver[record.approver_id] = record
    return by_approver


def measure(policy: ApprovalPolicy, records: Iterable) -> int:
    """Current quorum measure of ``records`` under ``policy``."""
    qualifying = _qualifying_by_approver(policy, records)

    if policy.quorum_mode is QuorumMode.WEIGHT:
        return sum(record.weight for record in qualifying.values())

    if policy.authorized_roles:
        return len({record.approver_role for record in qualifying.values()})

    # Assigned-signer policies count distinct approvers
    return len(qualifying)


def evaluate(policy: ApprovalPolicy, records: Iterable) -> QuorumResult:
    """
    Evaluate approval records against a policy.

    COUNT mode counts distinct approver roles among qualifying records;
    WEIGHT mode sums approver weights. Records whose role neither appears
    in the policy's authorized or override roles (nor belongs to a listed
    signer when no roles are authorized) are ignored.

    Args:
        policy: Policy snapshot of the request
        records: Approval records of the request

    Returns:
        QuorumResult with current and required measure
    """
    current = measure(policy, records)
    return QuorumResult(
        met=current >= policy.quorum_threshold,
        current_measure=current,
        required_measure=policy.quorum_threshold,
    )


def tipping_record(policy: ApprovalPolicy, records: Sequence) -> Optional[object]:
    """Get the record whose append first met the quorum, if any."""
    ordered = sorted(records, key=lambda r: r.sequence)
    for index in range(len(ordered)):
        if evaluate(policy, ordered[:index + 1]).met:
            return ordered[index]
    return None
