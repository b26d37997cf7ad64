"""Tokenization project phases.

Projects advance one phase at a time. Each advancement is an approval
request with action class ``phase:<FROM>-><TO>``; once its quorum is met
the project status is moved by ``ProjectPhaseApplier``.
"""

import logging
from enum import Enum
from typing import Any, Dict, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from quorumgate.core.approval.errors import ApprovalError, OperationNotSupported
from quorumgate.db.models import NotificationEventType, TokenizationProject

logger = logging.getLogger(__name__)

PHASE_PREFIX = "phase:"


class ProjectStatus(str, Enum):
    """Project phases in advancement order."""
    INTAKE_PENDING = "INTAKE_PENDING"
    INTAKE_COMPLETE = "INTAKE_COMPLETE"
    METADATA_DRAFT = "METADATA_DRAFT"
    METADATA_APPROVED = "METADATA_APPROVED"
    COMPLIANCE_APPROVED = "COMPLIANCE_APPROVED"
    CUSTODY_READY = "CUSTODY_READY"
    MINTED = "MINTED"


STATUS_ORDER: tuple[ProjectStatus, ...] = tuple(ProjectStatus)

STATUS_LABELS: Dict[ProjectStatus, str] = {
    ProjectStatus.INTAKE_PENDING: "Intake Pending",
    ProjectStatus.INTAKE_COMPLETE: "Intake Complete",
    ProjectStatus.METADATA_DRAFT: "Metadata Draft",
    ProjectStatus.METADATA_APPROVED: "Metadata Approved",
    ProjectStatus.COMPLIANCE_APPROVED: "Compliance Approved",
    ProjectStatus.CUSTODY_READY: "Custody Ready",
    ProjectStatus.MINTED: "Minted",
}

# Event announced when a project reaches a phase
PHASE_EVENTS: Dict[ProjectStatus, NotificationEventType] = {
    ProjectStatus.INTAKE_COMPLETE: NotificationEventType.INTAKE_COMPLETE,
    ProjectStatus.METADATA_DRAFT: NotificationEventType.METADATA_DRAFT,
    ProjectStatus.METADATA_APPROVED: NotificationEventType.METADATA_APPROVED,
    ProjectStatus.COMPLIANCE_APPROVED: NotificationEventType.COMPLIANCE_APPROVED,
    ProjectStatus.CUSTODY_READY: NotificationEventType.CUSTODY_READY,
    ProjectStatus.MINTED: NotificationEventType.MINTED,
}


class PhaseConflict(ApprovalError):
    """The project is no longer in the phase the request was opened for."""

    code = "phase_conflict"


def phase_label(status: Optional[str]) -> Optional[str]:
    """Human label of a phase, or the value itself if it is not a phase."""
    try:
        return STATUS_LABELS[ProjectStatus(status)]
    except ValueError:
        return status


def next_status(status: str) -> Optional[ProjectStatus]:
    """Get the phase after ``status``, or None for the last phase."""
    index = STATUS_ORDER.index(ProjectStatus(status))
    if index + 1 >= len(STATUS_ORDER):
        return None
    return STATUS_ORDER[index + 1]


def validate_sequence(from_status: str, to_status: str) -> Tuple[ProjectStatus, ProjectStatus]:
    """
    Check that ``to_status`` is the phase right after ``from_status``.

    Raises:
        ValueError: On unknown phases or a skipped/backward step
    """
    source = ProjectStatus(from_status)
    target = ProjectStatus(to_status)
    if next_status(source) != target:
        raise ValueError(
            f"Can only advance to the next phase in sequence: {source.value} -> {target.value}"
        )
    return source, target


def phase_action_class(from_status: str, to_status: str) -> str:
    """Build the action class for a phase advancement."""
    source, target = validate_sequence(from_status, to_status)
    return f"{PHASE_PREFIX}{source.value}->{target.value}"


def is_phase_action_class(action_class: str) -> bool:
    return action_class.startswith(PHASE_PREFIX)


def parse_phase_action_class(action_class: str) -> Tuple[ProjectStatus, ProjectStatus]:
    """
    Split a phase action class into its source and target phase.

    Raises:
        ValueError: If the action class is not a valid phase advancement
    """
    if not is_phase_action_class(action_class):
        raise ValueError(f"Not a phase action class: {action_class!r}")
    source, sep, target = action_class[len(PHASE_PREFIX):].partition("->")
    if not sep:
        raise ValueError(f"Malformed phase action class: {action_class!r}")
    return validate_sequence(source, target)


def project_target(project_id: UUID) -> Dict[str, Any]:
    """Target reference for a project."""
    return {"type": "tokenization_project", "project_id": str(project_id)}


def next_advancement(project: TokenizationProject) -> Tuple[str, Dict[str, Any]]:
    """
    Action class and target reference for advancing a project one phase.

    Raises:
        ValueError: If the project is already in its last phase
    """
    target = next_status(project.status)
    if target is None:
        raise ValueError(f"Project {project.id} is already {project.status}")
    return phase_action_class(project.status, target), project_target(project.id)


class ProjectPhaseApplier:
    """Moves tokenization projects to their approved phase."""

    def __init__(self, db: Session):
        self.db = db

    def _get_project(self, target_ref: Dict[str, Any]) -> TokenizationProject:
        project_id = target_ref.get("project_id")
        project = None
        if project_id:
            project = self.db.query(TokenizationProject).filter(
                TokenizationProject.id == UUID(str(project_id))
            ).first()
        if project is None:
            raise PhaseConflict(f"Tokenization project {project_id} not found")
        return project

    def apply_transition(self, target_ref: Dict[str, Any], from_state: str, to_state: str) -> None:
        """
        Advance the project from ``from_state`` to ``to_state``.

        Raises:
            PhaseConflict: If the project is missing or not in ``from_state``
        """
        validate_sequence(from_state, to_state)
        project = self._get_project(target_ref)

        if project.status != from_state:
            raise PhaseConflict(
                f"Project {project.id} is {project.status}, expected {from_state}"
            )

        project.status = to_state
        self.db.flush()
        logger.info("Project %s advanced %s -> %s", project.id, from_state, to_state)

    def mark_executable(self, target_ref: Dict[str, Any]) -> None:
        raise OperationNotSupported("Phase advancements are applied on quorum, not executed")

    def mark_executed(self, target_ref: Dict[str, Any], tx_hash: Optional[str] = None) -> None:
        raise OperationNotSupported("Phase advancements are applied on quorum, not executed")
