"""Collaborator interfaces of the approval engine.

The engine owns no identity, audit, notification or domain state. Each of
those lives behind one of these protocols and is injected into the
lifecycle manager.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Optional, Protocol, Set, runtime_checkable


@dataclass(frozen=True)
class Recipients:
    """Who a notification fans out to."""
    roles: FrozenSet[str] = frozenset()
    all_users: bool = False
    assignee: bool = False  # the target project's assignee

    @property
    def is_empty(self) -> bool:
        return not self.roles and not self.all_users and not self.assignee


@dataclass(frozen=True)
class ApprovalEvent:
    """Notification payload describing a request outcome."""
    event_type: str
    request_id: str
    action_class: str
    status: str
    target_ref: Dict[str, Any] = field(default_factory=dict)
    actor_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "request_id": self.request_id,
            "action_class": self.action_class,
            "status": self.status,
            "target_ref": dict(self.target_ref),
            "actor_id": self.actor_id,
            "data": dict(self.data),
        }


@runtime_checkable
class PolicyResolver(Protocol):
    def resolve(self, action_class: str):
        """Return the ApprovalPolicy for an action class or raise PolicyNotFound."""
        ...


@runtime_checkable
class RoleProvider(Protocol):
    def roles_of(self, user_id: str) -> Set[str]:
        ...


@runtime_checkable
class AuditSink(Protocol):
    def record(
        self,
        entity_type: str,
        entity_id: str,
        actor_id: Optional[str],
        action: str,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        ...


@runtime_checkable
class NotificationSink(Protocol):
    def notify(self, recipients: Recipients, event: ApprovalEvent) -> None:
        ...


@runtime_checkable
class TargetApplier(Protocol):
    """Applies approved effects to the entity a request targets.

    Implementations run inside the manager's transaction and must not
    commit.
    """

    def apply_transition(self, target_ref: Dict[str, Any], from_state: str, to_state: str) -> None:
        ...

    def mark_executable(self, target_ref: Dict[str, Any]) -> None:
        ...

    def mark_executed(self, target_ref: Dict[str, Any], tx_hash: Optional[str] = None) -> None:
        ...
