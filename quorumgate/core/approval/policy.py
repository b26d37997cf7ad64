"""Approval policies and policy resolution.

A policy describes who may approve an action class, how the quorum is
measured, when requests expire, and who is told once the quorum is met.
Resolvers hand out frozen policy values; a request snapshots the value it
was opened under.
"""

import logging
from dataclasses import dataclass, field, fields
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Union

import yaml
from sqlalchemy.orm import Session

from quorumgate.core.rbac.checker import RoleChecker
from quorumgate.core.rbac.roles import OVERRIDE_ROLES
from quorumgate.db.models import ApprovalPolicyRow

from .errors import PolicyNotFound

logger = logging.getLogger(__name__)

# Role recorded for a signer that qualifies through the signer list alone
SIGNER_ROLE = "SIGNER"


class QuorumMode(str, Enum):
    """How approvals are measured against the threshold."""

    COUNT = "count"    # Distinct qualifying roles (or approvers, see evaluate)
    WEIGHT = "weight"  # Sum of approver weights


def _roles(values: Optional[Iterable[str]]) -> FrozenSet[str]:
    return frozenset(str(v) for v in (values or ()))


@dataclass(frozen=True)
class ApprovalPolicy:
    """
    Immutable approval rule for one action class.

    ``auto_apply_on_quorum`` selects the terminal behaviour: True applies
    the effect as soon as the quorum is met (project phase advancement),
    False parks the request in ``ready`` until it is executed (multi-sign
    transactions).
    """
    action_class: str
    quorum_threshold: int = 1
    quorum_mode: QuorumMode = QuorumMode.COUNT
    authorized_roles: FrozenSet[str] = frozenset()
    override_roles: FrozenSet[str] = OVERRIDE_ROLES
    signers: Mapping[str, int] = field(default_factory=dict)
    expiry_seconds: Optional[int] = None
    auto_apply_on_quorum: bool = True
    initiator_roles: FrozenSet[str] = frozenset()
    reject_roles: FrozenSet[str] = frozenset()
    executor_roles: FrozenSet[str] = frozenset()
    notify_roles: FrozenSet[str] = frozenset()
    notify_all: bool = False
    notify_assignee: bool = False
    description: Optional[str] = None

    def __post_init__(self):
        if not self.action_class:
            raise ValueError("Policy action_class must not be empty")
        mode = QuorumMode(self.quorum_mode)
        if int(self.quorum_threshold) < 1:
            raise ValueError(f"quorum_threshold must be >= 1, got {self.quorum_threshold}")
        if self.expiry_seconds is not None and int(self.expiry_seconds) <= 0:
            raise ValueError(f"expiry_seconds must be positive, got {self.expiry_seconds}")
        signers = {str(k): int(v) for k, v in dict(self.signers or {}).items()}
        for signer_id, weight in signers.items():
            if weight < 1:
                raise ValueError(f"Signer {signer_id} weight must be >= 1, got {weight}")

        # Normalize to value types so a resolved policy is a safe snapshot
        object.__setattr__(self, "quorum_mode", mode)
        object.__setattr__(self, "quorum_threshold", int(self.quorum_threshold))
        object.__setattr__(self, "signers", MappingProxyType(signers))
        for name in ("authorized_roles", "override_roles", "initiator_roles",
                     "reject_roles", "executor_roles", "notify_roles"):
            object.__setattr__(self, name, _roles(getattr(self, name)))

    @property
    def qualifying_roles(self) -> FrozenSet[str]:
        """Roles whose approvals count toward the quorum."""
        return self.authorized_roles | self.override_roles

    @property
    def total_weight(self) -> int:
        """Sum of all signer weights."""
        return sum(self.signers.values())

    def is_signer(self, user_id: str) -> bool:
        return user_id in self.signers

    def weight_of(self, approver_id: str) -> int:
        """Weight an approval from ``approver_id`` carries under this policy."""
        if self.quorum_mode is QuorumMode.WEIGHT:
            return self.signers.get(approver_id, 1)
        return 1

    def record_qualifies(self, approver_id: str, approver_role: str) -> bool:
        """Check if an approval recorded under ``approver_role`` counts."""
        if approver_role in self.qualifying_roles:
            return True
        return not self.authorized_roles and approver_id in self.signers

    def qualify(
        self,
        approver_id: str,
        roles: Iterable[str],
        *,
        acting_role: Optional[str] = None,
        represented_roles: Iterable[str] = (),
    ) -> Optional[str]:
        """
        Pick the role an approver qualifies under, or None.

        A role not yet represented on the request is preferred so a member
        holding several roles fills a gap rather than repeating a role:
        first an unrepresented authorized role, then an unrepresented
        override role, then any authorized role, then any override role.

        Args:
            approver_id: Approver identity
            roles: Roles the approver holds
            acting_role: Role the approver explicitly acts as
            represented_roles: Roles already present among the request's records
        """
        held = _roles(roles)
        if acting_role is not None:
            if acting_role not in held and not (acting_role == SIGNER_ROLE and approver_id in self.signers):
                return None
            held = frozenset([acting_role])

        represented = _roles(represented_roles)
        authorized = sorted(held & self.authorized_roles)
        override = sorted(held & self.override_roles)

        fresh = [role for role in authorized + override if role not in represented]
        if fresh:
            return fresh[0]
        if authorized or override:
            return (authorized + override)[0]

        if not self.authorized_roles and approver_id in self.signers:
            return sorted(held)[0] if held else SIGNER_ROLE

        return None

    def _may(self, required: FrozenSet[str], user_id: str, roles: Iterable[str]) -> bool:
        checker = RoleChecker(roles, self.override_roles)
        if required:
            return checker.has_any_role(required)
        if self.authorized_roles:
            return checker.has_any_role(self.authorized_roles)
        if checker.is_override:
            return True
        if self.signers:
            return user_id in self.signers
        return bool(checker.roles)

    def may_initiate(self, user_id: str, roles: Iterable[str]) -> bool:
        """Check if a user may open a request for this action class."""
        return self._may(self.initiator_roles, user_id, roles)

    def may_reject(self, user_id: str, roles: Iterable[str]) -> bool:
        """Check if a user may reject a pending request."""
        return self._may(self.reject_roles, user_id, roles)

    def may_execute(self, user_id: str, roles: Iterable[str]) -> bool:
        """Check if a user may execute a ready request."""
        return self._may(self.executor_roles, user_id, roles)

    def expires_at(self, created_at: datetime) -> Optional[datetime]:
        """Expiry instant for a request created at ``created_at``."""
        if self.expiry_seconds is None:
            return None
        return created_at + timedelta(seconds=self.expiry_seconds)

    def to_dict(self) -> Dict[str, Any]:
        """Convert policy to a JSON-friendly dictionary (the request snapshot)."""
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["quorum_mode"] = self.quorum_mode.value
        data["signers"] = dict(self.signers)
        for name in ("authorized_roles", "override_roles", "initiator_roles",
                     "reject_roles", "executor_roles", "notify_roles"):
            data[name] = sorted(getattr(self, name))
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ApprovalPolicy":
        """Create a policy from a dictionary (snapshot, YAML entry, API body)."""
        expiry = data.get("expiry_seconds")
        if expiry is None and data.get("expiry_hours") is not None:
            expiry = int(float(data["expiry_hours"]) * 3600)
        return cls(
            action_class=data["action_class"],
            quorum_threshold=data.get("quorum_threshold", 1),
            quorum_mode=QuorumMode(data.get("quorum_mode", QuorumMode.COUNT.value)),
            authorized_roles=_roles(data.get("authorized_roles")),
            override_roles=_roles(data.get("override_roles", OVERRIDE_ROLES)),
            signers=data.get("signers") or {},
            expiry_seconds=expiry,
            auto_apply_on_quorum=bool(data.get("auto_apply_on_quorum", True)),
            initiator_roles=_roles(data.get("initiator_roles")),
            reject_roles=_roles(data.get("reject_roles")),
            executor_roles=_roles(data.get("executor_roles")),
            notify_roles=_roles(data.get("notify_roles")),
            notify_all=bool(data.get("notify_all", False)),
            notify_assignee=bool(data.get("notify_assignee", False)),
            description=data.get("description"),
        )

    @classmethod
    def from_row(cls, row: ApprovalPolicyRow) -> "ApprovalPolicy":
        """Create a policy from a persisted row."""
        return cls(
            action_class=row.action_class,
            quorum_threshold=row.quorum_threshold,
            quorum_mode=QuorumMode(row.quorum_mode),
            authorized_roles=_roles(row.authorized_roles),
            override_roles=_roles(row.override_roles),
            signers=row.signers or {},
            expiry_seconds=row.expiry_seconds,
            auto_apply_on_quorum=bool(row.auto_apply_on_quorum),
            initiator_roles=_roles(row.initiator_roles),
            reject_roles=_roles(row.reject_roles),
            executor_roles=_roles(row.executor_roles),
            notify_roles=_roles(row.notify_roles),
            notify_all=bool(row.notify_all),
            notify_assignee=bool(row.notify_assignee),
            description=row.description,
        )


class PolicyRegistry:
    """In-memory policy resolver keyed by action class."""

    def __init__(self, policies: Iterable[ApprovalPolicy] = ()):
        self._policies: Dict[str, ApprovalPolicy] = {}
        for policy in policies:
            self.register(policy)

    def register(self, policy: ApprovalPolicy) -> None:
        """Register or replace the policy for its action class."""
        if policy.action_class in self._policies:
            logger.info("Replacing approval policy for %s", policy.action_class)
        self._policies[policy.action_class] = policy

    def unregister(self, action_class: str) -> None:
        self._policies.pop(action_class, None)

    def resolve(self, action_class: str) -> ApprovalPolicy:
        """
        Get the policy for an action class.

        Raises:
            PolicyNotFound: If no policy is registered
        """
        policy = self._policies.get(action_class)
        if policy is None:
            raise PolicyNotFound(action_class)
        return policy

    def action_classes(self) -> List[str]:
        return sorted(self._policies)

    def policies(self) -> List[ApprovalPolicy]:
        return [self._policies[name] for name in self.action_classes()]

    def __contains__(self, action_class: str) -> bool:
        return action_class in self._policies

    def __len__(self) -> int:
        return len(self._policies)


class DatabasePolicyResolver:
    """Policy resolver reading enabled ``approval_policies`` rows."""

    def __init__(self, db: Session):
        self.db = db

    def resolve(self, action_class: str) -> ApprovalPolicy:
        row = self.db.query(ApprovalPolicyRow).filter(
            ApprovalPolicyRow.action_class == action_class,
            ApprovalPolicyRow.enabled == True,  # noqa: E712
        ).first()
        if row is None:
            raise PolicyNotFound(action_class)
        return ApprovalPolicy.from_row(row)

    def action_classes(self) -> List[str]:
        rows = self.db.query(ApprovalPolicyRow.action_class).filter(
            ApprovalPolicyRow.enabled == True,  # noqa: E712
        ).order_by(ApprovalPolicyRow.action_class).all()
        return [row.action_class for row in rows]

    def policies(self) -> List[ApprovalPolicy]:
        return [self.resolve(name) for name in self.action_classes()]

    def save(self, policy: ApprovalPolicy) -> ApprovalPolicyRow:
        """Insert or update the row for a policy's action class."""
        row = self.db.query(ApprovalPolicyRow).filter(
            ApprovalPolicyRow.action_class == policy.action_class,
        ).first()
        if row is None:
            row = ApprovalPolicyRow(action_class=policy.action_class)
            self.db.add(row)

        data = policy.to_dict()
        for key in ("description", "authorized_roles", "override_roles", "initiator_roles",
                    "reject_roles", "executor_roles", "signers", "quorum_mode",
                    "quorum_threshold", "expiry_seconds", "auto_apply_on_quorum",
                    "notify_roles", "notify_all", "notify_assignee"):
            setattr(row, key, data[key])
        row.enabled = True
        self.db.flush()
        return row


def parse_policies(
    data: Mapping[str, Any],
    *,
    default_expiry_seconds: Optional[int] = None,
) -> List[ApprovalPolicy]:
    """Parse a policy document.

    The document has an optional ``defaults`` mapping merged under every
    entry of the ``policies`` list. An entry with ``expiry_seconds: default``
    takes ``default_expiry_seconds``.

    Args:
        data: Parsed policy document
        default_expiry_seconds: Expiry used for ``default`` entries

    Returns:
        List of ApprovalPolicy instances
    """
    defaults = dict(data.get("defaults") or {})
    policies = []
    for entry in data.get("policies") or []:
        merged = {**defaults, **entry}
        if merged.get("expiry_seconds") == "default":
            merged["expiry_seconds"] = default_expiry_seconds
        policies.append(ApprovalPolicy.from_dict(merged))
    return policies


def load_policies(
    path: Union[str, Path],
    *,
    default_expiry_seconds: Optional[int] = None,
) -> PolicyRegistry:
    """Load policy definitions from a YAML file into a registry.

    Args:
        path: Path to the YAML policy file
        default_expiry_seconds: Expiry used for ``default`` entries

    Returns:
        PolicyRegistry holding every policy in the file

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file is not a mapping or a policy is invalid
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Policy file not found: {path}")

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Policy file {path} must contain a mapping")

    registry = PolicyRegistry(parse_policies(data, default_expiry_seconds=default_expiry_seconds))
    logger.info("Loaded %d approval policies from %s", len(registry), path)
    return registry
