"""Role checking and role providers for QuorumGate.

Role providers answer ``roles_of(user_id)`` for the approval engine. The
database provider reads ``user_roles``; the static provider serves fixed
assignments (seed data, embedding, tests).
"""

import logging
from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Set

from sqlalchemy.orm import Session

from quorumgate.db.models import UserRole

logger = logging.getLogger(__name__)


class RoleChecker:
    """Checks a user's role set against required roles."""

    def __init__(self, user_roles: Iterable[str], override_roles: Iterable[str] = ()):
        """
        Initialize with the user's roles.

        Args:
            user_roles: Roles held by the user
            override_roles: Roles that satisfy any check
        """
        self.roles: FrozenSet[str] = frozenset(user_roles)
        self.override_roles: FrozenSet[str] = frozenset(override_roles)

    @property
    def is_override(self) -> bool:
        """Check if the user holds an override role."""
        return bool(self.roles & self.override_roles)

    def has_role(self, role: str) -> bool:
        """Check if user holds a specific role."""
        return role in self.roles

    def has_any_role(self, roles: Iterable[str]) -> bool:
        """Check if user holds any of the given roles, or an override role."""
        return self.is_override or bool(self.roles & frozenset(roles))

    def matching_roles(self, roles: Iterable[str]) -> Set[str]:
        """Get the user's roles that appear in ``roles``."""
        return set(self.roles & frozenset(roles))


class StaticRoleProvider:
    """Role provider backed by a fixed mapping of user id to roles."""

    def __init__(self, assignments: Optional[Mapping[str, Iterable[str]]] = None):
        self._assignments: Dict[str, Set[str]] = {
            user_id: set(roles) for user_id, roles in (assignments or {}).items()
        }

    def assign(self, user_id: str, *roles: str) -> None:
        """Grant roles to a user."""
        self._assignments.setdefault(user_id, set()).update(roles)

    def revoke(self, user_id: str, role: str) -> None:
        """Remove a role from a user."""
        self._assignments.get(user_id, set()).discard(role)

    def roles_of(self, user_id: str) -> Set[str]:
        return set(self._assignments.get(user_id, set()))

    def users_with_roles(self, roles: Iterable[str]) -> Set[str]:
        wanted = set(roles)
        return {user_id for user_id, held in self._assignments.items() if held & wanted}

    def all_users(self) -> Set[str]:
        return set(self._assignments)


class DatabaseRoleProvider:
    """Role provider reading ``user_roles`` rows."""

    def __init__(self, db: Session):
        self.db = db

    def roles_of(self, user_id: str) -> Set[str]:
        rows = self.db.query(UserRole.role).filter(UserRole.user_id == user_id).all()
        return {row.role for row in rows}

    def users_with_roles(self, roles: Iterable[str]) -> Set[str]:
        roles = list(roles)
        if not roles:
            return set()
        rows = self.db.query(UserRole.user_id).filter(UserRole.role.in_(roles)).distinct().all()
        return {row.user_id for row in rows}

    def all_users(self) -> Set[str]:
        rows = self.db.query(UserRole.user_id).distinct().all()
        return {row.user_id for row in rows}

    def assign(self, user_id: str, *roles: str, granted_by: Optional[str] = None) -> None:
        """Grant roles to a user, skipping roles already held."""
        held = self.roles_of(user_id)
        for role in roles:
            if role in held:
                continue
            self.db.add(UserRole(user_id=user_id, role=role, granted_by=granted_by))
            logger.info("Granted role %s to user %s", role, user_id)
        self.db.flush()
