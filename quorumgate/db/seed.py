"""Database seeding for QuorumGate.

Copies approval policies into ``approval_policies`` and grants initial
role assignments.
"""

import logging
from typing import Iterable, Mapping

from sqlalchemy.orm import Session

from quorumgate.core.approval.policy import ApprovalPolicy, DatabasePolicyResolver
from quorumgate.core.rbac import DatabaseRoleProvider
from quorumgate.core.rbac.roles import is_known_role

logger = logging.getLogger(__name__)


def seed_policies(db: Session, policies: Iterable[ApprovalPolicy]) -> int:
    """
    Insert or update policy rows.

    Seeding is idempotent: an existing row for an action class is
    overwritten with the given policy.

    Args:
        db: Database session
        policies: Policies to persist

    Returns:
        Number of policies written
    """
    resolver = DatabasePolicyResolver(db)
    count = 0
    for policy in policies:
        resolver.save(policy)
        count += 1
    db.flush()
    logger.info("Seeded %d approval policies", count)
    return count


def seed_roles(
    db: Session,
    assignments: Mapping[str, Iterable[str]],
    *,
    granted_by: str = "seed",
) -> None:
    """
    Grant roles to users, skipping roles already held.

    Args:
        db: Database session
        assignments: User id to roles
        granted_by: Recorded grantor
    """
    provider = DatabaseRoleProvider(db)
    for user_id, roles in assignments.items():
        roles = list(roles)
        for role in roles:
            if not is_known_role(role):
                logger.warning("Granting role %s to %s, which is not in the role catalog", role, user_id)
        provider.assign(user_id, *roles, granted_by=granted_by)
    db.flush()
