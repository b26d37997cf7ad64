"""Platform role catalog for QuorumGate.

Roles are plain strings on the wire and in policies; the enum keeps the
catalog in one place and groups roles the way the admin console does.
"""

from enum import Enum
from typing import Dict, FrozenSet


class Role(str, Enum):
    """Roles a platform user can hold."""

    # Administration & internal operations
    SUPER_ADMIN = "SUPER_ADMIN"
    SYSTEM_ADMIN = "SYSTEM_ADMIN"
    HIRING_MANAGER = "HIRING_MANAGER"
    OPERATIONS_ADMIN = "OPERATIONS_ADMIN"

    # Tokenization business
    TOKENIZATION_MANAGER = "TOKENIZATION_MANAGER"
    VALUATION_OFFICER = "VALUATION_OFFICER"
    PROPERTY_OPERATIONS_MANAGER = "PROPERTY_OPERATIONS_MANAGER"
    INVESTOR_OPERATIONS = "INVESTOR_OPERATIONS"

    # Compliance, risk & oversight
    COMPLIANCE_OFFICER = "COMPLIANCE_OFFICER"
    RISK_ANALYST = "RISK_ANALYST"
    AUDITOR = "AUDITOR"

    # Finance & accounting
    FINANCE_OFFICER = "FINANCE_OFFICER"
    ACCOUNTING_MANAGER = "ACCOUNTING_MANAGER"
    CUSTODY_OFFICER = "CUSTODY_OFFICER"

    # Engineering & product
    BACKEND_ENGINEER = "BACKEND_ENGINEER"
    PLATFORM_ENGINEER = "PLATFORM_ENGINEER"
    SECURITY_ENGINEER = "SECURITY_ENGINEER"
    QA_TEST_ENGINEER = "QA_TEST_ENGINEER"

    # Field operations
    TECHNICIAN = "TECHNICIAN"


class RoleCategory(str, Enum):
    """Role groupings used for display and bulk assignment."""
    ADMINISTRATION = "ADMINISTRATION"
    TOKENIZATION = "TOKENIZATION"
    COMPLIANCE = "COMPLIANCE"
    FINANCE = "FINANCE"
    ENGINEERING = "ENGINEERING"


ROLE_CATEGORIES: Dict[RoleCategory, FrozenSet[Role]] = {
    RoleCategory.ADMINISTRATION: frozenset([
        Role.SUPER_ADMIN, Role.SYSTEM_ADMIN, Role.HIRING_MANAGER, Role.OPERATIONS_ADMIN,
    ]),
    RoleCategory.TOKENIZATION: frozenset([
        Role.TOKENIZATION_MANAGER, Role.VALUATION_OFFICER,
        Role.PROPERTY_OPERATIONS_MANAGER, Role.INVESTOR_OPERATIONS,
    ]),
    RoleCategory.COMPLIANCE: frozenset([
        Role.COMPLIANCE_OFFICER, Role.RISK_ANALYST, Role.AUDITOR,
    ]),
    RoleCategory.FINANCE: frozenset([
        Role.FINANCE_OFFICER, Role.ACCOUNTING_MANAGER, Role.CUSTODY_OFFICER,
    ]),
    RoleCategory.ENGINEERING: frozenset([
        Role.BACKEND_ENGINEER, Role.PLATFORM_ENGINEER,
        Role.SECURITY_ENGINEER, Role.QA_TEST_ENGINEER,
    ]),
}

# Superuser escalation: used as the default override role set
OVERRIDE_ROLES: FrozenSet[str] = frozenset([Role.SUPER_ADMIN.value])


def is_known_role(role: str) -> bool:
    """Check if a role string is part of the catalog."""
    return role in Role._value2member_map_


def category_of(role: str) -> RoleCategory:
    """Get the category a role belongs to."""
    for category, roles in ROLE_CATEGORIES.items():
        if role in {r.value for r in roles}:
            return category
    raise ValueError(f"Unknown role: {role}")
