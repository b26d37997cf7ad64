"""RBAC (Role-Based Access Control) module for QuorumGate.

This module defines the platform role catalog, role checks, and the role
providers the approval engine consults.
"""

from .roles import Role, RoleCategory, ROLE_CATEGORIES, OVERRIDE_ROLES
from .checker import RoleChecker, StaticRoleProvider, DatabaseRoleProvider

__all__ = [
    "Role",
    "RoleCategory",
    "ROLE_CATEGORIES",
    "OVERRIDE_ROLES",
    "RoleChecker",
    "StaticRoleProvider",
    "DatabaseRoleProvider",
]
