"""
Role → permission reference table.

The catalogue is owned elsewhere; this core only reads it as a closed,
versioned mapping from role name to a frozen set of permission codes,
resolved once per token mint.
"""

from enum import Enum
from typing import Dict, FrozenSet, List

CATALOGUE_VERSION = 1


class Role(str, Enum):
    """Roles known to the practice-management system."""
    ADMIN = "ADMIN"
    DIETITIAN = "DIETITIAN"
    ASSISTANT = "ASSISTANT"
    VIEWER = "VIEWER"
    PATIENT = "PATIENT"


# Role that may sign in with an email address instead of a username
EMAIL_LOGIN_ROLE = Role.PATIENT

_STAFF_READ = frozenset({
    "patients.read",
    "visits.read",
    "billing.read",
    "documents.read",
})

ROLE_PERMISSIONS: Dict[str, FrozenSet[str]] = {
    Role.ADMIN.value: _STAFF_READ | frozenset({
        "patients.create", "patients.update", "patients.delete",
        "visits.create", "visits.update", "visits.delete",
        "billing.create", "billing.update", "billing.delete",
        "documents.create", "documents.delete",
        "users.read", "users.create", "users.update", "users.delete",
        "api_keys.manage",
    }),
    Role.DIETITIAN.value: _STAFF_READ | frozenset({
        "patients.create", "patients.update",
        "visits.create", "visits.update",
        "billing.create", "billing.update",
        "documents.create",
        "api_keys.manage",
    }),
    Role.ASSISTANT.value: _STAFF_READ | frozenset({
        "patients.update",
        "visits.create",
    }),
    Role.VIEWER.value: _STAFF_READ,
    Role.PATIENT.value: frozenset({
        "portal.read",
        "portal.messages",
    }),
}


def permissions_for(role: str) -> FrozenSet[str]:
    """Permission set for a role; unknown roles get nothing."""
    return ROLE_PERMISSIONS.get(role, frozenset())


def sorted_permissions(role: str) -> List[str]:
    """Stable ordering for token claims and API responses."""
    return sorted(permissions_for(role))


def has_permission(role: str, permission: str) -> bool:
    return permission in permissions_for(role)
