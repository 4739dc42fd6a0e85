#!/usr/bin/env python3
"""
Role facts for Azure RBAC Auditor
Hand-authored role inclusion table and access tier classification
"""

from enum import Enum
from typing import Dict, FrozenSet

OWNER = "Owner"
CONTRIBUTOR = "Contributor"
READER = "Reader"
USER_ACCESS_ADMINISTRATOR = "User Access Administrator"
RBAC_ADMINISTRATOR = "Role Based Access Control Administrator"


class AccessTier(str, Enum):
    """Coarse classification of what a role lets a principal do"""
    PRIVILEGED = "Privileged"
    WRITE = "Write"
    READ = "Read"


# Only the well-known built-in chains. A missing pair means "incomparable":
# hiding a grant that is not truly subsumed would mask privileged access.
ROLE_INCLUSIONS: Dict[str, FrozenSet[str]] = {
    OWNER: frozenset({CONTRIBUTOR, READER, USER_ACCESS_ADMINISTRATOR, RBAC_ADMINISTRATOR}),
    CONTRIBUTOR: frozenset({READER}),
}

PRIVILEGED_ROLES: FrozenSet[str] = frozenset({
    OWNER,
    CONTRIBUTOR,
    USER_ACCESS_ADMINISTRATOR,
    RBAC_ADMINISTRATOR,
    "Access Review Operator Service Role",
})

READ_ONLY_ROLES: FrozenSet[str] = frozenset({
    "Billing Reader",
    "Cost Management Reader",
    "Security Reader",
    "Log Analytics Reader",
    "Monitoring Reader",
    "Workbook Reader",
    "Blueprint Operator",
})

READ_ONLY_SUFFIXES = ("Reader", "Viewer")


def role_includes(role_a: str, role_b: str) -> bool:
    """True if everything role_b permits is also permitted by role_a"""
    if role_a == role_b:
        return True
    return role_b in ROLE_INCLUSIONS.get(role_a, frozenset())


def classify_access_tier(role_name: str) -> AccessTier:
    """Bucket a role name into Privileged, Read or Write (checked in that order)"""
    role_name = role_name or ""
    if role_name in PRIVILEGED_ROLES:
        return AccessTier.PRIVILEGED
    if role_name.endswith(READ_ONLY_SUFFIXES) or role_name in READ_ONLY_ROLES:
        return AccessTier.READ
    return AccessTier.WRITE
