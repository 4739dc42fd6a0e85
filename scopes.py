#!/usr/bin/env python3
"""
Scope parsing for Azure RBAC Auditor
Turns Azure authorization scope paths into structured Scope values
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class ScopeType(str, Enum):
    """Levels of the Azure authorization hierarchy"""
    ROOT = "Root"
    MANAGEMENT_GROUP = "ManagementGroup"
    SUBSCRIPTION = "Subscription"
    RESOURCE_GROUP = "ResourceGroup"
    RESOURCE = "Resource"
    UNKNOWN = "Unknown"


SCOPE_LEVELS: Dict[ScopeType, int] = {
    ScopeType.ROOT: 0,
    ScopeType.MANAGEMENT_GROUP: 1,
    ScopeType.SUBSCRIPTION: 2,
    ScopeType.RESOURCE_GROUP: 3,
    ScopeType.RESOURCE: 4,
    ScopeType.UNKNOWN: 0,
}

# Keyword segments are matched case-insensitively, identifiers are kept as issued
_MANAGEMENT_GROUP_RE = re.compile(
    r"^/providers/Microsoft\.Management/managementGroups/([^/]+)$", re.IGNORECASE
)
_SUBSCRIPTION_RE = re.compile(r"^/subscriptions/([^/]+)$", re.IGNORECASE)
_RESOURCE_GROUP_RE = re.compile(
    r"^/subscriptions/([^/]+)/resourceGroups/([^/]+)$", re.IGNORECASE
)
_RESOURCE_RE = re.compile(
    r"^/subscriptions/([^/]+)/resourceGroups/([^/]+)/providers/([^/]+)/(.+)/([^/]+)$",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class Scope:
    """
    A point in the Azure authorization hierarchy.

    Equality and hashing use only the raw path, compared case-sensitively as
    issued by Azure.
    """
    raw_path: str
    type: ScopeType = field(default=ScopeType.UNKNOWN, compare=False)
    level: int = field(default=0, compare=False)
    management_group_name: Optional[str] = field(default=None, compare=False)
    subscription_id: Optional[str] = field(default=None, compare=False)
    resource_group_name: Optional[str] = field(default=None, compare=False)
    resource_type: Optional[str] = field(default=None, compare=False)
    resource_name: Optional[str] = field(default=None, compare=False)


def _make_scope(raw_path: str, scope_type: ScopeType, **identifiers) -> Scope:
    return Scope(raw_path=raw_path, type=scope_type, level=SCOPE_LEVELS[scope_type], **identifiers)


def parse_scope(raw_path: Optional[str]) -> Scope:
    """
    Parse a scope path into a Scope. Rules are evaluated in order and the first
    match wins. Never raises: anything unrecognised becomes an Unknown scope.
    """
    if not isinstance(raw_path, str) or not raw_path:
        return _make_scope(raw_path or "", ScopeType.UNKNOWN)

    if raw_path == "/":
        return _make_scope(raw_path, ScopeType.ROOT)

    # one trailing slash is tolerated, raw_path keeps it
    path = raw_path[:-1] if raw_path.endswith("/") else raw_path

    match = _MANAGEMENT_GROUP_RE.match(path)
    if match:
        return _make_scope(raw_path, ScopeType.MANAGEMENT_GROUP,
                           management_group_name=match.group(1))

    match = _SUBSCRIPTION_RE.match(path)
    if match:
        return _make_scope(raw_path, ScopeType.SUBSCRIPTION, subscription_id=match.group(1))

    match = _RESOURCE_GROUP_RE.match(path)
    if match:
        return _make_scope(raw_path, ScopeType.RESOURCE_GROUP,
                           subscription_id=match.group(1),
                           resource_group_name=match.group(2))

    match = _RESOURCE_RE.match(path)
    if match:
        subscription_id, resource_group, provider, type_path, name = match.groups()
        return _make_scope(raw_path, ScopeType.RESOURCE,
                           subscription_id=subscription_id,
                           resource_group_name=resource_group,
                           resource_type=f"{provider}/{type_path}",
                           resource_name=name)

    # Degraded match: still a resource for containment, components unknown
    if "/providers/" in raw_path.lower():
        return _make_scope(raw_path, ScopeType.RESOURCE)

    logger.debug(f"Unrecognised scope path: {raw_path}")
    return _make_scope(raw_path, ScopeType.UNKNOWN)


def friendly_scope_name(scope: Scope,
                        subscription_names: Optional[Dict[str, str]] = None,
                        mg_display_names: Optional[Dict[str, str]] = None) -> str:
    """Human readable rendering of a scope for reports and redundancy reasons"""
    subscription_names = subscription_names or {}
    mg_display_names = mg_display_names or {}

    if scope.type == ScopeType.ROOT:
        return "Root (/)"
    if scope.type == ScopeType.MANAGEMENT_GROUP:
        name = mg_display_names.get(scope.management_group_name, scope.management_group_name)
        return f"Management Group '{name}'"
    if scope.type == ScopeType.SUBSCRIPTION:
        name = subscription_names.get(scope.subscription_id, scope.subscription_id)
        return f"Subscription '{name}'"
    if scope.type == ScopeType.RESOURCE_GROUP:
        return f"Resource Group '{scope.resource_group_name}'"
    if scope.type == ScopeType.RESOURCE:
        if scope.resource_name:
            return f"Resource '{scope.resource_name}'"
        return f"Resource '{scope.raw_path}'"
    return scope.raw_path
