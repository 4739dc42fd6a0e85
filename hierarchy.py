#!/usr/bin/env python3
"""
Management group hierarchy for Azure RBAC Auditor
Builds lookup maps from subscription ancestry chains and answers scope containment
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from models import RawSubscriptionMgChain
from scopes import Scope, ScopeType

logger = logging.getLogger(__name__)


@dataclass
class HierarchyMap:
    """Derived lookup maps over the management group tree. Read-only once built."""
    subscription_to_ancestors: Dict[str, List[str]] = field(default_factory=dict)
    subscription_to_direct_mg: Dict[str, str] = field(default_factory=dict)
    mg_to_ancestors: Dict[str, List[str]] = field(default_factory=dict)
    mg_to_children: Dict[str, Set[str]] = field(default_factory=dict)
    mg_to_subscriptions: Dict[str, Set[str]] = field(default_factory=dict)
    mg_display_names: Dict[str, str] = field(default_factory=dict)


def build_hierarchy(chains: Iterable[RawSubscriptionMgChain],
                    mg_display_names: Optional[Dict[str, str]] = None) -> HierarchyMap:
    """
    Build the hierarchy maps from (subscription, direct-parent-first MG chain) pairs.

    When two chains disagree on the ancestors of a management group, the longer
    list wins: platform-reported chains are sometimes truncated. Subscriptions
    with an empty chain are left out of every map.
    """
    hierarchy = HierarchyMap(mg_display_names=dict(mg_display_names or {}))

    for entry in chains:
        chain = [name for name in (entry.ordered_management_group_names or []) if name]
        if not entry.subscription_id or not chain:
            logger.debug(f"No management group ancestry for subscription {entry.subscription_id}")
            continue

        hierarchy.subscription_to_ancestors[entry.subscription_id] = list(chain)
        hierarchy.subscription_to_direct_mg[entry.subscription_id] = chain[0]
        hierarchy.mg_to_subscriptions.setdefault(chain[0], set()).add(entry.subscription_id)

        for i, mg_name in enumerate(chain):
            ancestors = chain[i + 1:]
            known = hierarchy.mg_to_ancestors.get(mg_name)
            if known is None or len(known) < len(ancestors):
                hierarchy.mg_to_ancestors[mg_name] = list(ancestors)

        for child, parent in zip(chain, chain[1:]):
            hierarchy.mg_to_children.setdefault(parent, set()).add(child)

    logger.info(
        f"Built hierarchy: {len(hierarchy.subscription_to_ancestors)} subscriptions, "
        f"{len(hierarchy.mg_to_ancestors)} management groups"
    )
    return hierarchy


def is_ancestor(ancestor: Scope, descendant: Scope, hierarchy: HierarchyMap) -> bool:
    """
    True if `ancestor` contains `descendant` (or is the same scope).

    Missing hierarchy data yields False for management group containment only;
    subscription, resource group and resource containment need no lookup.
    Unknown scopes are never related to anything, themselves included.
    """
    if ancestor.type == ScopeType.UNKNOWN or descendant.type == ScopeType.UNKNOWN:
        return False

    if ancestor.raw_path == descendant.raw_path:
        return True

    if ancestor.type == ScopeType.ROOT:
        return True

    if descendant.type == ScopeType.ROOT:
        return False

    if ancestor.type == ScopeType.MANAGEMENT_GROUP:
        if descendant.type == ScopeType.MANAGEMENT_GROUP:
            above = hierarchy.mg_to_ancestors.get(descendant.management_group_name, [])
            return ancestor.management_group_name in above
        if not descendant.subscription_id:
            return False
        above = hierarchy.subscription_to_ancestors.get(descendant.subscription_id, [])
        return ancestor.management_group_name in above

    if ancestor.type == ScopeType.SUBSCRIPTION:
        return (descendant.type in (ScopeType.RESOURCE_GROUP, ScopeType.RESOURCE)
                and descendant.subscription_id is not None
                and descendant.subscription_id == ancestor.subscription_id)

    if ancestor.type == ScopeType.RESOURCE_GROUP:
        return (descendant.type == ScopeType.RESOURCE
                and descendant.subscription_id is not None
                and descendant.subscription_id == ancestor.subscription_id
                and descendant.resource_group_name == ancestor.resource_group_name)

    # Resources contain nothing but themselves
    return False
