#!/usr/bin/env python3
"""
Redundancy analysis engine for Azure RBAC Auditor

Consolidates repeated role assignment observations, flags grants made
redundant by a broader grant of the same principal, and aggregates the
result per principal and tenant-wide. Everything here is synchronous and
works on data already collected in memory.
"""

import logging
import uuid
from collections import Counter, OrderedDict
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from config import AnalysisConfig
from hierarchy import HierarchyMap, build_hierarchy, is_ancestor
from models import (
    GrantRecord,
    Principal,
    PrincipalSummary,
    RawGrant,
    RawSubscriptionMgChain,
    RbacStatistics,
    RoleGrant,
    TenantRbacAnalysis,
    collapse_subscriptions,
)
from roles import AccessTier, role_includes
from scopes import ScopeType, friendly_scope_name, parse_scope

logger = logging.getLogger(__name__)


class Deduplicator:
    """Collapses repeated observations of the same grant into one RoleGrant"""

    def deduplicate(self, raw_grants: Iterable[RawGrant]) -> List[RoleGrant]:
        """
        Group observations by (principal id, role definition id, scope path).

        A grant made at management group or root scope shows up once per
        subscription queried; the subscriptions it was seen through are merged
        into `visible_from`. The first observation supplies the grant details
        and fixes the grant's position in the output.
        """
        grants: "OrderedDict[tuple, RoleGrant]" = OrderedDict()
        observations = 0

        for raw in raw_grants:
            observations += 1
            key = (raw.principal_id, raw.role_definition_id, raw.scope_path)
            grant = grants.get(key)
            if grant is None:
                grant = RoleGrant.from_raw(raw, parse_scope(raw.scope_path))
                grants[key] = grant
            grant.add_observation(raw.source_subscription_id, raw.source_subscription_name)

        logger.info(f"Deduplicated {observations} observations into {len(grants)} unique grants")
        return list(grants.values())


class RedundancyAnalyzer:
    """Marks grants dominated by another grant of the same principal"""

    def __init__(self, hierarchy: HierarchyMap,
                 subscription_names: Optional[Dict[str, str]] = None,
                 dominator_selection: str = "first"):
        self.hierarchy = hierarchy
        self.subscription_names = subscription_names or {}
        self.dominator_selection = dominator_selection

    def dominates(self, candidate: RoleGrant, grant: RoleGrant) -> bool:
        """True if `candidate` sits at or above `grant`'s scope with a role including `grant`'s role"""
        if candidate.scope == grant.scope and candidate.role_name == grant.role_name:
            return False
        return (is_ancestor(candidate.scope, grant.scope, self.hierarchy)
                and role_includes(candidate.role_name, grant.role_name))

    def find_dominator(self, grant: RoleGrant, principal_grants: List[RoleGrant]) -> Optional[RoleGrant]:
        dominators = (other for other in principal_grants
                      if other is not grant and self.dominates(other, grant))
        if self.dominator_selection == "broadest":
            ranked = sorted(enumerate(dominators), key=lambda item: (item[1].scope.level, item[0]))
            return ranked[0][1] if ranked else None
        return next(dominators, None)

    def describe(self, grant: RoleGrant, dominator: RoleGrant) -> str:
        """Human readable reason naming the dominating grant"""
        if dominator.scope == grant.scope:
            return f"Covered by {dominator.role_name} at same scope"
        where = friendly_scope_name(dominator.scope, self.subscription_names,
                                    self.hierarchy.mg_display_names)
        if dominator.role_name == grant.role_name:
            return f"Same role ({grant.role_name}) already granted at {where}"
        return f"Covered by {dominator.role_name} at {where}"

    def analyze(self, grants: List[RoleGrant]) -> int:
        """Annotate grants in place and return how many were marked redundant"""
        by_principal: "OrderedDict[str, List[RoleGrant]]" = OrderedDict()
        for grant in grants:
            by_principal.setdefault(grant.principal_id, []).append(grant)

        redundant = 0
        for principal_grants in by_principal.values():
            if len(principal_grants) < 2:
                continue
            for grant in principal_grants:
                dominator = self.find_dominator(grant, principal_grants)
                if dominator is not None:
                    grant.mark_redundant(self.describe(grant, dominator))
                    redundant += 1

        logger.info(f"Marked {redundant} of {len(grants)} grants as redundant")
        return redundant


class Aggregator:
    """Principal-centric view and tenant-wide statistics over annotated grants"""

    def __init__(self, grants: List[RoleGrant],
                 principals: Dict[str, Principal],
                 subscriptions: Dict[str, str],
                 hierarchy: Optional[HierarchyMap] = None,
                 config: Optional[AnalysisConfig] = None):
        self.grants = grants
        self.subscriptions = subscriptions
        self.hierarchy = hierarchy or HierarchyMap()
        self.config = config or AnalysisConfig()
        self.principals = self._complete_principals(principals)

    def _complete_principals(self, principals: Dict[str, Principal]) -> Dict[str, Principal]:
        completed = dict(principals)
        for grant in self.grants:
            if grant.principal_id not in completed:
                completed[grant.principal_id] = Principal.unresolved(grant.principal_id, grant.principal_type)
        if self.config.mark_unresolved_as_orphaned:
            for principal_id, principal in list(completed.items()):
                if not principal.is_resolved:
                    completed[principal_id] = replace(principal, is_orphaned=True)
        return completed

    def to_record(self, grant: RoleGrant) -> GrantRecord:
        principal = self.principals[grant.principal_id]
        return GrantRecord(
            principal_id=grant.principal_id,
            principal_display_name=principal.display_name,
            principal_type=principal.type.value,
            role_name=grant.role_name,
            role_definition_id=grant.role_definition_id,
            scope=grant.scope.raw_path,
            scope_type=grant.scope.type.value,
            scope_level=grant.scope.level,
            scope_display=friendly_scope_name(grant.scope, self.subscriptions,
                                              self.hierarchy.mg_display_names),
            access_tier=grant.access_tier.value,
            is_redundant=grant.is_redundant,
            redundant_reason=grant.redundant_reason,
            visible_from_subscriptions=grant.visible_from_subscriptions,
            affected_subscriptions=grant.display_subscriptions(self.subscriptions),
            can_delegate=grant.can_delegate,
            condition=grant.condition,
            created_on=grant.created_on,
        )

    def principal_summaries(self) -> List[PrincipalSummary]:
        grouped: "OrderedDict[str, List[RoleGrant]]" = OrderedDict()
        for grant in self.grants:
            grouped.setdefault(grant.principal_id, []).append(grant)

        summaries = []
        for principal_id, grants in grouped.items():
            principal = self.principals[principal_id]
            visible_from: Dict[str, str] = {}
            for grant in grants:
                visible_from.update(grant.visible_from)

            summaries.append(PrincipalSummary(
                principal_id=principal_id,
                display_name=principal.display_name,
                principal_type=principal.type.value,
                user_principal_name=principal.user_principal_name,
                app_id=principal.app_id,
                is_external=principal.is_external,
                is_orphaned=principal.is_orphaned,
                is_resolved=principal.is_resolved,
                roles=sorted({grant.role_name for grant in grants}),
                affected_subscriptions=collapse_subscriptions(visible_from, self.subscriptions),
                has_privileged_roles=any(g.access_tier == AccessTier.PRIVILEGED for g in grants),
                assignment_count=len(grants),
                redundant_count=sum(1 for g in grants if g.is_redundant),
                grants=[self.to_record(g) for g in grants],
            ))

        summaries.sort(key=lambda s: (not s.has_privileged_roles, s.display_name.lower()))
        return summaries

    def role_scope_matrix(self) -> Dict[str, Dict[str, int]]:
        """Scope-type counts for the most frequently assigned roles"""
        role_counts = Counter(grant.role_name for grant in self.grants)
        top_roles = sorted(role_counts.items(), key=lambda item: (-item[1], item[0]))
        matrix = {}
        for role_name, _ in top_roles[:self.config.matrix_top_roles]:
            row = {scope_type.value: 0 for scope_type in ScopeType if scope_type != ScopeType.UNKNOWN}
            for grant in self.grants:
                if grant.role_name == role_name:
                    row[grant.scope.type.value] = row.get(grant.scope.type.value, 0) + 1
            matrix[role_name] = row
        return matrix

    def statistics(self, summaries: List[PrincipalSummary]) -> RbacStatistics:
        principals = [self.principals[s.principal_id] for s in summaries]
        resolved = sum(1 for p in principals if p.is_resolved)
        resolved_fraction = resolved / len(principals) if principals else 1.0
        lacks_directory = bool(principals) and resolved_fraction < self.config.identity_directory_threshold

        if lacks_directory:
            logger.warning(
                f"Only {resolved} of {len(principals)} principals resolved; "
                f"identity directory access appears to be missing"
            )

        by_tier = {tier.value: 0 for tier in AccessTier}
        by_tier.update(Counter(grant.access_tier.value for grant in self.grants))

        return RbacStatistics(
            total_grants=len(self.grants),
            total_principals=len(principals),
            by_access_tier=by_tier,
            by_principal_type=dict(Counter(p.type.value for p in principals)),
            by_scope_type=dict(Counter(grant.scope.type.value for grant in self.grants)),
            orphaned_principals=sum(1 for p in principals if p.is_orphaned),
            external_principals=sum(1 for p in principals if p.is_external),
            privileged_principals=sum(1 for s in summaries if s.has_privileged_roles),
            redundant_grants=sum(1 for grant in self.grants if grant.is_redundant),
            resolved_principal_fraction=round(resolved_fraction, 4),
            lacks_identity_directory_access=lacks_directory,
            role_scope_matrix=self.role_scope_matrix(),
        )


def run_analysis(raw_grants: Iterable[RawGrant],
                 chains: Iterable[RawSubscriptionMgChain],
                 principals: Optional[Dict[str, Principal]] = None,
                 subscriptions: Optional[Dict[str, str]] = None,
                 config: Optional[AnalysisConfig] = None,
                 tenant_id: str = "",
                 tenant_name: str = "",
                 mg_display_names: Optional[Dict[str, str]] = None,
                 analysis_id: Optional[str] = None,
                 failed_subscriptions: Optional[Dict[str, str]] = None) -> TenantRbacAnalysis:
    """
    Run the full engine: hierarchy, deduplication, redundancy, aggregation.

    `subscriptions` maps every scanned subscription id to its display name.
    `failed_subscriptions` lists subscriptions that could not be read; they are
    reported but take no part in the "All N subscriptions" collapse.
    Needs the complete set of raw grants and chains for the run.
    """
    config = config or AnalysisConfig()
    failed_subscriptions = dict(failed_subscriptions or {})
    subscriptions = {sub_id: name for sub_id, name in (subscriptions or {}).items()
                     if sub_id not in failed_subscriptions}

    hierarchy = build_hierarchy(chains, mg_display_names)
    grants = Deduplicator().deduplicate(raw_grants)
    RedundancyAnalyzer(hierarchy, subscriptions, config.dominator_selection).analyze(grants)

    aggregator = Aggregator(grants, principals or {}, subscriptions, hierarchy, config)
    summaries = aggregator.principal_summaries()
    statistics = aggregator.statistics(summaries)

    if analysis_id is None:
        analysis_id = f"{tenant_id or 'tenant'}_{int(datetime.utcnow().timestamp())}_{uuid.uuid4().hex[:8]}"

    return TenantRbacAnalysis(
        analysis_id=analysis_id,
        tenant_id=tenant_id,
        tenant_name=tenant_name,
        subscriptions=subscriptions,
        failed_subscriptions=failed_subscriptions,
        grants=[aggregator.to_record(grant) for grant in grants],
        principals=summaries,
        statistics=statistics,
    )
