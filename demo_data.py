#!/usr/bin/env python3
"""
Demo Data Manager
Azure-dependency-free demo tenant for testing and demonstration of the RBAC audit engine
"""

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from analysis import run_analysis
from config import AnalysisConfig
from models import RawGrant, RawSubscriptionMgChain, TenantRbacAnalysis
from principals import PrincipalResolver

logger = logging.getLogger(__name__)

# MyTestCompany tenant constants
TENANT_ID = "7c52a0b8-1234-5678-90ab-123456789abc"
TENANT_NAME = "mytestcompany.onmicrosoft.com"

ROLE_DEFINITION_IDS = {
    "Owner": "8e3af657-a8ff-443c-a75c-2fe8c4bcb635",
    "Contributor": "b24988ac-6180-42a0-ab88-20f7382dd24c",
    "Reader": "acdd72a7-3385-48ef-bd42-f606fba81ae7",
    "User Access Administrator": "18d7d88d-d35e-4fb5-a5c3-7773c20a72d9",
    "Role Based Access Control Administrator": "f58310d9-a9f6-439a-9e8d-f62e7b41a168",
    "Virtual Machine Contributor": "9980e02c-c2be-4d73-94e8-173b1dc7cf3c",
    "Network Contributor": "4d97b98b-1d4f-4787-a291-c67834d212e7",
    "Storage Blob Data Contributor": "ba92f5b4-2d11-453d-a403-e96b0029c9fe",
    "Key Vault Secrets User": "4633458b-17de-408a-b874-0445c86b69e6",
    "Security Reader": "39bc4728-0917-49c7-9d2c-d95423bc2eb4",
    "Monitoring Reader": "43d0d8ad-25c7-4714-9337-8ba259a9fe05",
    "Cost Management Reader": "72fafb9e-0641-4937-9268-a91bfd8191a3",
}


@dataclass
class DemoTenant:
    """Everything the collectors would have returned for the demo tenant"""
    tenant_id: str
    tenant_name: str
    subscriptions: Dict[str, str]
    chains: List[RawSubscriptionMgChain]
    mg_display_names: Dict[str, str]
    raw_grants: List[RawGrant]
    directory: Dict[str, Dict] = field(default_factory=dict)

    async def lookup(self, principal_id: str, hinted_type: Optional[str] = None) -> Optional[Dict]:
        """Identity directory stand-in with the same contract as the Graph lookup"""
        return self.directory.get(principal_id)


def role_definition_id(role_name: str) -> str:
    guid = ROLE_DEFINITION_IDS.get(role_name, "00000000-0000-0000-0000-000000000000")
    return f"/providers/Microsoft.Authorization/roleDefinitions/{guid}"


def create_demo_tenant(seed: int = 42) -> DemoTenant:
    """
    Build a realistic demo tenant.

    Raw grants are produced the way per-subscription queries return them: an
    assignment at root or management group scope appears once for every
    subscription beneath it.
    """
    rng = random.Random(seed)
    now = datetime(2025, 1, 15, 9, 0, 0)

    management_groups = {
        TENANT_ID: "Tenant Root Group",
        "mytestcompany": "MyTestCompany",
        "mytestcompany-platform": "Platform",
        "mytestcompany-landingzones": "Landing Zones",
        "mytestcompany-prod": "Production",
        "mytestcompany-nonprod": "Non-Production",
    }

    subscription_chains = {
        "11111111-aaaa-4bbb-8ccc-000000000001": ("MyTestCompany Connectivity",
                                                 ["mytestcompany-platform", "mytestcompany", TENANT_ID]),
        "11111111-aaaa-4bbb-8ccc-000000000002": ("MyTestCompany Production",
                                                 ["mytestcompany-prod", "mytestcompany-landingzones",
                                                  "mytestcompany", TENANT_ID]),
        "11111111-aaaa-4bbb-8ccc-000000000003": ("MyTestCompany Development",
                                                 ["mytestcompany-nonprod", "mytestcompany-landingzones",
                                                  "mytestcompany", TENANT_ID]),
        "11111111-aaaa-4bbb-8ccc-000000000004": ("MyTestCompany Sandbox", []),
    }
    subscriptions = {sub_id: name for sub_id, (name, _) in subscription_chains.items()}
    chains = [RawSubscriptionMgChain(sub_id, chain) for sub_id, (_, chain) in subscription_chains.items()]

    prod, dev = "11111111-aaaa-4bbb-8ccc-000000000002", "11111111-aaaa-4bbb-8ccc-000000000003"
    connectivity = "11111111-aaaa-4bbb-8ccc-000000000001"

    directory = {
        "user-alice-001": {"display_name": "Alice Admin", "user_principal_name": "alice@mytestcompany.com",
                           "principal_type": "User"},
        "user-bob-002": {"display_name": "Bob Developer", "user_principal_name": "bob@mytestcompany.com",
                         "principal_type": "User"},
        "user-carol-003": {"display_name": "Carol Auditor", "user_principal_name": "carol@mytestcompany.com",
                           "principal_type": "User"},
        "user-guest-004": {"display_name": "Dave Consultant",
                           "user_principal_name": "dave_partner.com#EXT#@mytestcompany.onmicrosoft.com",
                           "principal_type": "User", "is_external": True},
        "group-platform-001": {"display_name": "MyTestCompany Platform Team", "principal_type": "Group"},
        "group-dev-002": {"display_name": "MyTestCompany Development Team", "principal_type": "Group"},
        "sp-pipeline-001": {"display_name": "mytestcompany-deploy-pipeline", "principal_type": "ServicePrincipal",
                            "app_id": "0a1b2c3d-0000-4000-8000-00000000a001"},
        "mi-backup-001": {"display_name": "mytestcompany-backup-identity", "principal_type": "ManagedIdentity",
                          "app_id": "0a1b2c3d-0000-4000-8000-00000000a002"},
    }

    # (principal id, azure principal type, role, scope)
    assignments = [
        ("user-alice-001", "User", "Owner", "/"),
        ("user-alice-001", "User", "Contributor", f"/subscriptions/{prod}"),
        ("user-alice-001", "User", "Reader", f"/subscriptions/{prod}/resourceGroups/mytestcompany-prod-web-rg"),
        ("group-platform-001", "Group", "Contributor",
         "/providers/Microsoft.Management/managementGroups/mytestcompany"),
        ("group-platform-001", "Group", "Reader",
         "/providers/Microsoft.Management/managementGroups/mytestcompany-landingzones"),
        ("group-platform-001", "Group", "Network Contributor", f"/subscriptions/{connectivity}"),
        ("group-dev-002", "Group", "Contributor", f"/subscriptions/{dev}"),
        ("group-dev-002", "Group", "Virtual Machine Contributor",
         f"/subscriptions/{dev}/resourceGroups/mytestcompany-dev-applications-rg"),
        ("user-bob-002", "User", "Reader", f"/subscriptions/{prod}"),
        ("user-bob-002", "User", "Reader", f"/subscriptions/{prod}/resourceGroups/mytestcompany-prod-data-rg"),
        ("user-bob-002", "User", "Storage Blob Data Contributor",
         f"/subscriptions/{prod}/resourceGroups/mytestcompany-prod-data-rg/providers/"
         f"Microsoft.Storage/storageAccounts/mytestcompanyproddata001"),
        ("user-carol-003", "User", "Security Reader", "/providers/Microsoft.Management/managementGroups/mytestcompany"),
        ("user-carol-003", "User", "Cost Management Reader", "/"),
        ("user-guest-004", "User", "Owner", f"/subscriptions/{dev}/resourceGroups/mytestcompany-dev-applications-rg"),
        ("user-guest-004", "User", "Contributor",
         f"/subscriptions/{dev}/resourceGroups/mytestcompany-dev-applications-rg"),
        ("sp-pipeline-001", "ServicePrincipal", "Contributor",
         "/providers/Microsoft.Management/managementGroups/mytestcompany-landingzones"),
        ("sp-pipeline-001", "ServicePrincipal", "User Access Administrator", f"/subscriptions/{prod}"),
        ("mi-backup-001", "ServicePrincipal", "Reader", f"/subscriptions/{prod}"),
        ("mi-backup-001", "ServicePrincipal", "Key Vault Secrets User",
         f"/subscriptions/{prod}/resourceGroups/mytestcompany-prod-security-rg/providers/"
         f"Microsoft.KeyVault/vaults/mytestcompany-prod-secrets-kv"),
        # Principal deleted from the directory, assignment left behind
        ("deleted-principal-999", "Unknown", "Contributor", f"/subscriptions/{prod}"),
        ("deleted-principal-999", "Unknown", "Monitoring Reader", f"/subscriptions/{connectivity}"),
    ]

    def visible_from(scope: str, sub_id: str, chain: List[str]) -> bool:
        if scope == "/":
            return True
        if scope.startswith("/providers/Microsoft.Management/managementGroups/"):
            return scope.rsplit("/", 1)[-1] in chain
        return scope == f"/subscriptions/{sub_id}" or scope.startswith(f"/subscriptions/{sub_id}/")

    raw_grants = []
    for index, (principal_id, principal_type, role, scope) in enumerate(assignments):
        created_on = now - timedelta(days=rng.randint(10, 900))
        for sub_id, (sub_name, chain) in subscription_chains.items():
            if not visible_from(scope, sub_id, chain):
                continue
            raw_grants.append(RawGrant(
                principal_id=principal_id,
                role_definition_name=role,
                role_definition_id=role_definition_id(role),
                scope_path=scope,
                principal_type=principal_type,
                created_on=created_on,
                updated_on=created_on,
                assignment_id=f"{scope.rstrip('/')}/providers/Microsoft.Authorization/roleAssignments/demo-{index:03d}",
                source_subscription_id=sub_id,
                source_subscription_name=sub_name,
            ))

    logger.info(f"Created demo tenant with {len(raw_grants)} raw grant observations")
    return DemoTenant(
        tenant_id=TENANT_ID,
        tenant_name=TENANT_NAME,
        subscriptions=subscriptions,
        chains=chains,
        mg_display_names=management_groups,
        raw_grants=raw_grants,
        directory=directory,
    )


async def analyze_demo_tenant(config: Optional[AnalysisConfig] = None, seed: int = 42) -> TenantRbacAnalysis:
    """Resolve the demo principals and run the engine, as a live collection would"""
    tenant = create_demo_tenant(seed)
    resolver = PrincipalResolver(tenant.lookup)
    hinted_types = {}
    for grant in tenant.raw_grants:
        hinted_types.setdefault(grant.principal_id, grant.principal_type)
    principals = await resolver.resolve_many(hinted_types)

    return run_analysis(
        tenant.raw_grants,
        tenant.chains,
        principals=principals,
        subscriptions=tenant.subscriptions,
        config=config,
        tenant_id=tenant.tenant_id,
        tenant_name=tenant.tenant_name,
        mg_display_names=tenant.mg_display_names,
    )
