import asyncio

import pytest

from hierarchy import build_hierarchy
from models import RawGrant, RawSubscriptionMgChain
from scopes import parse_scope

ROOT = "/"
CORP = "/providers/Microsoft.Management/managementGroups/Corp"
PROD = "/providers/Microsoft.Management/managementGroups/Prod"
S1 = "/subscriptions/S1"
RG1 = "/subscriptions/S1/resourceGroups/RG1"
VM1 = "/subscriptions/S1/resourceGroups/RG1/providers/Microsoft.Compute/virtualMachines/VM1"


def make_raw(principal_id, role, scope, subscription_id="S1", subscription_name=None,
             role_definition_id=None, principal_type="User"):
    return RawGrant(
        principal_id=principal_id,
        role_definition_name=role,
        role_definition_id=role_definition_id or f"/providers/Microsoft.Authorization/roleDefinitions/{role}",
        scope_path=scope,
        principal_type=principal_type,
        source_subscription_id=subscription_id,
        source_subscription_name=subscription_name or f"{subscription_id} name",
    )


@pytest.fixture
def scopes():
    """Root -> MG Corp -> MG Prod -> Subscription S1 -> RG1 -> VM1"""
    return {
        'root': parse_scope(ROOT),
        'corp': parse_scope(CORP),
        'prod': parse_scope(PROD),
        's1': parse_scope(S1),
        'rg1': parse_scope(RG1),
        'vm1': parse_scope(VM1),
    }


@pytest.fixture
def chains():
    return [RawSubscriptionMgChain("S1", ["Prod", "Corp"])]


@pytest.fixture
def hierarchy(chains):
    return build_hierarchy(chains, {"Corp": "Corporate", "Prod": "Production"})


@pytest.fixture
def db_manager(tmp_path):
    from config import DatabaseConfig
    from database import DatabaseManager
    return DatabaseManager(DatabaseConfig(database_path=str(tmp_path / "rbac_test.db"), threads=1))


@pytest.fixture
def repository(db_manager):
    from repositories import AnalysisRepository
    return AnalysisRepository(db_manager)


@pytest.fixture
def demo_analysis():
    from demo_data import analyze_demo_tenant
    return asyncio.run(analyze_demo_tenant())
