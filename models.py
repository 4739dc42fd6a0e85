#!/usr/bin/env python3
"""
Data model for Azure RBAC Auditor
Typed records flowing through the engine and the pydantic result models handed to reporting
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from roles import AccessTier, classify_access_tier
from scopes import Scope


class PrincipalType(str, Enum):
    """Kinds of identity that can hold a role assignment"""
    USER = "User"
    GROUP = "Group"
    SERVICE_PRINCIPAL = "ServicePrincipal"
    MANAGED_IDENTITY = "ManagedIdentity"
    UNKNOWN = "Unknown"

    @classmethod
    def from_azure(cls, raw_type: Optional[str]) -> "PrincipalType":
        """Map Azure's principalType strings onto the enum"""
        mapping = {
            'user': cls.USER,
            'group': cls.GROUP,
            'foreigngroup': cls.GROUP,
            'serviceprincipal': cls.SERVICE_PRINCIPAL,
            'managedidentity': cls.MANAGED_IDENTITY,
        }
        return mapping.get((raw_type or "").lower(), cls.UNKNOWN)


@dataclass
class RawGrant:
    """One role assignment as observed through one subscription-scoped query"""
    principal_id: str
    role_definition_name: str
    role_definition_id: str
    scope_path: str
    principal_type: str = ""
    can_delegate: bool = False
    description: Optional[str] = None
    condition: Optional[str] = None
    created_on: Optional[datetime] = None
    updated_on: Optional[datetime] = None
    assignment_id: Optional[str] = None
    source_subscription_id: str = ""
    source_subscription_name: str = ""


@dataclass
class RawSubscriptionMgChain:
    """Management group ancestry of a subscription, direct parent first and root last"""
    subscription_id: str
    ordered_management_group_names: List[str] = field(default_factory=list)


@dataclass
class Principal:
    """An identity holding grants, resolved once per id"""
    id: str
    display_name: str
    type: PrincipalType = PrincipalType.UNKNOWN
    is_external: bool = False
    is_orphaned: bool = False
    user_principal_name: Optional[str] = None
    app_id: Optional[str] = None
    is_resolved: bool = False

    @classmethod
    def unresolved(cls, principal_id: str, hinted_type: Optional[str] = None) -> "Principal":
        """Fallback used when the directory lookup found nothing"""
        return cls(id=principal_id, display_name=principal_id,
                   type=PrincipalType.from_azure(hinted_type))


@dataclass
class RoleGrant:
    """
    A unique (principal, role definition, scope) grant after deduplication.

    Only `is_redundant` and `redundant_reason` change after creation, and only
    through `mark_redundant`.
    """
    principal_id: str
    role_name: str
    role_definition_id: str
    scope: Scope
    principal_type: str = ""
    access_tier: AccessTier = AccessTier.WRITE
    can_delegate: bool = False
    description: Optional[str] = None
    condition: Optional[str] = None
    created_on: Optional[datetime] = None
    updated_on: Optional[datetime] = None
    assignment_id: Optional[str] = None
    # subscription id -> subscription name, in first-observed order
    visible_from: Dict[str, str] = field(default_factory=dict)
    is_redundant: bool = False
    redundant_reason: Optional[str] = None

    @classmethod
    def from_raw(cls, raw: RawGrant, scope: Scope) -> "RoleGrant":
        return cls(
            principal_id=raw.principal_id,
            role_name=raw.role_definition_name,
            role_definition_id=raw.role_definition_id,
            scope=scope,
            principal_type=raw.principal_type,
            access_tier=classify_access_tier(raw.role_definition_name),
            can_delegate=raw.can_delegate,
            description=raw.description,
            condition=raw.condition,
            created_on=raw.created_on,
            updated_on=raw.updated_on,
            assignment_id=raw.assignment_id,
        )

    @property
    def visible_from_subscriptions(self) -> List[str]:
        return list(self.visible_from.values())

    def add_observation(self, subscription_id: str, subscription_name: str):
        key = subscription_id or subscription_name
        if key and key not in self.visible_from:
            self.visible_from[key] = subscription_name or subscription_id

    def mark_redundant(self, reason: str):
        self.is_redundant = True
        self.redundant_reason = reason

    def display_subscriptions(self, scanned_subscriptions: Iterable[str]) -> List[str]:
        return collapse_subscriptions(self.visible_from, scanned_subscriptions)


def collapse_subscriptions(visible_from: Dict[str, str], scanned_subscriptions: Iterable[str]) -> List[str]:
    """Sorted subscription names, or a single "All N subscriptions" entry when every scanned one is covered"""
    scanned = set(scanned_subscriptions)
    if scanned and set(visible_from) == scanned:
        return [f"All {len(scanned)} subscriptions"]
    return sorted(set(visible_from.values()))


class GrantRecord(BaseModel):
    """Flat, report-ready view of a RoleGrant"""
    principal_id: str
    principal_display_name: str = ""
    principal_type: str = PrincipalType.UNKNOWN.value
    role_name: str
    role_definition_id: str
    scope: str
    scope_type: str
    scope_level: int = 0
    scope_display: str = ""
    access_tier: str
    is_redundant: bool = False
    redundant_reason: Optional[str] = None
    visible_from_subscriptions: List[str] = Field(default_factory=list)
    affected_subscriptions: List[str] = Field(default_factory=list)
    can_delegate: bool = False
    condition: Optional[str] = None
    created_on: Optional[datetime] = None


class PrincipalSummary(BaseModel):
    """Everything one identity holds across the tenant"""
    principal_id: str
    display_name: str
    principal_type: str = PrincipalType.UNKNOWN.value
    user_principal_name: Optional[str] = None
    app_id: Optional[str] = None
    is_external: bool = False
    is_orphaned: bool = False
    is_resolved: bool = False
    roles: List[str] = Field(default_factory=list)
    affected_subscriptions: List[str] = Field(default_factory=list)
    has_privileged_roles: bool = False
    assignment_count: int = 0
    redundant_count: int = 0
    grants: List[GrantRecord] = Field(default_factory=list)


class RbacStatistics(BaseModel):
    """Tenant-wide summary numbers"""
    total_grants: int = 0
    total_principals: int = 0
    by_access_tier: Dict[str, int] = Field(default_factory=dict)
    by_principal_type: Dict[str, int] = Field(default_factory=dict)
    by_scope_type: Dict[str, int] = Field(default_factory=dict)
    orphaned_principals: int = 0
    external_principals: int = 0
    privileged_principals: int = 0
    redundant_grants: int = 0
    resolved_principal_fraction: float = 1.0
    lacks_identity_directory_access: bool = False
    role_scope_matrix: Dict[str, Dict[str, int]] = Field(default_factory=dict)


class TenantRbacAnalysis(BaseModel):
    """Complete result of one audit run"""
    analysis_id: str
    tenant_id: str = ""
    tenant_name: str = ""
    analyzed_at: datetime = Field(default_factory=datetime.utcnow)
    subscriptions: Dict[str, str] = Field(default_factory=dict)
    failed_subscriptions: Dict[str, str] = Field(default_factory=dict)
    grants: List[GrantRecord] = Field(default_factory=list)
    principals: List[PrincipalSummary] = Field(default_factory=list)
    statistics: RbacStatistics = Field(default_factory=RbacStatistics)

    @property
    def redundant_grants(self) -> List[GrantRecord]:
        return [grant for grant in self.grants if grant.is_redundant]

    def get_principal(self, principal_id: str) -> Optional[PrincipalSummary]:
        for principal in self.principals:
            if principal.principal_id == principal_id:
                return principal
        return None
