#!/usr/bin/env python3
"""
Azure RBAC Auditor - collection boundary and command line
Collects role assignments and management group ancestry across a tenant,
runs the redundancy analysis engine and exports the results
Version: 2.0.0
"""

import asyncio
import json
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import aiohttp
import click
import pandas as pd
from azure.identity import ClientSecretCredential, DefaultAzureCredential
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential
)
from tqdm.asyncio import tqdm

from analysis import run_analysis
from config import AnalysisConfig, CollectorConfig, get_config
from models import Principal, RawGrant, RawSubscriptionMgChain, TenantRbacAnalysis
from principals import PrincipalResolver

logger = logging.getLogger(__name__)

# Constants for Azure APIs
AZURE_MANAGEMENT_URL = "https://management.azure.com"
GRAPH_API_URL = "https://graph.microsoft.com/v1.0"
MANAGEMENT_SCOPE = f"{AZURE_MANAGEMENT_URL}/.default"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"
RBAC_API_VERSION = "2022-04-01"
SUBSCRIPTIONS_API_VERSION = "2022-12-01"
RESOURCE_GRAPH_API_VERSION = "2024-04-01"

MG_CHAIN_QUERY = (
    "resourcecontainers "
    "| where type == 'microsoft.resources/subscriptions' "
    "| project subscriptionId, name, mgChain = properties.managementGroupAncestorsChain"
)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: str = "INFO", log_file: Optional[str] = None):
    """Configure root logging for the CLI and the web app"""
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO),
                        format=LOG_FORMAT, handlers=handlers, force=True)


class RateLimitedError(aiohttp.ClientError):
    """Raised on HTTP 429 so the retry policy picks the request up again"""


RETRYABLE_ERRORS = (
    aiohttp.ClientConnectionError,
    aiohttp.ServerTimeoutError,
    asyncio.TimeoutError,
    RateLimitedError,
)


class AzureAuthManager:
    """Manages Azure authentication and token refresh"""

    def __init__(self, tenant_id: Optional[str] = None, client_id: Optional[str] = None,
                 client_secret: Optional[str] = None):
        """Use service principal credentials when given, otherwise the default credential chain"""
        if any([client_id, client_secret]) and not all([tenant_id, client_id, client_secret]):
            raise ValueError("tenant_id, client_id, and client_secret are required together for service principal authentication")

        self.tenant_id = tenant_id or ""
        self.client_id = client_id
        self.client_secret = client_secret

        if client_secret:
            self.credential = ClientSecretCredential(
                tenant_id=tenant_id,
                client_id=client_id,
                client_secret=client_secret
            )
        else:
            self.credential = DefaultAzureCredential()

        # Token cache
        self._token_cache: Dict[str, Tuple[str, datetime]] = {}
        self._token_lock = asyncio.Lock()

    def get_token(self, scope: str) -> str:
        """Get access token for a specific scope with caching"""
        if scope in self._token_cache:
            token, expires_on = self._token_cache[scope]
            if datetime.utcnow() < expires_on - timedelta(minutes=5):
                return token

        token_response = self.credential.get_token(scope)
        self._token_cache[scope] = (
            token_response.token,
            datetime.utcfromtimestamp(token_response.expires_on)
        )
        return token_response.token

    async def get_token_async(self, scope: str) -> str:
        """Async wrapper running the blocking credential call off the event loop"""
        async with self._token_lock:
            return await asyncio.to_thread(self.get_token, scope)


class AzureAPIClient:
    """Async client for Azure REST APIs with rate limiting, retry and pagination"""

    def __init__(self, auth_manager: AzureAuthManager, config: Optional[CollectorConfig] = None):
        self.auth_manager = auth_manager
        self.config = config or CollectorConfig()
        self.semaphore = asyncio.Semaphore(self.config.max_concurrent_requests)
        self.session: Optional[aiohttp.ClientSession] = None
        self._request_count = 0
        self._last_request_time = datetime.utcnow()
        self._rate_lock = asyncio.Lock()

    async def __aenter__(self):
        """Async context manager entry"""
        connector = aiohttp.TCPConnector(
            limit=100,
            limit_per_host=20,
            ttl_dns_cache=300,
            enable_cleanup_closed=True,
            keepalive_timeout=30
        )
        timeout = aiohttp.ClientTimeout(total=self.config.request_timeout_seconds, connect=30, sock_read=30)
        self.session = aiohttp.ClientSession(connector=connector, timeout=timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit"""
        if self.session and not self.session.closed:
            try:
                await asyncio.wait_for(self.session.close(), timeout=3.0)
            except asyncio.TimeoutError:
                logger.debug("Session close timed out")
        self.session = None

    @property
    def request_count(self) -> int:
        return self._request_count

    async def make_request(self, method: str, url: str, scope: str, **kwargs) -> Dict:
        """Make an authenticated request, retrying transient failures with exponential backoff"""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.config.max_retries),
            wait=wait_exponential(multiplier=self.config.backoff_factor, min=1, max=60),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            reraise=True
        ):
            with attempt:
                return await self._request_once(method, url, scope, **kwargs)
        return {}

    async def _request_once(self, method: str, url: str, scope: str, **kwargs) -> Dict:
        async with self.semaphore:
            await self._apply_rate_limit()

            token = await self.auth_manager.get_token_async(scope)
            headers = dict(kwargs.pop('headers', {}) or {})
            headers['Authorization'] = f'Bearer {token}'
            headers['Content-Type'] = 'application/json'

            try:
                async with self.session.request(method, url, headers=headers, **kwargs) as response:
                    self._request_count += 1

                    if response.status == 429:
                        retry_after = int(response.headers.get('Retry-After', 30))
                        logger.warning(f"Rate limited. Waiting {retry_after} seconds")
                        await asyncio.sleep(retry_after)
                        raise RateLimitedError("Rate limited")

                    if response.status == 404:
                        return {}

                    response.raise_for_status()
                    return await response.json()

            except aiohttp.ClientResponseError as e:
                logger.error(f"API request failed: {e.status} - {e.message}")
                raise
            except RETRYABLE_ERRORS as e:
                logger.warning(f"Transient error calling {url}: {e}. Will retry...")
                raise

    async def get_paged(self, url: str, scope: str, **kwargs) -> List[Dict]:
        """Follow ARM `nextLink` and Graph `@odata.nextLink` until exhausted"""
        items = []
        while url:
            response = await self.make_request("GET", url, scope, **kwargs)
            items.extend(response.get('value', []))
            url = response.get('nextLink') or response.get('@odata.nextLink')
            kwargs.pop('params', None)
        return items

    async def _apply_rate_limit(self):
        """Apply rate limiting between requests"""
        async with self._rate_lock:
            now = datetime.utcnow()
            time_since_last = (now - self._last_request_time).total_seconds()
            if time_since_last < self.config.rate_limit_delay:
                await asyncio.sleep(self.config.rate_limit_delay - time_since_last)
            self._last_request_time = datetime.utcnow()


@dataclass
class CollectedTenantData:
    """Raw inputs for one analysis run. `subscriptions` holds only the subscriptions that were read"""
    tenant_id: str
    tenant_name: str
    subscriptions: Dict[str, str]
    chains: List[RawSubscriptionMgChain] = field(default_factory=list)
    mg_display_names: Dict[str, str] = field(default_factory=dict)
    raw_grants: List[RawGrant] = field(default_factory=list)
    principals: Dict[str, Principal] = field(default_factory=dict)
    # subscription id -> name for subscriptions whose assignments could not be read
    failed_subscriptions: Dict[str, str] = field(default_factory=dict)


class AzureRbacCollector:
    """Collects role assignments, management group chains and principals for a tenant"""

    def __init__(self, api_client: AzureAPIClient, tenant_id: str = "",
                 resolver: Optional[PrincipalResolver] = None):
        self.api_client = api_client
        self.tenant_id = tenant_id
        self.resolver = resolver or PrincipalResolver(self.lookup_principal)
        self._role_names: Dict[str, str] = {}

    async def get_tenant_name(self) -> str:
        """Tenant display name from Microsoft Graph, or a placeholder"""
        fallback = f"Tenant-{self.tenant_id[:8]}" if self.tenant_id else "Tenant"
        try:
            response = await self.api_client.make_request("GET", f"{GRAPH_API_URL}/organization", GRAPH_SCOPE)
            organizations = response.get('value', [])
            if organizations:
                return organizations[0].get('displayName') or fallback
        except Exception as e:
            logger.warning(f"Failed to fetch tenant display name: {e}")
        return fallback

    async def list_subscriptions(self) -> Dict[str, str]:
        """All subscriptions visible to the caller, id -> display name"""
        url = f"{AZURE_MANAGEMENT_URL}/subscriptions?api-version={SUBSCRIPTIONS_API_VERSION}"
        items = await self.api_client.get_paged(url, MANAGEMENT_SCOPE)
        subscriptions = {
            item['subscriptionId']: item.get('displayName') or item['subscriptionId']
            for item in items if item.get('subscriptionId')
        }
        logger.info(f"Found {len(subscriptions)} subscriptions")
        return subscriptions

    async def get_management_group_chains(self, subscription_ids: List[str]) -> Tuple[List[RawSubscriptionMgChain], Dict[str, str]]:
        """
        Management group ancestry per subscription from Azure Resource Graph.

        Without management group read access this returns nothing; the engine
        then simply cannot see management group containment.
        """
        url = (f"{AZURE_MANAGEMENT_URL}/providers/Microsoft.ResourceGraph/resources"
               f"?api-version={RESOURCE_GRAPH_API_VERSION}")
        chains: List[RawSubscriptionMgChain] = []
        display_names: Dict[str, str] = {}
        skip_token = None

        try:
            while True:
                options = {'resultFormat': 'objectArray'}
                if skip_token:
                    options['$skipToken'] = skip_token
                body = {'subscriptions': subscription_ids, 'query': MG_CHAIN_QUERY, 'options': options}
                response = await self.api_client.make_request("POST", url, MANAGEMENT_SCOPE, json=body)

                for row in response.get('data', []):
                    chain = []
                    for entry in row.get('mgChain') or []:
                        name = entry.get('name')
                        if not name:
                            continue
                        chain.append(name)
                        display_names[name] = entry.get('displayName') or name
                    chains.append(RawSubscriptionMgChain(row.get('subscriptionId', ''), chain))

                skip_token = response.get('$skipToken')
                if not skip_token:
                    break
        except Exception as e:
            logger.warning(f"Could not read management group hierarchy, MG-level containment disabled: {e}")
            return [], {}

        logger.info(f"Collected management group chains for {len(chains)} subscriptions")
        return chains, display_names

    async def get_role_definition_names(self, subscription_id: str) -> Dict[str, str]:
        """Role definition GUID -> role name for definitions assignable in the subscription"""
        url = (f"{AZURE_MANAGEMENT_URL}/subscriptions/{subscription_id}"
               f"/providers/Microsoft.Authorization/roleDefinitions?api-version={RBAC_API_VERSION}")
        for item in await self.api_client.get_paged(url, MANAGEMENT_SCOPE):
            guid = role_definition_guid(item.get('id', ''))
            if guid and guid not in self._role_names:
                self._role_names[guid] = item.get('properties', {}).get('roleName', '')
        return self._role_names

    async def _role_name(self, role_definition_id: str) -> str:
        guid = role_definition_guid(role_definition_id)
        if guid not in self._role_names:
            url = f"{AZURE_MANAGEMENT_URL}{role_definition_id}?api-version={RBAC_API_VERSION}"
            try:
                definition = await self.api_client.make_request("GET", url, MANAGEMENT_SCOPE)
                self._role_names[guid] = definition.get('properties', {}).get('roleName', '') or guid
            except Exception as e:
                logger.error(f"Failed to get role definition {role_definition_id}: {e}")
                self._role_names[guid] = guid
        return self._role_names[guid]

    async def list_role_assignments(self, subscription_id: str, subscription_name: str) -> List[RawGrant]:
        """Assignments at, above and below a subscription, as raw observations"""
        await self.get_role_definition_names(subscription_id)

        url = (f"{AZURE_MANAGEMENT_URL}/subscriptions/{subscription_id}"
               f"/providers/Microsoft.Authorization/roleAssignments?api-version={RBAC_API_VERSION}")
        raw_grants = []
        for item in await self.api_client.get_paged(url, MANAGEMENT_SCOPE):
            properties = item.get('properties', {})
            role_definition_id = properties.get('roleDefinitionId', '')
            raw_grants.append(RawGrant(
                principal_id=properties.get('principalId', ''),
                principal_type=properties.get('principalType', ''),
                role_definition_name=await self._role_name(role_definition_id),
                role_definition_id=role_definition_id,
                scope_path=properties.get('scope', ''),
                can_delegate=bool(properties.get('canDelegate')),
                description=properties.get('description'),
                condition=properties.get('condition'),
                created_on=parse_datetime(properties.get('createdOn')),
                updated_on=parse_datetime(properties.get('updatedOn')),
                assignment_id=item.get('id'),
                source_subscription_id=subscription_id,
                source_subscription_name=subscription_name,
            ))

        logger.info(f"Subscription {subscription_name}: {len(raw_grants)} role assignments")
        return raw_grants

    async def lookup_principal(self, principal_id: str, hinted_type: Optional[str] = None) -> Optional[Dict]:
        """Directory record for a principal from Microsoft Graph, or None when not found"""
        url = f"{GRAPH_API_URL}/directoryObjects/{principal_id}"
        try:
            data = await self.api_client.make_request("GET", url, GRAPH_SCOPE)
        except Exception as e:
            logger.warning(f"Failed to look up principal {principal_id}: {e}")
            return None
        if not data:
            return None
        return directory_record(data)

    async def collect(self, subscription_ids: Optional[List[str]] = None) -> CollectedTenantData:
        """Fetch everything the engine needs; subscriptions run concurrently"""
        subscriptions = await self.list_subscriptions()
        if subscription_ids:
            subscriptions = {sub_id: subscriptions.get(sub_id, sub_id) for sub_id in subscription_ids}

        tenant_name = await self.get_tenant_name()
        chains, mg_display_names = await self.get_management_group_chains(list(subscriptions))

        progress = tqdm(total=len(subscriptions), desc="Collecting subscriptions")
        failed: Dict[str, str] = {}

        async def collect_one(subscription_id: str, subscription_name: str) -> List[RawGrant]:
            try:
                return await self.list_role_assignments(subscription_id, subscription_name)
            except Exception as e:
                logger.error(f"Failed to collect subscription {subscription_name}: {e}")
                failed[subscription_id] = subscription_name
                return []
            finally:
                progress.update(1)

        results = await asyncio.gather(*(collect_one(sub_id, name) for sub_id, name in subscriptions.items()))
        progress.close()

        raw_grants = [grant for batch in results for grant in batch]
        hinted_types = {}
        for grant in raw_grants:
            hinted_types.setdefault(grant.principal_id, grant.principal_type)
        principals = await self.resolver.resolve_many(hinted_types)

        return CollectedTenantData(
            tenant_id=self.tenant_id,
            tenant_name=tenant_name,
            subscriptions={sub_id: name for sub_id, name in subscriptions.items() if sub_id not in failed},
            chains=chains,
            mg_display_names=mg_display_names,
            raw_grants=raw_grants,
            principals=principals,
            failed_subscriptions=failed,
        )


def role_definition_guid(role_definition_id: str) -> str:
    return (role_definition_id or "").rstrip('/').rsplit('/', 1)[-1].lower()


def directory_record(data: Dict) -> Dict:
    """Normalise a Graph directoryObject into the lookup record shape"""
    odata_type = data.get('@odata.type', '')
    record = {
        'display_name': data.get('displayName'),
        'user_principal_name': data.get('userPrincipalName'),
        'app_id': data.get('appId'),
        'is_external': False,
    }
    if odata_type.endswith('.user'):
        record['principal_type'] = 'User'
        upn = data.get('userPrincipalName') or ''
        record['is_external'] = data.get('userType') == 'Guest' or '#EXT#' in upn
    elif odata_type.endswith('.group'):
        record['principal_type'] = 'Group'
    elif odata_type.endswith('.servicePrincipal'):
        is_managed = data.get('servicePrincipalType') == 'ManagedIdentity'
        record['principal_type'] = 'ManagedIdentity' if is_managed else 'ServicePrincipal'
    return record


def parse_datetime(date_str: Optional[str]) -> Optional[datetime]:
    """Parse datetime string from Azure API"""
    if not date_str:
        return None
    try:
        return datetime.fromisoformat(date_str.replace('Z', '+00:00'))
    except (ValueError, AttributeError):
        return None


async def analyze_tenant(auth_manager: AzureAuthManager,
                         subscription_ids: Optional[List[str]] = None,
                         collector_config: Optional[CollectorConfig] = None,
                         analysis_config: Optional[AnalysisConfig] = None) -> TenantRbacAnalysis:
    """Collect a tenant and run the analysis engine over the complete data set"""
    async with AzureAPIClient(auth_manager, collector_config) as api_client:
        collector = AzureRbacCollector(api_client, auth_manager.tenant_id)
        data = await collector.collect(subscription_ids)
        logger.info(f"Collection finished after {api_client.request_count} API requests")

    return analyze_collected(data, analysis_config)


def analyze_collected(data: CollectedTenantData, analysis_config: Optional[AnalysisConfig] = None) -> TenantRbacAnalysis:
    """Run the engine over collected data; failed subscriptions do not count as scanned"""
    if data.failed_subscriptions:
        logger.warning(f"{len(data.failed_subscriptions)} subscriptions could not be collected: "
                       f"{', '.join(data.failed_subscriptions.values())}")

    return run_analysis(
        data.raw_grants,
        data.chains,
        principals=data.principals,
        subscriptions=data.subscriptions,
        config=analysis_config,
        tenant_id=data.tenant_id,
        tenant_name=data.tenant_name,
        mg_display_names=data.mg_display_names,
        failed_subscriptions=data.failed_subscriptions,
    )


class OutputFormatter:
    """Format analysis results for different output types"""

    @staticmethod
    def to_json(analysis: TenantRbacAnalysis, file_path: Path):
        """Export analysis to JSON"""
        with file_path.open('w') as f:
            json.dump(analysis.model_dump(mode='json'), f, indent=2)
        logger.info(f"Exported JSON to {file_path}")

    @staticmethod
    def grants_dataframe(analysis: TenantRbacAnalysis) -> pd.DataFrame:
        """One row per deduplicated grant"""
        rows = []
        for grant in analysis.grants:
            row = grant.model_dump()
            row['visible_from_subscriptions'] = '; '.join(grant.visible_from_subscriptions)
            row['affected_subscriptions'] = '; '.join(grant.affected_subscriptions)
            row['created_on'] = grant.created_on.isoformat() if grant.created_on else None
            rows.append(row)
        return pd.DataFrame(rows, columns=list(rows[0]) if rows else None)

    @staticmethod
    def principals_dataframe(analysis: TenantRbacAnalysis) -> pd.DataFrame:
        rows = [{
            'Principal ID': p.principal_id,
            'Display Name': p.display_name,
            'Type': p.principal_type,
            'User Principal Name': p.user_principal_name,
            'External': p.is_external,
            'Orphaned': p.is_orphaned,
            'Resolved': p.is_resolved,
            'Roles': ', '.join(p.roles),
            'Affected Subscriptions': '; '.join(p.affected_subscriptions),
            'Privileged': p.has_privileged_roles,
            'Assignments': p.assignment_count,
            'Redundant': p.redundant_count,
        } for p in analysis.principals]
        return pd.DataFrame(rows)

    @staticmethod
    def to_csv(analysis: TenantRbacAnalysis, file_path: Path):
        """Export the flat grant list to CSV"""
        OutputFormatter.grants_dataframe(analysis).to_csv(file_path, index=False)
        logger.info(f"Exported CSV to {file_path}")

    @staticmethod
    def to_excel(analysis: TenantRbacAnalysis, file_path: Path):
        """Export the analysis to Excel with one sheet per view"""
        stats = analysis.statistics
        summary = {
            'Tenant': analysis.tenant_name or analysis.tenant_id,
            'Analyzed At': analysis.analyzed_at,
            'Subscriptions Scanned': len(analysis.subscriptions),
            'Subscriptions Failed': len(analysis.failed_subscriptions),
            'Total Grants': stats.total_grants,
            'Total Principals': stats.total_principals,
            'Redundant Grants': stats.redundant_grants,
            'Privileged Principals': stats.privileged_principals,
            'External Principals': stats.external_principals,
            'Orphaned Principals': stats.orphaned_principals,
            'Resolved Principal Fraction': stats.resolved_principal_fraction,
            'Lacks Identity Directory Access': stats.lacks_identity_directory_access,
        }
        summary.update({f"{tier} Grants": count for tier, count in stats.by_access_tier.items()})

        grants = OutputFormatter.grants_dataframe(analysis)
        with pd.ExcelWriter(file_path, engine='openpyxl') as writer:
            pd.DataFrame(list(summary.items()), columns=['Metric', 'Value']).to_excel(
                writer, sheet_name='Summary', index=False)
            OutputFormatter.principals_dataframe(analysis).to_excel(writer, sheet_name='Principals', index=False)
            grants.to_excel(writer, sheet_name='Grants', index=False)
            if not grants.empty:
                grants[grants['is_redundant']].to_excel(writer, sheet_name='Redundant', index=False)
            pd.DataFrame.from_dict(stats.role_scope_matrix, orient='index').to_excel(
                writer, sheet_name='Role Matrix')

        logger.info(f"Exported Excel to {file_path}")

    @staticmethod
    def print_summary(analysis: TenantRbacAnalysis):
        """Print a summary to console"""
        stats = analysis.statistics
        print(f"\n{'='*60}")
        print(f"RBAC Audit for {analysis.tenant_name or analysis.tenant_id or 'tenant'}")
        print(f"{'='*60}")
        print(f"Analysis ID: {analysis.analysis_id}")
        print(f"Subscriptions scanned: {len(analysis.subscriptions)}")
        if analysis.failed_subscriptions:
            print(f"WARNING: {len(analysis.failed_subscriptions)} subscriptions could not be read: "
                  f"{', '.join(sorted(analysis.failed_subscriptions.values()))}")
        print(f"Unique grants: {stats.total_grants}  Principals: {stats.total_principals}")
        print("Access tiers: " + ", ".join(f"{k}={v}" for k, v in stats.by_access_tier.items()))
        print(f"Redundant grants: {stats.redundant_grants}")
        print(f"External principals: {stats.external_principals}  Orphaned: {stats.orphaned_principals}")
        if stats.lacks_identity_directory_access:
            print("WARNING: most principals could not be resolved; identity directory access is missing")

        redundant = analysis.redundant_grants
        for grant in redundant[:10]:
            print(f"  - {grant.principal_display_name}: {grant.role_name} on {grant.scope_display} "
                  f"({grant.redundant_reason})")
        if len(redundant) > 10:
            print(f"  ... and {len(redundant) - 10} more")
        print(f"{'='*60}\n")


def export_analysis(analysis: TenantRbacAnalysis, output_format: str, output_path: Path) -> Path:
    """Write the analysis in the requested format and return the file written"""
    output_path.mkdir(parents=True, exist_ok=True)
    extension = {'json': 'json', 'csv': 'csv', 'excel': 'xlsx'}[output_format]
    file_path = output_path / f"rbac_audit_{analysis.analysis_id}.{extension}"
    if output_format == 'json':
        OutputFormatter.to_json(analysis, file_path)
    elif output_format == 'csv':
        OutputFormatter.to_csv(analysis, file_path)
    else:
        OutputFormatter.to_excel(analysis, file_path)
    return file_path


@click.command()
@click.option('--subscription-id', 'subscription_ids', multiple=True,
              help='Subscription to scan (repeatable); defaults to every accessible subscription')
@click.option('--demo', is_flag=True, help='Analyze the built-in demo tenant instead of Azure')
@click.option('--output-format', type=click.Choice(['json', 'csv', 'excel']), default='json')
@click.option('--output-dir', type=click.Path(), default=None, help='Directory for the exported report')
@click.option('--tenant-id', envvar='AZURE_TENANT_ID', help='Azure Tenant ID')
@click.option('--client-id', envvar='AZURE_CLIENT_ID', help='Service Principal Client ID')
@click.option('--client-secret', envvar='AZURE_CLIENT_SECRET', help='Service Principal Secret')
@click.option('--max-concurrent', type=int, default=None, help='Max concurrent API requests')
@click.option('--dominator', type=click.Choice(['first', 'broadest']), default=None,
              help='Which dominating grant explains a redundancy')
@click.option('--save-to-db', is_flag=True, help='Store the analysis in the DuckDB database')
@click.option('--verbose', is_flag=True, help='Enable verbose logging')
def main(subscription_ids, demo, output_format, output_dir, tenant_id, client_id, client_secret,
         max_concurrent, dominator, save_to_db, verbose):
    """Azure RBAC Auditor - find redundant and privileged role assignments across a tenant"""
    config = get_config()
    setup_logging("DEBUG" if verbose else config.log_level, config.log_file)

    collector_config = config.collector.model_copy()
    if max_concurrent:
        collector_config.max_concurrent_requests = max_concurrent
    analysis_config = config.analysis.model_copy()
    if dominator:
        analysis_config.dominator_selection = dominator

    if demo:
        from demo_data import analyze_demo_tenant
        analysis = asyncio.run(analyze_demo_tenant(analysis_config))
    else:
        try:
            auth_manager = AzureAuthManager(tenant_id, client_id, client_secret)
        except ValueError as e:
            raise click.UsageError(str(e))

        analysis = asyncio.run(analyze_tenant(auth_manager, list(subscription_ids), collector_config, analysis_config))

    file_path = export_analysis(analysis, output_format, Path(output_dir or config.output_dir))
    OutputFormatter.print_summary(analysis)
    click.echo(f"Report written to {file_path}")

    if save_to_db:
        from repositories import get_analysis_repository
        repo = get_analysis_repository()
        if not repo.save_analysis(analysis):
            raise click.ClickException("Failed to store analysis in the database")
        click.echo(f"Analysis {analysis.analysis_id} stored in database")

        removed = repo.delete_old_analyses()
        if removed:
            click.echo(f"Removed {removed} analyses past the {config.database.data_retention_days}-day retention")


if __name__ == "__main__":
    main()
