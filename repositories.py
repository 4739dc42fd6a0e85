#!/usr/bin/env python3
"""
Repository classes for Azure RBAC Auditor
Provides data access layer for stored analysis runs and their grants
"""

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from database import DatabaseManager, get_database_manager
from models import TenantRbacAnalysis

logger = logging.getLogger(__name__)

GRANT_COLUMNS = [
    'principal_id', 'principal_display_name', 'principal_type', 'role_name',
    'role_definition_id', 'scope', 'scope_type', 'access_tier', 'is_redundant', 'redundant_reason',
]
RUN_COLUMNS = [
    'analysis_id', 'tenant_id', 'tenant_name', 'subscription_count', 'grant_count',
    'principal_count', 'redundant_count', 'analyzed_at', 'created_at',
]


class AnalysisRepository:
    """Repository for managing analysis runs"""

    def __init__(self, db_manager: Optional[DatabaseManager] = None):
        self.db = db_manager or get_database_manager()

    def save_analysis(self, analysis: TenantRbacAnalysis) -> bool:
        """Save or replace an analysis run together with its grants"""
        try:
            analysis_data = analysis.model_dump(mode='json')
            stats = analysis.statistics

            run_query = f"""
                INSERT INTO analysis_runs ({', '.join(RUN_COLUMNS)}, analysis_data)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """
            run_parameters = (
                analysis.analysis_id,
                analysis.tenant_id,
                analysis.tenant_name,
                len(analysis.subscriptions),
                stats.total_grants,
                stats.total_principals,
                stats.redundant_grants,
                analysis.analyzed_at,
                datetime.utcnow(),
                json.dumps(analysis_data),
            )

            grant_query = f"""
                INSERT INTO role_grants (analysis_id, {', '.join(GRANT_COLUMNS)})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """
            grant_rows = [
                (analysis.analysis_id, *(getattr(grant, column) for column in GRANT_COLUMNS))
                for grant in analysis.grants
            ]

            self.db.execute_transaction([
                ("DELETE FROM role_grants WHERE analysis_id = ?", (analysis.analysis_id,)),
                ("DELETE FROM analysis_runs WHERE analysis_id = ?", (analysis.analysis_id,)),
                (run_query, run_parameters),
                (grant_query, grant_rows),
            ])
            logger.info(f"Saved analysis {analysis.analysis_id} with {len(grant_rows)} grants")
            return True

        except Exception as e:
            logger.error(f"Failed to save analysis {analysis.analysis_id}: {e}")
            return False

    def get_analysis(self, analysis_id: str) -> Optional[TenantRbacAnalysis]:
        """Get a full analysis run by ID"""
        try:
            results = self.db.execute_query(
                "SELECT analysis_data FROM analysis_runs WHERE analysis_id = ?", (analysis_id,))

            if not results:
                logger.warning(f"No analysis found for ID: {analysis_id}")
                return None

            return TenantRbacAnalysis.model_validate(json.loads(results[0][0]))

        except Exception as e:
            logger.error(f"Failed to get analysis {analysis_id}: {e}")
            return None

    def list_analyses(self, limit: Optional[int] = None, offset: int = 0,
                      tenant_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Run metadata, newest first, with optional tenant filter and pagination"""
        try:
            query = f"SELECT {', '.join(RUN_COLUMNS)} FROM analysis_runs"
            parameters: List[Any] = []

            if tenant_id:
                query += " WHERE tenant_id = ?"
                parameters.append(tenant_id)

            query += " ORDER BY created_at DESC"

            if limit:
                query += " LIMIT ? OFFSET ?"
                parameters.extend([int(limit), int(offset)])

            results = self.db.execute_query(query, tuple(parameters))
            return [dict(zip(RUN_COLUMNS, row)) for row in results]

        except Exception as e:
            logger.error(f"Failed to list analyses: {e}")
            return []

    def _grant_rows(self, analysis_id: str, condition: str = "", parameters: tuple = ()) -> List[Dict[str, Any]]:
        query = f"SELECT {', '.join(GRANT_COLUMNS)} FROM role_grants WHERE analysis_id = ?"
        if condition:
            query += f" AND {condition}"
        query += " ORDER BY principal_id, scope"
        try:
            results = self.db.execute_query(query, (analysis_id, *parameters))
            return [dict(zip(GRANT_COLUMNS, row)) for row in results]
        except Exception as e:
            logger.error(f"Failed to query grants for analysis {analysis_id}: {e}")
            return []

    def get_redundant_grants(self, analysis_id: str) -> List[Dict[str, Any]]:
        """Grants of a run flagged as redundant"""
        return self._grant_rows(analysis_id, "is_redundant = TRUE")

    def get_principal_grants(self, analysis_id: str, principal_id: str) -> List[Dict[str, Any]]:
        """Grants of a run held by one principal"""
        return self._grant_rows(analysis_id, "principal_id = ?", (principal_id,))

    def get_summary(self) -> Dict[str, Any]:
        """Summary statistics across stored runs"""
        try:
            results = self.db.execute_query("""
                SELECT
                    COUNT(*) as total_runs,
                    COUNT(DISTINCT tenant_id) as unique_tenants,
                    COALESCE(SUM(grant_count), 0) as total_grants,
                    COALESCE(SUM(redundant_count), 0) as total_redundant,
                    MIN(created_at) as oldest_run,
                    MAX(created_at) as newest_run
                FROM analysis_runs
            """)
            if results:
                columns = ['total_runs', 'unique_tenants', 'total_grants', 'total_redundant',
                           'oldest_run', 'newest_run']
                return dict(zip(columns, results[0]))
            return {}

        except Exception as e:
            logger.error(f"Failed to get analysis summary: {e}")
            return {}

    def delete_analysis(self, analysis_id: str) -> bool:
        """Delete an analysis run and its grants"""
        try:
            self.db.execute_transaction([
                ("DELETE FROM role_grants WHERE analysis_id = ?", (analysis_id,)),
                ("DELETE FROM analysis_runs WHERE analysis_id = ?", (analysis_id,)),
            ])
            logger.info(f"Deleted analysis {analysis_id}")
            return True

        except Exception as e:
            logger.error(f"Failed to delete analysis {analysis_id}: {e}")
            return False

    def delete_old_analyses(self, days_old: Optional[int] = None) -> int:
        """Delete analysis runs older than `days_old` days, by default the configured retention"""
        if days_old is None:
            days_old = self.db.config.data_retention_days
        try:
            cutoff_date = datetime.utcnow() - timedelta(days=days_old)
            old_ids = [row[0] for row in self.db.execute_query(
                "SELECT analysis_id FROM analysis_runs WHERE created_at < ?", (cutoff_date,))]
            if not old_ids:
                return 0

            self.db.execute_transaction([
                ("DELETE FROM role_grants WHERE analysis_id IN "
                 "(SELECT analysis_id FROM analysis_runs WHERE created_at < ?)", (cutoff_date,)),
                ("DELETE FROM analysis_runs WHERE created_at < ?", (cutoff_date,)),
            ])
            logger.info(f"Deleted {len(old_ids)} old analyses")
            return len(old_ids)

        except Exception as e:
            logger.error(f"Failed to delete old analyses: {e}")
            return 0


# Global repository instance
_analysis_repo: Optional[AnalysisRepository] = None


def get_analysis_repository(db_manager: Optional[DatabaseManager] = None) -> AnalysisRepository:
    """Get or create the global analysis repository instance"""
    global _analysis_repo
    if _analysis_repo is None:
        _analysis_repo = AnalysisRepository(db_manager)
    return _analysis_repo
