#!/usr/bin/env python3
"""
Database module for Azure RBAC Auditor
Provides DuckDB-based storage for analysis runs and their deduplicated grants
"""

import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import duckdb

from config import DatabaseConfig, get_config

logger = logging.getLogger(__name__)

TABLES = ['analysis_runs', 'role_grants']


class DatabaseManager:
    """
    Manages DuckDB database connections and operations for Azure RBAC Auditor

    Features:
    - Thread-safe schema initialization
    - JSON column holding the full analysis payload
    - Flat grant table for SQL filtering
    - Transaction management
    """

    def __init__(self, config: Optional[DatabaseConfig] = None):
        """Initialize database manager"""
        self.config = config or DatabaseConfig()
        self._connection_lock = threading.Lock()
        self._initialized = False

        db_path = Path(self.config.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)

        self._initialize_database()

    def _initialize_database(self):
        """Initialize database schema if not exists"""
        with self._connection_lock:
            if self._initialized:
                return

            try:
                with self.get_connection() as conn:
                    self._create_tables(conn)
                    self._create_indexes(conn)
                    self._initialized = True
                    logger.info("Database initialized successfully")

            except Exception as e:
                logger.error(f"Failed to initialize database: {e}")
                raise

    def _create_tables(self, conn: duckdb.DuckDBPyConnection):
        """Create database tables"""

        # One row per audit run
        conn.execute("""
            CREATE TABLE IF NOT EXISTS analysis_runs (
                analysis_id VARCHAR NOT NULL,
                tenant_id VARCHAR,
                tenant_name VARCHAR,
                subscription_count INTEGER DEFAULT 0,
                grant_count INTEGER DEFAULT 0,
                principal_count INTEGER DEFAULT 0,
                redundant_count INTEGER DEFAULT 0,
                analysis_data JSON NOT NULL,
                analyzed_at TIMESTAMP,
                created_at TIMESTAMP DEFAULT NOW()
            )
        """)

        # One row per deduplicated grant of a run
        conn.execute("""
            CREATE TABLE IF NOT EXISTS role_grants (
                analysis_id VARCHAR NOT NULL,
                principal_id VARCHAR NOT NULL,
                principal_display_name VARCHAR,
                principal_type VARCHAR,
                role_name VARCHAR,
                role_definition_id VARCHAR NOT NULL,
                scope VARCHAR NOT NULL,
                scope_type VARCHAR,
                access_tier VARCHAR,
                is_redundant BOOLEAN DEFAULT FALSE,
                redundant_reason VARCHAR
            )
        """)

        logger.info("Database tables created successfully")

    def _create_indexes(self, conn: duckdb.DuckDBPyConnection):
        """Create database indexes for performance"""

        indexes = [
            "CREATE INDEX IF NOT EXISTS idx_analysis_runs_analysis_id ON analysis_runs(analysis_id)",
            "CREATE INDEX IF NOT EXISTS idx_analysis_runs_tenant_id ON analysis_runs(tenant_id)",
            "CREATE INDEX IF NOT EXISTS idx_analysis_runs_created_at ON analysis_runs(created_at)",
            "CREATE INDEX IF NOT EXISTS idx_role_grants_analysis_id ON role_grants(analysis_id)",
            "CREATE INDEX IF NOT EXISTS idx_role_grants_principal_id ON role_grants(principal_id)",
        ]

        for index_sql in indexes:
            try:
                conn.execute(index_sql)
            except Exception as e:
                logger.warning(f"Failed to create index: {e}")

    @contextmanager
    def get_connection(self):
        """Get a database connection with automatic cleanup"""
        conn = None
        try:
            conn = duckdb.connect(
                self.config.database_path,
                read_only=False,
                config={'threads': self.config.threads}
            )
            yield conn
        finally:
            if conn:
                conn.close()

    def execute_query(self, query: str, parameters: Optional[Tuple] = None) -> List[Tuple]:
        """Execute a SELECT query and return results"""
        with self.get_connection() as conn:
            if parameters:
                return conn.execute(query, parameters).fetchall()
            else:
                return conn.execute(query).fetchall()

    def execute_transaction(self, queries: List[Tuple[str, Optional[Any]]]) -> bool:
        """
        Execute multiple statements in a transaction.

        A statement whose parameters are a list of tuples is run with executemany.
        """
        with self.get_connection() as conn:
            try:
                conn.begin()
                for query, parameters in queries:
                    if isinstance(parameters, list):
                        if parameters:
                            conn.executemany(query, parameters)
                    elif parameters:
                        conn.execute(query, parameters)
                    else:
                        conn.execute(query)
                conn.commit()
                return True
            except Exception as e:
                conn.rollback()
                logger.error(f"Transaction failed: {e}")
                raise

    def get_database_stats(self) -> Dict[str, Any]:
        """Get database statistics"""
        stats = {}

        with self.get_connection() as conn:
            for table in TABLES:
                try:
                    stats[f"{table}_count"] = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
                except Exception as e:
                    logger.warning(f"Failed to get count for {table}: {e}")
                    stats[f"{table}_count"] = 0

        db_path = Path(self.config.database_path)
        stats['database_size_bytes'] = db_path.stat().st_size if db_path.exists() else 0
        stats['database_size_mb'] = round(stats['database_size_bytes'] / (1024 * 1024), 2)
        return stats


# Global database manager instance
_db_manager: Optional[DatabaseManager] = None


def get_database_manager(config: Optional[DatabaseConfig] = None) -> DatabaseManager:
    """Get or create the global database manager instance"""
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager(config or get_config().database)
    return _db_manager
