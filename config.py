#!/usr/bin/env python3
"""
Configuration module for Azure RBAC Auditor
Provides centralized configuration management for collection, analysis and storage settings
"""

import json
import logging
import os
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class DatabaseConfig(BaseModel):
    """Database configuration settings"""
    database_path: str = Field(default="./data/rbac_auditor.db", description="Path to DuckDB database file")
    threads: int = Field(default=4, description="DuckDB worker threads per connection")
    data_retention_days: int = Field(default=30, description="Number of days to retain analysis runs")


class CollectorConfig(BaseModel):
    """Settings for the Azure API collection boundary"""
    max_concurrent_requests: int = Field(default=50, description="Maximum in-flight Azure API requests")
    max_retries: int = Field(default=5, description="Retry attempts for transient API failures")
    backoff_factor: int = Field(default=2, description="Exponential backoff multiplier")
    rate_limit_delay: float = Field(default=0.1, description="Minimum seconds between requests")
    request_timeout_seconds: int = Field(default=60, description="Total timeout for a single request")


class AnalysisConfig(BaseModel):
    """Settings for the scope hierarchy and redundancy engine"""
    dominator_selection: Literal["first", "broadest"] = Field(
        default="first",
        description="Which dominating grant explains a redundancy: first produced, or broadest scope")
    identity_directory_threshold: float = Field(
        default=0.5, description="Resolved-principal fraction below which directory access is flagged as missing")
    matrix_top_roles: int = Field(default=10, description="Number of roles in the role x scope-type matrix")
    mark_unresolved_as_orphaned: bool = Field(
        default=False, description="Treat principals the directory lookup cannot find as orphaned")


class ApplicationConfig(BaseModel):
    """Main application configuration"""
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: Optional[str] = Field(default=None, description="Optional log file path")
    output_dir: str = Field(default="./output", description="Directory for exported reports")
    host: str = Field(default="0.0.0.0", description="Host to bind the API to")
    port: int = Field(default=8000, description="Port to run the API on")

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    collector: CollectorConfig = Field(default_factory=CollectorConfig)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)


def load_config_from_env() -> ApplicationConfig:
    """Load configuration from environment variables"""

    db_config = DatabaseConfig(
        database_path=os.getenv("DB_PATH", "./data/rbac_auditor.db"),
        threads=int(os.getenv("DB_THREADS", "4")),
        data_retention_days=int(os.getenv("DB_DATA_RETENTION_DAYS", "30")),
    )

    collector_config = CollectorConfig(
        max_concurrent_requests=int(os.getenv("MAX_CONCURRENT_REQUESTS", "50")),
        max_retries=int(os.getenv("MAX_RETRIES", "5")),
        backoff_factor=int(os.getenv("BACKOFF_FACTOR", "2")),
        rate_limit_delay=float(os.getenv("RATE_LIMIT_DELAY", "0.1")),
        request_timeout_seconds=int(os.getenv("REQUEST_TIMEOUT_SECONDS", "60")),
    )

    analysis_config = AnalysisConfig(
        dominator_selection=os.getenv("DOMINATOR_SELECTION", "first"),
        identity_directory_threshold=float(os.getenv("IDENTITY_DIRECTORY_THRESHOLD", "0.5")),
        matrix_top_roles=int(os.getenv("MATRIX_TOP_ROLES", "10")),
        mark_unresolved_as_orphaned=os.getenv("MARK_UNRESOLVED_AS_ORPHANED", "false").lower() == "true",
    )

    return ApplicationConfig(
        debug=os.getenv("DEBUG", "false").lower() == "true",
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_file=os.getenv("LOG_FILE") or None,
        output_dir=os.getenv("OUTPUT_DIR", "./output"),
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        database=db_config,
        collector=collector_config,
        analysis=analysis_config,
    )


def load_config_from_file(config_path: str) -> Optional[ApplicationConfig]:
    """Load configuration from a JSON file"""
    try:
        config_file = Path(config_path)
        if not config_file.exists():
            return None

        with open(config_file, 'r') as f:
            config_data = json.load(f)

        return ApplicationConfig.model_validate(config_data)

    except Exception as e:
        logger.error(f"Error loading config from file: {e}")
        return None


def save_config_to_file(config: ApplicationConfig, config_path: str) -> bool:
    """Save configuration to a JSON file"""
    try:
        config_file = Path(config_path)
        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, 'w') as f:
            json.dump(config.model_dump(), f, indent=2)

        return True

    except Exception as e:
        logger.error(f"Error saving config to file: {e}")
        return False


def get_application_config() -> ApplicationConfig:
    """
    Get application configuration with the following precedence:
    1. Configuration file (if exists)
    2. Environment variables
    3. Default values
    """
    config_file = os.getenv("CONFIG_FILE", "./config/rbac_auditor.json")
    config = load_config_from_file(config_file)

    if config is None:
        config = load_config_from_env()

    return config


# Global configuration instance
_app_config: Optional[ApplicationConfig] = None


def get_config() -> ApplicationConfig:
    """Get or create the global configuration instance"""
    global _app_config
    if _app_config is None:
        _app_config = get_application_config()
    return _app_config


def reload_config() -> ApplicationConfig:
    """Reload configuration from sources"""
    global _app_config
    _app_config = get_application_config()
    return _app_config
