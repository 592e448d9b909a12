"""
Core infrastructure package for the call analytics service.

Provides:
- Configuration management via pydantic-settings
- Async PostgreSQL database connectivity via asyncpg
- FastAPI dependency injection utilities

This module re-exports key components from submodules for convenient importing:

    from call_analytics.core import get_settings, get_db_pool, PipelineDep

Components Re-exported:
    Settings: Pydantic settings class with all configuration parameters
    get_settings: Function returning the cached Settings singleton
    init_db / init_schema / close_db / get_db_pool: Pool and schema lifecycle
    get_settings_dependency: FastAPI dependency returning Settings
    SettingsDep / StoreDep / PipelineDep: Annotated dependency aliases
"""

# =============================================================================
# Re-exports from call_analytics.core.config
# =============================================================================
from call_analytics.core.config import Settings, get_settings

# =============================================================================
# Re-exports from call_analytics.core.database
# =============================================================================
from call_analytics.core.database import init_db, init_schema, close_db, get_db_pool

# =============================================================================
# Re-exports from call_analytics.core.dependencies
# =============================================================================
from call_analytics.core.dependencies import (
    get_settings_dependency,
    get_aggregate_store,
    get_ingestion_pipeline,
    SettingsDep,
    StoreDep,
    PipelineDep,
)

__all__ = [
    # Configuration management (from config.py)
    'Settings',
    'get_settings',
    # Database pool lifecycle (from database.py)
    'init_db',
    'init_schema',
    'close_db',
    'get_db_pool',
    # FastAPI dependency injection (from dependencies.py)
    'get_settings_dependency',
    'get_aggregate_store',
    'get_ingestion_pipeline',
    'SettingsDep',
    'StoreDep',
    'PipelineDep',
]
