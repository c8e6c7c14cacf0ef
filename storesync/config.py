"""
Application Configuration
"""

from pydantic_settings import BaseSettings
from typing import List, Optional


DEFAULT_BRIDGE_COLLECTIONS = [
    "orders",
    "customers",
    "products",
    "materials",
    "expense_requests",
    "simple_expenses",
    "branches",
    "checklists",
    "stock_history",
    "notifications",
    "order_transfers",
    "material_requests",
    "user_roles",
    "albums",
    "audit_logs",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Relational store (Supabase Postgres)
    database_url: Optional[str] = None

    # Document store (Firebase)
    firebase_credentials_path: Optional[str] = None  # Falls back to application default credentials
    firebase_project_id: Optional[str] = None

    # Environment
    environment: str = "development"

    # Change-Mirror Bridge
    bridge_enabled: bool = True
    bridge_collections: List[str] = DEFAULT_BRIDGE_COLLECTIONS
    schema_drift_max_retries: int = 6  # One dropped column per retry

    # Batch Migrator
    backfill_chunk_size: int = 100
    backfill_interval_hours: int = 0  # 0 = periodic backfill disabled
    backfill_entity_types: List[str] = ["daily_stats"]  # Collections the bridge does not watch

    # Reconciliation
    reconcile_page_size: int = 1000
    ghost_delete_batch_size: int = 200
    shop_timezone: str = "Asia/Seoul"

    # Sentry Error Tracking
    sentry_dsn: Optional[str] = None
    sentry_environment: Optional[str] = None  # Defaults to environment setting

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
