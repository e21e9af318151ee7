"""Database utilities for Supabase integration."""

from typing import Annotated

from fastapi import Depends
from postgrest.exceptions import APIError

from supabase import Client, create_client

from .config import Settings, get_settings

_supabase_client: Client | None = None


def get_supabase_client(settings: Settings | None = None) -> Client:
    """Get cached Supabase client."""
    global _supabase_client
    if _supabase_client is None:
        if settings is None:
            settings = get_settings()
        # Prefer new secret key, fall back to legacy service_role_key
        api_key = settings.supabase_secret_key or settings.supabase_service_role_key
        if not api_key:
            raise ValueError("Either SUPABASE_SECRET_KEY or SUPABASE_SERVICE_ROLE_KEY must be set")
        _supabase_client = create_client(settings.supabase_url, api_key)
    return _supabase_client


def get_db(settings: Annotated[Settings, Depends(get_settings)]) -> Client:
    """FastAPI dependency for Supabase client."""
    return get_supabase_client(settings)


# Type alias for dependency injection
Database = Annotated[Client, Depends(get_db)]


# =============================================================================
# Table Names
# =============================================================================

JOBS_TABLE = "jobs"
APPLICATIONS_TABLE = "job_applications"
BOOKINGS_TABLE = "bookings"
WALLETS_TABLE = "wallets"
WALLET_TRANSACTIONS_TABLE = "wallet_transactions"
AUTO_RELEASE_RULES_TABLE = "auto_release_rules"
AUTO_RELEASE_LOGS_TABLE = "auto_release_logs"
TRANSITIONS_TABLE = "state_transitions"
WORKER_PROFILES_TABLE = "worker_profiles"

# Postgres error code for unique_violation
UNIQUE_VIOLATION = "23505"


def is_unique_violation(error: APIError) -> bool:
    """True if a PostgREST error is a unique-constraint violation."""
    return getattr(error, "code", None) == UNIQUE_VIOLATION
