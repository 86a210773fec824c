"""
Database connection management.

Provides the Supabase client singleton used by the Supabase import store.
"""

from supabase import create_client, Client
from functools import lru_cache
import structlog

from config.settings import settings
from exceptions import DatabaseError

logger = structlog.get_logger(__name__)


@lru_cache()
def get_supabase_client() -> Client:
    """
    Get cached Supabase client instance.

    Uses lru_cache to ensure only one client is created.
    Call get_supabase_client.cache_clear() to reconnect.

    Returns:
        Client: Supabase client

    Raises:
        DatabaseError: If credentials are missing or the connection fails
    """
    if not settings.supabase_configured:
        raise DatabaseError("connect", "SUPABASE_URL and SUPABASE_KEY must be set for the supabase backend")

    try:
        logger.info(
            "connecting_to_supabase",
            url=settings.supabase_url[:30] + "..."  # Log partial URL only
        )

        # Service key bypasses row-level policies; tenant scoping is done in queries
        client = create_client(
            settings.supabase_url,
            settings.supabase_service_key or settings.supabase_key
        )

        logger.info("supabase_connected", status="success")
        return client

    except Exception as e:
        logger.error(
            "supabase_connection_failed",
            error=str(e),
            error_type=type(e).__name__
        )
        raise DatabaseError("connect", str(e)) from e


# ===================
# HELPER FUNCTIONS
# ===================

def check_connection() -> dict:
    """
    Check database connection health.

    Returns:
        dict: Connection status with details
    """
    if settings.storage_backend != "supabase":
        return {"status": "healthy", "backend": settings.storage_backend}

    try:
        client = get_supabase_client()
        batches = client.table("import_batches").select("id", count="exact").limit(1).execute()

        return {
            "status": "healthy",
            "backend": "supabase",
            "import_batches_count": batches.count
        }

    except Exception as e:
        return {
            "status": "unhealthy",
            "backend": "supabase",
            "error": str(e)
        }
