"""Supabase client used by the route store."""

from __future__ import annotations

import logging
from functools import lru_cache

from supabase import Client, create_client

from ..config import settings

logger = logging.getLogger(__name__)


@lru_cache()
def get_supabase_client() -> Client | None:
    """Cached client, or None when ROUTE_SERVICE_SUPABASE_URL / _KEY are unset.

    Creating the client does not open a connection; failures surface on the
    first query.
    """
    if not settings.supabase_url or not settings.supabase_key:
        logger.warning("Supabase credentials not configured (missing URL or key)")
        return None

    try:
        return create_client(settings.supabase_url, settings.supabase_key)
    except Exception as exc:
        logger.error(f"Failed to create Supabase client for {settings.supabase_url}: {exc}")
        return None


def check_routes_table(client: Client, table: str | None = None) -> dict:
    """Check the routes table with a single-row select."""
    table = table or settings.routes_table
    try:
        client.table(table).select("id").limit(1).execute()
        return {"connected": True, "table": table}
    except Exception as exc:
        logger.warning(f"Supabase routes table '{table}' is not reachable: {exc}")
        return {"connected": False, "table": table, "error": str(exc)}
