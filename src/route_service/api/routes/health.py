"""Health endpoints."""

from __future__ import annotations

from fastapi import APIRouter, status

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
def health_root() -> dict:
    """Simple health check endpoint that doesn't require any dependencies."""
    return {"status": "ok"}


def _get_map_client():
    """Lazy import to avoid startup failures."""
    from ..dependencies import get_map_client
    return get_map_client()


@router.get("/health/maps", status_code=status.HTTP_200_OK)
def health_maps() -> dict:
    """Check the mapping oracle and report cache statistics."""
    try:
        client = _get_map_client()
        return {
            "service": "maps",
            "provider": type(client.oracle).__name__,
            "healthy": client.check_health(),
            "cache": client.cache.stats(),
        }
    except Exception as e:
        return {"service": "maps", "healthy": False, "error": str(e)}


@router.get("/health/database", status_code=status.HTTP_200_OK)
def check_database() -> dict:
    """Check which route store backs the service and whether Supabase is reachable."""
    from ...config import settings
    from ...db.supabase import check_routes_table, get_supabase_client

    if settings.route_store_backend != "supabase":
        return {"configured": False, "backend": settings.route_store_backend}

    supabase = get_supabase_client()
    if not supabase:
        return {
            "configured": False,
            "backend": "supabase",
            "message": "Supabase not configured. Set ROUTE_SERVICE_SUPABASE_URL and ROUTE_SERVICE_SUPABASE_KEY environment variables.",
        }

    return {"configured": True, "backend": "supabase", **check_routes_table(supabase)}
