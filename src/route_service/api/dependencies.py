"""Service wiring shared by the API routers."""

from __future__ import annotations

import logging
from functools import lru_cache

from ..config import settings
from ..db.supabase import get_supabase_client
from ..persistence.route_store import InMemoryRouteStore, RouteStore, SupabaseRouteStore
from ..services.maps.cache import GeoCache
from ..services.maps.client import MapOracleClient
from ..services.maps.oracle import build_oracle
from ..services.routing.service import RouteLifecycleManager

logger = logging.getLogger(__name__)


def _build_store() -> RouteStore:
    if settings.route_store_backend == "supabase":
        client = get_supabase_client()
        if client is not None:
            return SupabaseRouteStore(client, settings.routes_table)
        logger.warning("Supabase route store requested but not configured, using in-memory store")
    return InMemoryRouteStore()


@lru_cache()
def get_map_client() -> MapOracleClient:
    return MapOracleClient(build_oracle(settings), GeoCache(), settings)


@lru_cache()
def get_route_manager() -> RouteLifecycleManager:
    maps = get_map_client()
    return RouteLifecycleManager(store=_build_store(), cache=maps.cache, maps=maps, config=settings)
