"""Application configuration and settings management."""

from typing import Any, Literal, Optional

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="ROUTE_SERVICE_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Last-Mile Route Service"
    api_prefix: str = "/api"
    log_level: str = Field(default="INFO", description="Root logging level.")

    map_provider: Literal["google", "haversine"] = Field(
        default="haversine",
        description="Mapping oracle used for geocoding, directions and distance matrices.",
    )
    maps_base_url: str = Field(
        default="https://maps.googleapis.com/maps/api",
        description="Root URL of the Google-style maps web services.",
    )
    maps_api_key: Optional[str] = Field(default=None, description="API key for the maps web services.")
    maps_timeout_seconds: float = Field(default=10.0, gt=0.0)
    maps_max_retries: int = Field(default=2, ge=0)
    maps_backoff_seconds: float = Field(default=0.5, ge=0.0)
    maps_matrix_chunk_size: int = Field(
        default=10,
        ge=1,
        description="Max origins (and destinations) per distance-matrix request; larger matrices are chunked.",
    )
    maps_max_parallel_requests: int = Field(default=4, ge=1)
    haversine_average_speed_kmh: float = Field(
        default=40.0,
        gt=0.0,
        description="Average speed used by the offline haversine oracle to estimate durations.",
    )

    geocode_cache_ttl_seconds: int = Field(default=86400, ge=1)
    directions_cache_ttl_seconds: int = Field(default=3600, ge=1)
    distance_matrix_cache_ttl_seconds: int = Field(default=3600, ge=1)
    route_cache_ttl_seconds: int = Field(default=3600, ge=1)

    stop_service_minutes: float = Field(default=5.0, ge=0.0, description="Dwell time added at every stop.")
    fallback_travel_minutes: float = Field(
        default=10.0,
        ge=0.0,
        description="Travel time substituted for legs the distance matrix marks unreachable.",
    )
    base_order_service_minutes: float = Field(default=5.0, ge=0.0)
    per_package_service_minutes: float = Field(default=2.0, ge=0.0)

    depot_latitude: float = Field(default=37.7749, ge=-90.0, le=90.0)
    depot_longitude: float = Field(default=-122.4194, ge=-180.0, le=180.0)

    route_store_backend: Literal["memory", "supabase"] = "memory"
    routes_table: str = "routes"
    supabase_url: Optional[str] = Field(
        default=None,
        description="Supabase project URL (e.g., https://xxx.supabase.co).",
    )
    supabase_key: Optional[str] = Field(
        default=None,
        description="Supabase service role key for backend operations.",
    )

    frontend_allowed_origins: tuple[str, ...] = Field(
        default=(
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ),
        description="Permitted web origins for browser clients (CORS).",
    )

    @field_validator("frontend_allowed_origins", mode="before")
    @classmethod
    def _parse_str_tuple_from_env(cls, value: Any) -> tuple[str, ...]:
        """Parse string tuple from environment variable (comma-separated or JSON array)."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(str(item) for item in value)
        if isinstance(value, str):
            try:
                parsed = json.loads(value)
                if isinstance(parsed, list):
                    return tuple(str(item) for item in parsed)
            except (json.JSONDecodeError, TypeError):
                pass
            if "," in value:
                return tuple(item.strip() for item in value.split(",") if item.strip())
            if value.strip():
                return (value.strip(),)
        return tuple()


settings = Settings()
