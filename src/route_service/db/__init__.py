"""Database clients and utilities."""

from .supabase import check_routes_table, get_supabase_client

__all__ = ["check_routes_table", "get_supabase_client"]
