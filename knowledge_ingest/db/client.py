"""Process-wide Supabase client for the content tables."""

from functools import lru_cache

from supabase import Client, create_client

from knowledge_ingest.config import get_settings


@lru_cache()
def get_supabase_client() -> Client:
    """Service-role client, created on first use and shared by every store."""
    settings = get_settings()
    return create_client(settings.supabase_url, settings.supabase_service_key)
