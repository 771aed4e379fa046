"""Supabase client construction.

Stores and pipeline components take a ``Client`` argument; this module only
builds one. Routes receive it through ``Depends(get_supabase)``, so tests can
swap it with ``app.dependency_overrides``.
"""

from functools import lru_cache

from supabase import Client, create_client

from app.core.config import get_settings


def create_supabase() -> Client:
    """
    Build a new Supabase client from settings.

    Raises:
        RuntimeError: If client initialization fails
    """
    try:
        settings = get_settings()
        return create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)
    except Exception as e:
        raise RuntimeError(f"Failed to initialize Supabase client: {e}") from e


@lru_cache(maxsize=1)
def get_supabase() -> Client:
    """Process-wide client used as the FastAPI dependency and by scripts."""
    return create_supabase()
