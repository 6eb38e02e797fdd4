"""Supabase connection for the task store."""

import os
from functools import lru_cache

from dotenv import load_dotenv
from supabase import Client, ClientOptions, create_client

load_dotenv()

DEFAULT_QUERY_TIMEOUT_SECONDS = 20


@lru_cache(maxsize=1)
def get_supabase_client() -> Client:
    """
    Get the shared Supabase client.

    The client is created once per process so every scheduled run reuses the
    same connection pool. Query timeout is bounded so a hung store call fails
    the run instead of blocking the scheduler thread forever.
    """
    url: str | None = os.getenv("SUPABASE_URL")
    key: str | None = os.getenv("SUPABASE_SERVICE_KEY")

    if not url or not key:
        raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")

    timeout = int(os.getenv("SUPABASE_TIMEOUT_SECONDS", DEFAULT_QUERY_TIMEOUT_SECONDS))
    return create_client(url, key, options=ClientOptions(postgrest_client_timeout=timeout))
