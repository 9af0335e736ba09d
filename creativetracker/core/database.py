"""
Supabase client for the creative intelligence store.

Only entry points (CLI, scheduler) call get_supabase_client(). Analyzers and
the pipeline receive the client explicitly.
"""

import logging
from typing import Optional
from urllib.parse import urlparse

from supabase import Client, create_client

from .config import Config


logger = logging.getLogger(__name__)

_supabase_client: Optional[Client] = None


def get_supabase_client() -> Client:
    """
    Shared client built from SUPABASE_URL and SUPABASE_SERVICE_KEY on first use.

    Raises:
        ValueError: If either setting is missing.
    """
    global _supabase_client

    if _supabase_client is None:
        Config.validate()
        _supabase_client = create_client(Config.SUPABASE_URL, Config.SUPABASE_SERVICE_KEY)
        logger.info(f"Connected to analytics store at {urlparse(Config.SUPABASE_URL).netloc}")

    return _supabase_client


def reset_supabase_client() -> None:
    """Drop the shared client; the next call reconnects with the current settings."""
    global _supabase_client
    _supabase_client = None
