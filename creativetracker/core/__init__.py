"""
Core module - Database, configuration, and observability
"""

from .database import get_supabase_client
from .config import Config, load_engine_config

__all__ = ['get_supabase_client', 'Config', 'load_engine_config']
