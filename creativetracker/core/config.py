"""
Configuration management for CreativeTracker
"""

import os
import yaml
from pathlib import Path
from typing import Optional, Union
from dotenv import load_dotenv
from pydantic import ValidationError

from ..services.creative_intelligence.models import EngineConfig

# Load environment variables
load_dotenv()


class Config:
    """Application configuration"""

    # Supabase
    SUPABASE_URL: str = os.getenv('SUPABASE_URL', '')
    SUPABASE_SERVICE_KEY: str = os.getenv('SUPABASE_SERVICE_KEY', '')

    # Analytics engine thresholds (YAML)
    ENGINE_CONFIG_PATH: str = os.getenv('ENGINE_CONFIG_PATH', 'config/engine.yml')

    # Logging
    LOG_LEVEL: str = os.getenv('LOG_LEVEL', 'INFO')

    @classmethod
    def validate(cls) -> bool:
        """Validate required configuration"""
        required = {
            'SUPABASE_URL': cls.SUPABASE_URL,
            'SUPABASE_SERVICE_KEY': cls.SUPABASE_SERVICE_KEY,
        }

        missing = [k for k, v in required.items() if not v]

        if missing:
            raise ValueError(f"Missing required configuration: {', '.join(missing)}")

        return True

    @classmethod
    def get(cls, key: str, default: Optional[str] = None) -> Optional[str]:
        """Get configuration value"""
        return getattr(cls, key, default)


def load_engine_config(path: Optional[Union[str, Path]] = None) -> EngineConfig:
    """
    Load analyzer thresholds for the creative intelligence engine.

    Loads from: ENGINE_CONFIG_PATH (default config/engine.yml). Sections are
    named after the analyzers (prevalence, lifecycle, velocity, convergence,
    gap); anything not set falls back to the EngineConfig defaults.

    Args:
        path: Optional override for the YAML file location

    Returns:
        EngineConfig instance (defaults when the file does not exist)

    Raises:
        ValueError: If the file is not valid YAML or fails validation
    """
    config_path = Path(path or Config.ENGINE_CONFIG_PATH)

    if not config_path.exists():
        return EngineConfig()

    with open(config_path, 'r') as f:
        try:
            raw_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(raw_config, dict):
        raise ValueError(f"Engine configuration in {config_path} must be a mapping")

    try:
        return EngineConfig(**raw_config)
    except ValidationError as e:
        raise ValueError(f"Invalid engine configuration in {config_path}: {e}") from e
