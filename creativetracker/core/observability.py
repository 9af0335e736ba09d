"""
Logfire observability configuration for CreativeTracker.

Provides tracing for:
- Pipeline runs (one span per run)
- Per-brand analysis (one span per brand inside a run)

Usage:
    # At process startup (CLI, scheduler)
    from creativetracker.core.observability import setup_logfire
    setup_logfire()

    # In services
    import logfire

    with logfire.span("lifecycle_pipeline", brands=len(brand_ids)):
        ...

Environment Variables:
    LOGFIRE_TOKEN: Your Logfire write token (required for production)
    LOGFIRE_ENVIRONMENT: Environment name (development, staging, production)
"""

import os
import logging
from typing import Optional

import logfire

logger = logging.getLogger(__name__)

_logfire_configured = False
_logfire_exporting = False


def setup_logfire(
    environment: Optional[str] = None,
    service_name: str = "creativetracker"
) -> bool:
    """
    Configure Logfire for observability.

    Without LOGFIRE_TOKEN, Logfire is still configured but with
    send_to_logfire=False, so spans stay local and nothing is exported.

    Args:
        environment: Environment name (or LOGFIRE_ENVIRONMENT env var)
        service_name: Service name for tracing

    Returns:
        True if Logfire export was configured, False if running local-only
    """
    global _logfire_configured, _logfire_exporting

    if _logfire_configured:
        logger.debug("Logfire already configured")
        return _logfire_exporting

    token = os.environ.get("LOGFIRE_TOKEN")
    env = environment or os.environ.get("LOGFIRE_ENVIRONMENT", "development")

    if not token:
        logger.info("LOGFIRE_TOKEN not set, spans will not be exported")
        logfire.configure(
            service_name=service_name,
            environment=env,
            send_to_logfire=False,
            console=False,
        )
        _logfire_configured = True
        return False

    try:
        logfire.configure(
            token=token,
            service_name=service_name,
            environment=env,
            send_to_logfire=True,
        )

        # Instrument Pydantic for validation tracing
        logfire.instrument_pydantic()

        _logfire_configured = True
        _logfire_exporting = True
        logger.info(f"Logfire configured: service={service_name}, environment={env}")
        return True

    except Exception as e:
        logger.error(f"Failed to configure Logfire: {e}")
        return False
