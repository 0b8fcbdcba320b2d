"""
Security utilities for rate limiting and resource management.
"""
from slowapi import Limiter
from slowapi.util import get_remote_address
import logging
from typing import Optional
from fastapi import Request

from voterpulse.config import config
from voterpulse.services.import_pipeline.runner import reserve_import_slot, reserved_import_slots

logger = logging.getLogger(__name__)

# Uploads and list population: most restrictive
BULK_RATE_LIMIT = config.RATE_LIMIT_BULK

# In-memory storage; attached to app.state in main
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[config.RATE_LIMIT_DEFAULT],
    enabled=config.RATE_LIMIT_ENABLED
)


def reserve_import_capacity() -> bool:
    """
    Reserve a slot for another import.

    Returns:
        True if a slot was reserved (fewer than MAX_CONCURRENT_IMPORTS held)
    """
    if not reserve_import_slot(config.MAX_CONCURRENT_IMPORTS):
        current = reserved_import_slots()
        logger.warning(
            f"Resource limit exceeded: {current} concurrent imports (max: {config.MAX_CONCURRENT_IMPORTS})"
        )
        return False
    return True


def log_security_event(event_type: str, details: dict, request: Optional[Request] = None):
    """
    Log security-related events.

    Args:
        event_type: Type of event (rate_limit, resource_limit, access_denied, ...)
        details: Event details
        request: Optional request object for additional context
    """
    log_data = {
        "event_type": event_type,
        **details
    }
    if request:
        log_data.update({
            "client_ip": get_remote_address(request),
            "path": request.url.path,
            "method": request.method
        })
    logger.warning(f"Security event: {log_data}")
