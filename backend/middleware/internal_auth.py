"""
Internal Service Authentication

API key authentication for service-to-service calls such as cron jobs
hitting the reconciliation trigger.

Environment Variables:
    INTERNAL_API_KEY: Primary API key for internal services
    INTERNAL_API_KEYS: Comma-separated list of valid keys (for key rotation)

Usage:
    from middleware.internal_auth import require_internal_service

    @router.post("/run")
    async def run(service: InternalService = Depends(require_internal_service)):
        ...

Headers:
    X-Internal-Api-Key: <api_key>
    X-Service-Name: <service_name> (optional, for logging)
"""

import secrets
import logging
from typing import Optional, Set
from dataclasses import dataclass

from fastapi import Request, HTTPException, status, Depends
from fastapi.security import APIKeyHeader

from config import get_settings

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-Internal-Api-Key"
SERVICE_NAME_HEADER = "X-Service-Name"


@dataclass
class InternalService:
    """Represents an authenticated internal service"""
    name: str
    api_key_hash: str  # Last 8 chars of key for logging
    is_authenticated: bool = True


def _get_valid_api_keys() -> Set[str]:
    keys = set(get_settings().internal_api_keys)
    if not keys:
        logger.warning("No internal API keys configured - internal auth disabled")
    return keys


def validate_internal_key(api_key: str) -> bool:
    """
    Validate an internal API key.

    Returns:
        True if valid, False otherwise
    """
    if not api_key:
        return False

    valid_keys = _get_valid_api_keys()
    if not valid_keys:
        return False

    # Constant-time comparison
    for valid_key in valid_keys:
        if secrets.compare_digest(api_key, valid_key):
            return True

    return False


api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


async def require_internal_service(
    request: Request,
    api_key: Optional[str] = Depends(api_key_header)
) -> InternalService:
    """
    FastAPI dependency to authenticate internal service requests.

    Raises:
        HTTPException: 503 if no keys are configured, 401 if the key is
        missing, 403 if it is wrong
    """
    service_name = request.headers.get(SERVICE_NAME_HEADER, "unknown")

    if not _get_valid_api_keys():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Internal authentication not configured"
        )

    if not api_key:
        logger.warning(f"Missing API key from service: {service_name}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Internal-Api-Key header",
            headers={"WWW-Authenticate": "ApiKey"}
        )

    if not validate_internal_key(api_key):
        logger.warning(f"Invalid API key from service: {service_name}, key ending: ...{api_key[-4:]}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key"
        )

    return InternalService(
        name=service_name,
        api_key_hash=f"...{api_key[-8:]}"
    )
