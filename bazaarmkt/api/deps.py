from typing import Annotated, Optional
import hmac
import logging

from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from bazaarmkt.config import settings
from bazaarmkt.database import get_db
from bazaarmkt.services.cache_service import CacheBackend


logger = logging.getLogger(__name__)

# HTTP Bearer security scheme; a missing header is handled by _check_secret
security = HTTPBearer(auto_error=False)


def get_cache(request: Request) -> CacheBackend:
    """Cache created by the application lifespan."""
    return request.app.state.cache


def _check_secret(
    expected: Optional[str],
    credentials: Optional[HTTPAuthorizationCredentials],
    name: str,
) -> None:
    """
    Constant-time bearer check against a configured secret.

    Without a configured secret, calls are only allowed outside production.
    """
    if not expected:
        if settings.is_production:
            logger.error(f"{name} is not configured; rejecting request in production")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Unauthorized"
            )
        return

    if credentials is None or not hmac.compare_digest(
        credentials.credentials.encode(), expected.encode()
    ):
        logger.warning(f"Rejected request with invalid {name}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def verify_cron_secret(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> None:
    """Guard for machine-triggered batch endpoints."""
    _check_secret(settings.CRON_SECRET, credentials, "CRON_SECRET")


async def require_admin_token(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> None:
    """Guard for admin tooling endpoints."""
    _check_secret(settings.ADMIN_API_TOKEN, credentials, "ADMIN_API_TOKEN")


# Type aliases for cleaner dependency injection
DB = Annotated[AsyncSession, Depends(get_db)]
Cache = Annotated[CacheBackend, Depends(get_cache)]
