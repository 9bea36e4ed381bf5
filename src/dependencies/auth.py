# src/dependencies/auth.py
from functools import lru_cache

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlmodel.ext.asyncio.session import AsyncSession

from src.dependencies.db import get_session_dep
from src.infrastructure.redis_cache import get_redis_client
from src.UAA.config import RATE_LIMIT_BACKEND, settings
from src.UAA.errors import AuthenticationError, InternalError
from src.UAA.rate_limiter import InMemoryRateLimiter, RateLimiter, RedisRateLimiter
from src.UAA.services import AuthService

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


@lru_cache(maxsize=1)
def get_rate_limiter() -> RateLimiter:
    """One limiter per process; redis-backed when several instances share the load."""
    if RATE_LIMIT_BACKEND == "redis":
        return RedisRateLimiter(
            get_redis_client(),
            max_attempts=settings.rate_limit_attempts,
            window_seconds=settings.rate_limit_window,
        )
    return InMemoryRateLimiter(max_attempts=settings.rate_limit_attempts, window_seconds=settings.rate_limit_window)


async def get_auth_service(
    session: AsyncSession = Depends(get_session_dep),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
) -> AuthService:
    return AuthService(session, rate_limiter, settings)


async def get_current_user(token: str = Depends(oauth2_scheme), svc: AuthService = Depends(get_auth_service)):
    try:
        return await svc.authenticate_bearer(token)
    except AuthenticationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.message,
            headers={"WWW-Authenticate": "Bearer"},
        )
    except InternalError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.message)
