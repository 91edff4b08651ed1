"""FastAPI dependency injection for database sessions, auth, and audit context.

Provides get_async_session, get_current_user, role-based access control
factories, and the per-request AuditContext.
"""

from collections.abc import AsyncGenerator, Callable
from typing import Annotated, Any

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinic_security.api.middleware import get_client_ip
from clinic_security.core.config import Settings, get_settings
from clinic_security.core.database import get_session_factory
from clinic_security.core.security import decode_token
from clinic_security.lib.geolocation import BaseGeolocator, IpApiGeolocator
from clinic_security.models.user import User
from clinic_security.services.audit_service import AuditContext

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/v1/auth/login")


async def get_async_session() -> AsyncGenerator[AsyncSession]:
    """Yield an async database session with per-request lifecycle."""
    factory = get_session_factory()
    async with factory() as session:
        yield session


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    """Return the application session factory for work that spans several sessions."""
    return get_session_factory()


async def get_current_user(
    token: Annotated[str, Depends(oauth2_scheme)],
    session: Annotated[AsyncSession, Depends(get_async_session)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> User:
    """Decode JWT and return the authenticated user.

    Args:
        token: The JWT bearer token.
        session: The database session.
        settings: Application settings.

    Returns:
        The authenticated User model instance.

    Raises:
        HTTPException: If the token is invalid or user not found.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = decode_token(token, settings.jwt_secret_key, settings.jwt_algorithm, expected_type="access")
        user_id = int(payload["sub"])
    except (jwt.PyJWTError, ValueError) as exc:
        raise credentials_exception from exc

    user = await session.get(User, user_id)
    if user is None or not user.is_active:
        raise credentials_exception
    return user


def require_role(*roles: str) -> Callable[..., Any]:
    """Factory that creates a dependency requiring specific user roles.

    Args:
        *roles: Allowed role names (e.g., "admin", "security_officer").

    Returns:
        A FastAPI dependency function that validates the user's role.
    """

    async def role_checker(
        current_user: Annotated[User, Depends(get_current_user)],
    ) -> User:
        if current_user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{current_user.role}' does not have access to this resource",
            )
        return current_user

    return role_checker


def build_audit_context(request: Request, settings: Settings, user: User | None = None) -> AuditContext:
    """Capture actor and origin of a request for audit records."""
    route = request.scope.get("route")
    return AuditContext(
        user_id=user.id if user is not None else None,
        user_email=user.email if user is not None else None,
        user_role=user.role if user is not None else None,
        ip_address=get_client_ip(request, settings.trusted_proxy_header_list),
        user_agent=request.headers.get("user-agent"),
        request_method=request.method,
        request_path=request.url.path,
        endpoint=getattr(route, "path", None) or request.url.path,
    )


def get_geolocator(settings: Annotated[Settings, Depends(get_settings)]) -> BaseGeolocator | None:
    """Return the configured IP geolocation provider, or None when disabled."""
    if not settings.geolocation_enabled:
        return None
    return IpApiGeolocator(
        base_url=settings.geolocation_api_url,
        timeout=settings.geolocation_timeout,
        batch_size=settings.geolocation_batch_size,
        batch_delay=settings.geolocation_batch_delay,
    )
