"""Authentication API endpoints.

GET /health, GET /info, POST /auth/login, GET /auth/me.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_security import __version__
from clinic_security.core.config import Settings, get_settings
from clinic_security.core.dependencies import build_audit_context, get_async_session, get_current_user
from clinic_security.models.user import User
from clinic_security.schemas.auth import TokenResponse, UserResponse
from clinic_security.services import auth_service

router = APIRouter(tags=["auth"])


@router.get("/health", status_code=200)
async def health_check() -> dict:
    """Health check endpoint (no authentication required)."""
    return {"status": "healthy"}


@router.get("/info", status_code=200)
async def info(
    settings: Annotated[Settings, Depends(get_settings)],
) -> dict:
    """Return application version and environment."""
    return {
        "version": __version__,
        "environment": settings.environment,
    }


@router.post("/auth/login", response_model=TokenResponse)
async def login(
    request: Request,
    form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
    session: Annotated[AsyncSession, Depends(get_async_session)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> TokenResponse:
    """Authenticate by email and password and return JWT tokens.

    Every attempt is audited; successful logins feed anomaly detection.
    """
    ctx = build_audit_context(request, settings)
    tokens = await auth_service.login(
        session,
        ctx,
        email=form_data.username,
        password=form_data.password,
        settings=settings,
    )
    if tokens is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return tokens


@router.get("/auth/me", response_model=UserResponse)
async def get_me(
    current_user: Annotated[User, Depends(get_current_user)],
) -> UserResponse:
    """Get current authenticated user info."""
    return UserResponse.model_validate(current_user)
