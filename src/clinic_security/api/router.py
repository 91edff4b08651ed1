"""Root API router with /api/v1 prefix and middleware registration."""

from fastapi import APIRouter, FastAPI

from clinic_security.api.middleware import RateLimitMiddleware, SecurityHeadersMiddleware, setup_cors
from clinic_security.core.config import Settings


def create_router(settings: Settings) -> APIRouter:
    """Create the root API router with all sub-routers included.

    Args:
        settings: Application settings.

    Returns:
        Configured API router.
    """
    from clinic_security.api.v1.audit import audit_router
    from clinic_security.api.v1.auth import router as auth_router
    from clinic_security.api.v1.security import security_router

    root_router = APIRouter(prefix=settings.api_v1_prefix)
    root_router.include_router(auth_router)
    root_router.include_router(security_router)
    root_router.include_router(audit_router)

    return root_router


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register all middleware on the FastAPI app.

    Args:
        app: The FastAPI application.
        settings: Application settings.
    """
    setup_cors(app, settings)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_minute=settings.rate_limit_per_minute,
        trusted_proxy_headers=settings.trusted_proxy_header_list,
        login_requests_per_minute=settings.login_rate_limit_per_minute,
        login_path=f"{settings.api_v1_prefix}/auth/login",
    )
