"""Authentication service.

Handles user authentication, login history, token generation, and the
security side effects of every login attempt (audit record and anomaly
detection).
"""

from dataclasses import replace
from datetime import UTC, datetime

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_security.core.config import Settings
from clinic_security.core.exceptions import ConflictError, UserNotFoundError
from clinic_security.core.security import (
    create_access_token,
    create_refresh_token,
    create_searchable_hash,
    hash_password,
    verify_password,
)
from clinic_security.models.login_history import UserLoginHistory
from clinic_security.models.user import User
from clinic_security.schemas.auth import TokenResponse
from clinic_security.services.anomaly_service import detect_anomalies
from clinic_security.services.audit_service import AuditContext, log_auth_event, log_failed_access
from clinic_security.services.identity_service import UserByEmail, resolve_user_id

INVALID_CREDENTIALS = "Invalid email or password"
ACCOUNT_DISABLED = "Account is disabled"


async def authenticate_user(session: AsyncSession, email: str, password: str, *, settings: Settings) -> User | None:
    """Authenticate a user by email and password.

    Args:
        session: The database session.
        email: Email address, matched in plaintext or through its searchable hash.
        password: The plaintext password.
        settings: Application settings.

    Returns:
        The User if the credentials match, None otherwise. Inactive users are returned;
        the caller decides how to treat them.
    """
    try:
        user_id = await resolve_user_id(session, UserByEmail(email), search_hash_key=settings.search_hash_key)
    except UserNotFoundError:
        return None
    user = await session.get(User, user_id)
    if user is None or not verify_password(password, user.hashed_password):
        return None
    return user


async def record_login(
    session: AsyncSession,
    user: User,
    *,
    ip_address: str | None,
    user_agent: str | None,
) -> UserLoginHistory:
    """Store a login history row and stamp the user's last login time."""
    now = datetime.now(UTC)
    entry = UserLoginHistory(
        user_id=user.id,
        ip_address=ip_address,
        user_agent=user_agent,
        login_timestamp=now,
    )
    session.add(entry)
    user.last_login_at = now
    await session.commit()
    await session.refresh(entry)
    return entry


def generate_tokens(user: User, settings: Settings) -> TokenResponse:
    """Generate access and refresh tokens for a user.

    Args:
        user: The authenticated user.
        settings: Application settings.

    Returns:
        Token response with access and refresh tokens.
    """
    access_token = create_access_token(
        subject=str(user.id),
        role=user.role,
        secret_key=settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
        expires_minutes=settings.jwt_access_token_expire_minutes,
    )
    refresh_token = create_refresh_token(
        subject=str(user.id),
        secret_key=settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
        expires_days=settings.jwt_refresh_token_expire_days,
    )
    return TokenResponse(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_in=settings.jwt_access_token_expire_minutes * 60,
    )


async def login(
    session: AsyncSession,
    ctx: AuditContext,
    *,
    email: str,
    password: str,
    settings: Settings,
) -> TokenResponse | None:
    """Run a full login attempt.

    Every attempt is audited. A successful login is also written to the
    login history and checked against the user's behavioral baselines.

    Returns:
        Tokens on success, None when the credentials are rejected.
    """
    user = await authenticate_user(session, email, password, settings=settings)
    if user is None:
        await log_auth_event(session, ctx, "login", "failure", error_message=INVALID_CREDENTIALS, body={"email": email})
        return None
    if not user.is_active:
        await log_failed_access(session, ctx, ACCOUNT_DISABLED, email=email)
        return None

    entry = await record_login(session, user, ip_address=ctx.ip_address, user_agent=ctx.user_agent)
    user_ctx = replace(ctx, user_id=user.id, user_email=user.email, user_role=user.role)
    await log_auth_event(session, user_ctx, "login", "success", body={"email": email})

    anomalies = await detect_anomalies(
        session,
        user.id,
        settings=settings,
        ip_address=ctx.ip_address,
        timestamp=entry.login_timestamp,
        event_type="auth.login",
    )
    if anomalies:
        logger.warning(f"Login for user {user.id} raised {len(anomalies)} anomaly(ies)")

    return generate_tokens(user, settings)


async def create_user(
    session: AsyncSession,
    *,
    email: str,
    password: str,
    role: str,
    settings: Settings,
    first_name: str | None = None,
    last_name: str | None = None,
) -> User:
    """Create a new user with a searchable email hash.

    Raises:
        ConflictError: If a user with the email already exists.
    """
    try:
        await resolve_user_id(session, UserByEmail(email), search_hash_key=settings.search_hash_key)
    except UserNotFoundError:
        pass
    else:
        msg = "A user with this email already exists"
        raise ConflictError(msg)

    user = User(
        email=email.strip(),
        email_hash=create_searchable_hash(email, settings.search_hash_key),
        first_name=first_name,
        last_name=last_name,
        hashed_password=hash_password(password),
        role=role,
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user
