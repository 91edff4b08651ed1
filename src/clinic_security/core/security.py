"""Credential primitives: bcrypt passwords, signed JWTs and keyed lookup hashes."""

import hashlib
import hmac
import re
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from passlib.context import CryptContext

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# Characters dropped before hashing so formatting variants of the same
# email or phone number share one digest.
_SEARCH_NOISE = re.compile(r"[\s\-().]")
_HEX_KEY = re.compile(r"^[0-9a-fA-F]{64}$")


def hash_password(password: str) -> str:
    """Return a salted bcrypt hash of ``password``."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Check ``plain_password`` against a stored bcrypt hash."""
    return pwd_context.verify(plain_password, hashed_password)


def _hmac_key(key: str) -> bytes:
    return bytes.fromhex(key) if _HEX_KEY.match(key) else key.encode("utf-8")


def create_searchable_hash(value: str | None, key: str) -> str | None:
    """Derive a deterministic HMAC-SHA256 digest for equality lookups.

    The value is trimmed, lowercased and stripped of whitespace, dashes,
    parentheses and dots first, so ``" Jane.Doe@Example.com "`` and
    ``"janedoe@example.com"`` hash identically.

    Args:
        value: Plaintext such as an email address.
        key: A 64-character hex key (decoded to 32 bytes) or any other
            string (used as UTF-8).

    Returns:
        The hex digest, or None when nothing is left after normalization.
    """
    normalized = _SEARCH_NOISE.sub("", (value or "").strip().lower())
    if not normalized:
        return None
    return hmac.new(_hmac_key(key), normalized.encode("utf-8"), hashlib.sha256).hexdigest()


def _issue_token(
    subject: str,
    token_type: str,
    lifetime: timedelta,
    secret_key: str,
    algorithm: str,
    **claims: Any,
) -> str:
    issued_at = datetime.now(UTC)
    payload = {"sub": subject, "type": token_type, "iat": issued_at, "exp": issued_at + lifetime, **claims}
    return jwt.encode(payload, secret_key, algorithm=algorithm)


def create_access_token(
    subject: str,
    role: str,
    secret_key: str,
    algorithm: str = "HS256",
    expires_minutes: int = 30,
) -> str:
    """Issue a short-lived access token carrying the user's role.

    Args:
        subject: The user id as a string.
        role: Role claim checked by role-gated endpoints.
        secret_key: Signing key.
        algorithm: JWT signing algorithm.
        expires_minutes: Lifetime in minutes.
    """
    return _issue_token(subject, "access", timedelta(minutes=expires_minutes), secret_key, algorithm, role=role)


def create_refresh_token(
    subject: str,
    secret_key: str,
    algorithm: str = "HS256",
    expires_days: int = 7,
) -> str:
    """Issue a refresh token. It carries no role and is rejected by bearer auth."""
    return _issue_token(subject, "refresh", timedelta(days=expires_days), secret_key, algorithm)


def decode_token(
    token: str,
    secret_key: str,
    algorithm: str = "HS256",
    *,
    expected_type: str | None = None,
) -> dict[str, Any]:
    """Verify a token's signature and expiry and return its claims.

    Args:
        token: Encoded JWT.
        secret_key: Signing key.
        algorithm: The only algorithm accepted.
        expected_type: When given, the ``type`` claim must equal it.

    Raises:
        jwt.ExpiredSignatureError: The token has expired.
        jwt.InvalidTokenError: The token is malformed, badly signed, lacks
            ``sub`` or ``exp``, or has the wrong type.
    """
    payload = jwt.decode(token, secret_key, algorithms=[algorithm], options={"require": ["exp", "sub"]})
    if expected_type is not None and payload.get("type") != expected_type:
        msg = f"Expected a {expected_type} token"
        raise jwt.InvalidTokenError(msg)
    return payload
