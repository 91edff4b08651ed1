"""User identity resolution.

Maps an external user reference (numeric id or email address) to the
canonical integer user id. Emails may only be findable through their
searchable hash when the address itself is stored encrypted.
"""

from dataclasses import dataclass

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_security.core.exceptions import InvalidArgumentError, UserNotFoundError
from clinic_security.core.security import create_searchable_hash
from clinic_security.models.user import User


@dataclass(frozen=True)
class UserById:
    user_id: int


@dataclass(frozen=True)
class UserByEmail:
    email: str


UserRef = UserById | UserByEmail


def parse_user_ref(value: int | str) -> UserRef:
    """Convert a raw id-or-email into a UserRef.

    Strings containing ``@`` are emails; anything else must be an integer.

    Raises:
        InvalidArgumentError: If a non-email value is not an integer.
    """
    if isinstance(value, str) and "@" in value:
        return UserByEmail(value.strip())
    if isinstance(value, bool):
        msg = f"Invalid user id: {value!r}"
        raise InvalidArgumentError(msg)
    try:
        return UserById(int(value))
    except (TypeError, ValueError) as e:
        msg = f"Invalid user id: {value!r}"
        raise InvalidArgumentError(msg) from e


async def resolve_user_id(session: AsyncSession, ref: UserRef, *, search_hash_key: str) -> int:
    """Resolve a UserRef to an existing user's id.

    Args:
        session: The database session.
        ref: Reference to resolve.
        search_hash_key: HMAC key used for searchable email hashes.

    Returns:
        The canonical integer user id.

    Raises:
        UserNotFoundError: If no user matches.
    """
    if isinstance(ref, UserByEmail):
        conditions = [func.lower(User.email) == ref.email.lower()]
        email_hash = create_searchable_hash(ref.email, search_hash_key)
        if email_hash is not None:
            conditions.append(User.email_hash == email_hash)
        result = await session.execute(select(User.id).where(or_(*conditions)).order_by(User.id).limit(1))
        user_id = result.scalar_one_or_none()
        if user_id is None:
            msg = "User not found with the provided email"
            raise UserNotFoundError(msg)
        return user_id

    result = await session.execute(select(User.id).where(User.id == ref.user_id))
    user_id = result.scalar_one_or_none()
    if user_id is None:
        msg = f"User {ref.user_id} not found"
        raise UserNotFoundError(msg)
    return user_id
