"""Staff account provisioning commands."""

import asyncio

import typer

user_app = typer.Typer()

ROLES = ("admin", "staff")


def _normalize_role(value: str) -> str:
    role = value.strip().lower()
    if role not in ROLES:
        msg = f"role must be one of: {', '.join(ROLES)}"
        raise typer.BadParameter(msg)
    return role


@user_app.command("create")
def create_user(
    email: str = typer.Option(..., prompt=True, help="Login email address"),
    password: str = typer.Option(..., prompt=True, hide_input=True, confirmation_prompt=True, help="Password"),
    role: str = typer.Option("staff", prompt=True, callback=_normalize_role, help="admin or staff"),
    first_name: str = typer.Option("", "--first-name", help="First name"),
    last_name: str = typer.Option("", "--last-name", help="Last name"),
    if_not_exists: bool = typer.Option(False, "--if-not-exists", help="Succeed quietly when the email is taken"),
) -> None:
    """Provision a staff account.

    The email is stored alongside its searchable hash so logins and
    baseline lookups by email resolve to the new account.
    """
    asyncio.run(
        _create_user(email, password, role, first_name or None, last_name or None, if_not_exists=if_not_exists)
    )


async def _create_user(
    email: str,
    password: str,
    role: str,
    first_name: str | None,
    last_name: str | None,
    *,
    if_not_exists: bool = False,
) -> None:
    from clinic_security.core.config import get_settings
    from clinic_security.core.database import engine_lifespan, get_session_factory
    from clinic_security.core.exceptions import ConflictError
    from clinic_security.services.auth_service import create_user

    settings = get_settings()
    try:
        async with engine_lifespan(settings.database_url, schema=settings.database_schema):
            async with get_session_factory()() as session:
                user = await create_user(
                    session,
                    email=email,
                    password=password,
                    role=role,
                    settings=settings,
                    first_name=first_name,
                    last_name=last_name,
                )
    except ConflictError as e:
        if not if_not_exists:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(code=1) from e
        typer.echo(f"User '{email}' already exists, skipping (--if-not-exists)")
        return

    typer.echo(f"User {user.id} <{user.email}> created with role '{user.role}'")
