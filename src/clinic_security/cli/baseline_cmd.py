"""Behavioral baseline CLI commands."""

import asyncio

import typer

baseline_app = typer.Typer()


@baseline_app.command("recalculate")
def recalculate() -> None:
    """Recalculate all baselines for every active user."""
    result = asyncio.run(_recalculate())
    if not result["success"]:
        typer.echo(f"Error: {result.get('error')}", err=True)
        raise typer.Exit(code=1)
    typer.echo(
        f"Users: {result['totalUsers']}, succeeded: {result['successCount']}, failed: {result['errorCount']}"
    )
    for error in result["errors"]:
        typer.echo(f"  user {error['userId']} ({error['baselineType']}): {error['error']}", err=True)


async def _recalculate() -> dict:
    from clinic_security.core.config import get_settings
    from clinic_security.core.database import engine_lifespan, get_session_factory
    from clinic_security.core.dependencies import get_geolocator
    from clinic_security.services.baseline_service import recalculate_all_baselines

    settings = get_settings()
    async with engine_lifespan(settings.database_url, schema=settings.database_schema):
        return await recalculate_all_baselines(get_session_factory(), get_geolocator(settings), settings=settings)


@baseline_app.command("calculate")
def calculate(
    user: str = typer.Argument(..., help="User id or email"),
    baseline_type: str = typer.Argument(..., help="location, time, or access_pattern"),
) -> None:
    """Calculate one baseline for one user."""
    asyncio.run(_calculate(user, baseline_type))


async def _calculate(user: str, baseline_type: str) -> None:
    """Async implementation of single baseline calculation."""
    import json

    from clinic_security.core.config import get_settings
    from clinic_security.core.database import engine_lifespan, get_session_factory
    from clinic_security.core.dependencies import get_geolocator
    from clinic_security.core.exceptions import ConflictError, InvalidInputError, NotFoundError
    from clinic_security.services.baseline_service import calculate_baseline
    from clinic_security.services.identity_service import parse_user_ref

    settings = get_settings()
    try:
        async with engine_lifespan(settings.database_url, schema=settings.database_schema):
            async with get_session_factory()() as session:
                baseline = await calculate_baseline(
                    session,
                    parse_user_ref(user),
                    baseline_type,
                    settings=settings,
                    geolocator=get_geolocator(settings),
                )
            typer.echo(f"{baseline.baseline_type} baseline for user {baseline.user_id}:")
            typer.echo(json.dumps(baseline.baseline_data, indent=2))
    except (InvalidInputError, NotFoundError, ConflictError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e
