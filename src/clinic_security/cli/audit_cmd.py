"""Audit log CLI commands: chain verification and immutability guards."""

import asyncio

import typer

audit_app = typer.Typer()
immutability_app = typer.Typer()
audit_app.add_typer(immutability_app, name="immutability", help="Storage-level audit log guards")


@audit_app.command("verify")
def verify() -> None:
    """Re-derive the audit hash chain and report tampered records.

    Exits with status 1 when the chain is broken or cannot be read.
    """
    report = asyncio.run(_verify())
    typer.echo(report["message"])
    for finding in report.get("tamperedLogs", []):
        line = f"  log {finding['logId']}: {finding['issue']}"
        if "expectedPreviousHash" in finding:
            line += f" (expected {finding['expectedPreviousHash']}, stored {finding['storedPreviousHash']})"
        typer.echo(line)
    if "error" in report:
        typer.echo(f"Error: {report['error']}", err=True)
    if not report["isValid"]:
        raise typer.Exit(code=1)


async def _verify() -> dict:
    from clinic_security.core.config import get_settings
    from clinic_security.core.database import engine_lifespan, get_session_factory
    from clinic_security.services.audit_service import verify_audit_chain

    settings = get_settings()
    async with engine_lifespan(settings.database_url, schema=settings.database_schema):
        async with get_session_factory()() as session:
            return await verify_audit_chain(session)


@immutability_app.command("install")
def install() -> None:
    """Install the audit log delete/update guards (idempotent)."""
    if not asyncio.run(_install()):
        typer.echo("Failed to install audit log immutability guards", err=True)
        raise typer.Exit(code=1)
    typer.echo("Audit log immutability guards are active")


async def _install() -> bool:
    from clinic_security.core.config import get_settings
    from clinic_security.core.database import engine_lifespan
    from clinic_security.services.audit_immutability import initialize_audit_log_immutability

    settings = get_settings()
    async with engine_lifespan(settings.database_url, schema=settings.database_schema) as engine:
        return await initialize_audit_log_immutability(engine)


@immutability_app.command("status")
def status() -> None:
    """Show whether the audit log guards are installed."""
    report = asyncio.run(_status())
    typer.echo(f"Delete protection: {report['deleteProtection']}")
    typer.echo(f"Update protection: {report['updateProtection']}")
    typer.echo(report["message"])
    if not report["isFullyProtected"]:
        raise typer.Exit(code=1)


async def _status() -> dict:
    from clinic_security.core.config import get_settings
    from clinic_security.core.database import engine_lifespan, get_session_factory
    from clinic_security.services.audit_immutability import verify_immutability_status

    settings = get_settings()
    async with engine_lifespan(settings.database_url, schema=settings.database_schema):
        async with get_session_factory()() as session:
            return await verify_immutability_status(session)
