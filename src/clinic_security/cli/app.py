"""``clinic-security`` command line entry point."""

import typer

from clinic_security import __version__
from clinic_security.cli.audit_cmd import audit_app
from clinic_security.cli.baseline_cmd import baseline_app
from clinic_security.cli.db_cmd import db_app
from clinic_security.cli.user_cmd import user_app
from clinic_security.core.config import get_settings
from clinic_security.core.logging import setup_logging

app = typer.Typer(name="clinic-security", help="Clinic security audit and anomaly detection CLI")
app.add_typer(db_app, name="db", help="Database migration commands")
app.add_typer(user_app, name="user", help="Staff account commands")
app.add_typer(audit_app, name="audit", help="Audit log integrity and immutability commands")
app.add_typer(baseline_app, name="baseline", help="Behavioral baseline commands")


def _print_version(value: bool) -> None:
    if value:
        typer.echo(f"clinic-security {__version__}")
        raise typer.Exit


@app.callback()
def main(
    version: bool = typer.Option(
        False, "--version", callback=_print_version, is_eager=True, help="Show the version and exit"
    ),
) -> None:
    """Configure logging before any subcommand runs."""
    settings = get_settings()
    setup_logging(settings.log_level, log_dir=settings.log_dir)


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host", help="Interface to bind"),  # noqa: S104
    port: int = typer.Option(8000, "--port", help="Port to bind"),
    reload: bool = typer.Option(False, "--reload", help="Restart on code changes"),
) -> None:
    """Run the HTTP API under uvicorn."""
    import uvicorn

    uvicorn.run("clinic_security.main:create_app", factory=True, host=host, port=port, reload=reload)
