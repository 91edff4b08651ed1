"""Schema migration commands backed by Alembic."""

import typer
from loguru import logger

db_app = typer.Typer()

_CONFIG_OPTION = typer.Option("alembic.ini", "--config", "-c", help="Alembic ini file")


def _alembic(config_path: str, action: str, *args: object, **kwargs: object) -> None:
    from alembic import command
    from alembic.config import Config

    getattr(command, action)(Config(config_path), *args, **kwargs)


@db_app.command()
def upgrade(
    revision: str = typer.Argument("head", help="Target revision"),
    config_path: str = _CONFIG_OPTION,
) -> None:
    """Apply migrations up to ``revision``.

    Revision 003 installs the audit log immutability guards.
    """
    logger.info(f"Migrating database up to {revision}")
    _alembic(config_path, "upgrade", revision)
    logger.info(f"Database now at {revision}")


@db_app.command()
def downgrade(
    revision: str = typer.Argument("-1", help="Target revision"),
    config_path: str = _CONFIG_OPTION,
) -> None:
    """Revert migrations down to ``revision``."""
    logger.info(f"Migrating database down to {revision}")
    _alembic(config_path, "downgrade", revision)
    logger.info(f"Database now at {revision}")


@db_app.command()
def current(config_path: str = _CONFIG_OPTION) -> None:
    """Print the revision the database is at."""
    _alembic(config_path, "current", verbose=True)
