"""Audit log immutability: BEFORE DELETE / BEFORE UPDATE guards on audit_logs.

Revision ID: 003
Revises: 002
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

from clinic_security.services.audit_immutability import (
    POSTGRES_DROP_STATEMENTS,
    POSTGRES_GUARD_STATEMENTS,
    SQLITE_GUARD_STATEMENTS,
)

revision: str = "003"
down_revision: str | None = "002"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    if op.get_bind().dialect.name == "postgresql":
        statements = POSTGRES_GUARD_STATEMENTS
    else:
        statements = SQLITE_GUARD_STATEMENTS
    for statement in statements:
        op.execute(statement)


def downgrade() -> None:
    if op.get_bind().dialect.name == "postgresql":
        for statement in POSTGRES_DROP_STATEMENTS:
            op.execute(statement)
    else:
        op.execute("DROP TRIGGER IF EXISTS audit_logs_prevent_delete")
        op.execute("DROP TRIGGER IF EXISTS audit_logs_prevent_update")
