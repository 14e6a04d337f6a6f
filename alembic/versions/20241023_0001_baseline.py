"""Baseline empty schema.

Revision ID: 5b1f2c7d9a01
Revises:
Create Date: 2024-10-23 00:00:00.000000

"""
from __future__ import annotations

# revision identifiers, used by Alembic.
revision = "5b1f2c7d9a01"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Stamp only; the planner tables arrive in the next revision."""
    pass


def downgrade() -> None:
    pass
