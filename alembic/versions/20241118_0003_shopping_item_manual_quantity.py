"""Track the hand-added share of each shopping item.

Revision ID: b27d94e1c5a3
Revises: 8e4a6c0b3d12
Create Date: 2024-11-18 09:00:00
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "b27d94e1c5a3"
down_revision = "8e4a6c0b3d12"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        "shopping_items",
        sa.Column("manual_quantity", sa.Float(), nullable=False, server_default="0"),
    )
    # Existing manual rows (no contributing recipes) are entirely hand-added.
    op.execute(
        "UPDATE shopping_items SET manual_quantity = total_quantity "
        "WHERE jsonb_array_length(recipe_ids) = 0"
    )


def downgrade() -> None:
    op.drop_column("shopping_items", "manual_quantity")
