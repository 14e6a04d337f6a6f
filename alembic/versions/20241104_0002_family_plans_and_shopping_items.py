"""Family membership, recipes, week plans and shopping items.

Revision ID: 8e4a6c0b3d12
Revises: 5b1f2c7d9a01
Create Date: 2024-11-04 12:00:00
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "8e4a6c0b3d12"
down_revision = "5b1f2c7d9a01"
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "family_members",
        sa.Column("user_id", sa.String(length=128), primary_key=True, nullable=False),
        sa.Column("family_id", sa.String(length=64), nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False, server_default="member"),
        *_timestamps(),
    )
    op.create_index("ix_family_members_family_id", "family_members", ["family_id"])

    op.create_table(
        "recipes",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("name_secondary", sa.String(length=255), nullable=True),
        sa.Column("meal_types", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("ingredients", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("ingredients_secondary", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("family_id", sa.String(length=64), nullable=True),
        sa.Column("created_by", sa.String(length=128), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_recipes_family_id", "recipes", ["family_id"])

    op.create_table(
        "week_plans",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("family_id", sa.String(length=64), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("days", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("family_id", "start_date", name="uq_week_plans_family_start"),
    )

    op.create_table(
        "shopping_items",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("family_id", sa.String(length=64), nullable=False),
        sa.Column("week_start", sa.Date(), nullable=False),
        sa.Column("ingredient_key", sa.String(length=512), nullable=False),
        sa.Column("ingredient_name", sa.String(length=255), nullable=False),
        sa.Column("ingredient_name_secondary", sa.String(length=255), nullable=True),
        sa.Column("unit", sa.String(length=32), nullable=False),
        sa.Column("total_quantity", sa.Float(), nullable=False, server_default="0"),
        sa.Column("checked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("checked_by", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("recipe_ids", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint(
            "family_id",
            "week_start",
            "ingredient_key",
            "unit",
            name="uq_shopping_items_family_week_key_unit",
        ),
    )
    op.create_index(
        "ix_shopping_items_family_week",
        "shopping_items",
        ["family_id", "week_start"],
    )


def downgrade() -> None:
    op.drop_index("ix_shopping_items_family_week", table_name="shopping_items")
    op.drop_table("shopping_items")
    op.drop_table("week_plans")
    op.drop_index("ix_recipes_family_id", table_name="recipes")
    op.drop_table("recipes")
    op.drop_index("ix_family_members_family_id", table_name="family_members")
    op.drop_table("family_members")
