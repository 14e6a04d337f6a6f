from __future__ import annotations

from datetime import date, datetime
import uuid
from typing import Optional

from sqlalchemy import Boolean, Date, DateTime, Float, JSON, String, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


json_type = JSON().with_variant(JSONB, "postgresql")


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class TimestampMixin:
    """Common created/updated timestamp columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class MealKey:
    BREAKFAST = "breakfast"
    LUNCH = "lunch"
    DINNER = "dinner"
    TOGO = "togo"
    DESSERT = "dessert"

    ALL = (BREAKFAST, LUNCH, DINNER, TOGO, DESSERT)


class FamilyMember(Base, TimestampMixin):
    __tablename__ = "family_members"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    family_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="member")


class RecipeRecord(Base, TimestampMixin):
    __tablename__ = "recipes"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    name_secondary: Mapped[Optional[str]] = mapped_column(String(255))
    meal_types: Mapped[Optional[list]] = mapped_column(json_type)
    ingredients: Mapped[list] = mapped_column(json_type, nullable=False, default=list)
    ingredients_secondary: Mapped[Optional[list]] = mapped_column(json_type)
    # NULL family_id marks a global recipe
    family_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(128))

    def __repr__(self) -> str:
        return f"RecipeRecord(id={self.id}, name={self.name}, family_id={self.family_id})"


class WeekPlanRecord(Base, TimestampMixin):
    __tablename__ = "week_plans"
    __table_args__ = (UniqueConstraint("family_id", "start_date", name="uq_week_plans_family_start"),)

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    family_id: Mapped[str] = mapped_column(String(64), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    days: Mapped[list] = mapped_column(json_type, nullable=False, default=list)


class ShoppingItemRecord(Base, TimestampMixin):
    __tablename__ = "shopping_items"
    __table_args__ = (
        UniqueConstraint(
            "family_id",
            "week_start",
            "ingredient_key",
            "unit",
            name="uq_shopping_items_family_week_key_unit",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    family_id: Mapped[str] = mapped_column(String(64), nullable=False)
    week_start: Mapped[date] = mapped_column(Date, nullable=False)
    ingredient_key: Mapped[str] = mapped_column(String(512), nullable=False)
    ingredient_name: Mapped[str] = mapped_column(String(255), nullable=False)
    ingredient_name_secondary: Mapped[Optional[str]] = mapped_column(String(255))
    unit: Mapped[str] = mapped_column(String(32), nullable=False)
    total_quantity: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    checked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    checked_by: Mapped[list] = mapped_column(json_type, nullable=False, default=list)
    recipe_ids: Mapped[list] = mapped_column(json_type, nullable=False, default=list)
    manual_quantity: Mapped[float] = mapped_column(Float, nullable=False, default=0.0, server_default="0")

    def __repr__(self) -> str:
        return (
            f"ShoppingItemRecord(family_id={self.family_id}, week_start={self.week_start}, "
            f"ingredient_key={self.ingredient_key}, unit={self.unit}, total_quantity={self.total_quantity})"
        )
