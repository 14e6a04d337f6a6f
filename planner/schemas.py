from __future__ import annotations

import datetime as dt
from typing import Dict, List, Optional
from pydantic import BaseModel, Field

from .domain import DayPlan, ShoppingItem

MEAL_KEY_PATTERN = r"^(breakfast|lunch|dinner|togo|dessert)$"


class ShoppingItemSchema(BaseModel):
    ingredient_key: str
    ingredient_name: str
    ingredient_name_secondary: Optional[str] = None
    total_quantity: float
    unit: str
    checked: bool = False
    checked_by: List[str] = Field(default_factory=list)
    recipe_ids: List[str] = Field(default_factory=list)

    @classmethod
    def from_item(cls, item: ShoppingItem) -> "ShoppingItemSchema":
        return cls(
            ingredient_key=item.ingredient_key,
            ingredient_name=item.ingredient_name,
            ingredient_name_secondary=item.ingredient_name_secondary,
            total_quantity=float(item.total_quantity),
            unit=item.unit,
            checked=item.checked,
            checked_by=list(item.checked_by),
            recipe_ids=list(item.recipe_ids),
        )


class ShoppingListResponse(BaseModel):
    week_start: dt.date
    items: List[ShoppingItemSchema] = Field(default_factory=list)


class ToggleItemRequest(BaseModel):
    ingredient_name: str = Field(min_length=1, max_length=255)
    ingredient_name_secondary: Optional[str] = Field(default=None, max_length=255)
    unit: str = Field(default="", max_length=32)
    checked: bool


class ToggleItemResponse(BaseModel):
    ok: bool = True
    item: ShoppingItemSchema


class ManualItemRequest(BaseModel):
    ingredient_name: str = Field(min_length=1, max_length=255)
    ingredient_name_secondary: Optional[str] = Field(default=None, max_length=255)
    quantity: float = Field(default=1, gt=0)
    unit: str = Field(default="", max_length=32)


class ManualItemResponse(BaseModel):
    ok: bool = True
    duplicate: bool = False
    item: Optional[ShoppingItemSchema] = None


class OkResponse(BaseModel):
    ok: bool = True


class MealSlotSchema(BaseModel):
    recipe_id: Optional[str] = None


class DayPlanSchema(BaseModel):
    date: dt.date
    meals: Dict[str, List[MealSlotSchema]] = Field(default_factory=dict)

    @classmethod
    def from_day(cls, day: DayPlan) -> "DayPlanSchema":
        return cls(
            date=day.date,
            meals={
                key: [MealSlotSchema(recipe_id=slot.recipe_id) for slot in slots]
                for key, slots in day.meals.items()
            },
        )


class WeekPlanResponse(BaseModel):
    week_start: dt.date
    days: List[DayPlanSchema] = Field(default_factory=list)


class AssignMealRequest(BaseModel):
    date: dt.date
    meal_key: str = Field(pattern=MEAL_KEY_PATTERN)
    slot_index: int = Field(default=0, ge=0, le=9)
    recipe_id: Optional[str] = Field(default=None, max_length=64)
