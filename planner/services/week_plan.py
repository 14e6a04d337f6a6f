from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import TYPE_CHECKING, List, Optional

from ..domain import DayPlan, MealSlot
from ..models import MealKey
from .identity import PlannerContext
from .stores import WeekPlanStore

if TYPE_CHECKING:
    from .shopping_list import ShoppingListService, ShoppingListView

logger = logging.getLogger(__name__)

DAYS_PER_WEEK = 7
MAX_SLOTS_PER_MEAL = 10


def week_start_for(day: date) -> date:
    """Monday of the ISO week containing `day`."""
    return day - timedelta(days=day.weekday())


def week_dates(week_start: date) -> List[date]:
    return [week_start + timedelta(days=offset) for offset in range(DAYS_PER_WEEK)]


def empty_day_plan(day: date) -> DayPlan:
    return DayPlan(date=day, meals={key: [MealSlot()] for key in MealKey.ALL})


def empty_week_days(week_start: date) -> List[DayPlan]:
    return [empty_day_plan(day) for day in week_dates(week_start)]


class SlotList:
    """Sparse, index-addressed slots of one meal on one day.

    Writing past the end appends empty slots up to the index instead of
    relying on implicit list growth.
    """

    def __init__(self, slots: List[MealSlot]) -> None:
        self._slots = slots

    def __len__(self) -> int:
        return len(self._slots)

    def get(self, index: int) -> Optional[str]:
        if 0 <= index < len(self._slots):
            return self._slots[index].recipe_id
        return None

    def set(self, index: int, recipe_id: Optional[str]) -> None:
        if index < 0:
            raise ValueError("slot index must not be negative")
        while len(self._slots) <= index:
            self._slots.append(MealSlot())
        self._slots[index] = MealSlot(recipe_id=recipe_id)

    def recipe_ids(self) -> List[str]:
        return [slot.recipe_id for slot in self._slots if slot.recipe_id]


def get_or_create_day(days: List[DayPlan], day: date) -> DayPlan:
    for entry in days:
        if entry.date == day:
            for key in MealKey.ALL:
                entry.meals.setdefault(key, [])
            return entry
    created = empty_day_plan(day)
    days.append(created)
    days.sort(key=lambda entry: entry.date)
    return created


def assign_slot(
    days: List[DayPlan],
    day: date,
    meal_key: str,
    slot_index: int,
    recipe_id: Optional[str],
) -> List[DayPlan]:
    if meal_key not in MealKey.ALL:
        raise ValueError(f"Unknown meal '{meal_key}'")
    if slot_index >= MAX_SLOTS_PER_MEAL:
        raise ValueError(f"At most {MAX_SLOTS_PER_MEAL} slots per meal are supported")
    target = get_or_create_day(days, day)
    SlotList(target.meals[meal_key]).set(slot_index, recipe_id or None)
    return days


@dataclass
class WeekPlanView:
    week_start: date
    days: List[DayPlan]


class WeekPlanService:
    def __init__(self, plans: WeekPlanStore, shopping: "ShoppingListService") -> None:
        self._plans = plans
        self._shopping = shopping

    async def get_week_plan(self, ctx: PlannerContext, week: date) -> Optional[WeekPlanView]:
        """Return the family's plan for the week, creating an empty one on first read."""
        if not ctx.has_family:
            return None
        week_start = week_start_for(week)
        days = await self._plans.get_plan(ctx.family_id, week_start)
        if days is None:
            logger.info("Creating empty week plan family=%s week=%s", ctx.family_id, week_start)
            days = await self._plans.create_plan(ctx.family_id, week_start, empty_week_days(week_start))
        return WeekPlanView(week_start=week_start, days=days)

    async def assign_meal(
        self,
        ctx: PlannerContext,
        week: date,
        day: date,
        meal_key: str,
        slot_index: int,
        recipe_id: Optional[str],
    ) -> "ShoppingListView":
        """Write one meal slot and re-sync the week's shopping list."""
        if not ctx.has_family:
            raise PermissionError("User has no family")
        week_start = week_start_for(week)
        if week_start_for(day) != week_start:
            raise ValueError(f"{day.isoformat()} is outside the week starting {week_start.isoformat()}")
        plan = await self.get_week_plan(ctx, week_start)
        days = assign_slot(plan.days, day, meal_key, slot_index, recipe_id)
        await self._plans.save_plan(ctx.family_id, week_start, days)
        logger.info(
            "Assigned meal family=%s day=%s meal=%s slot=%s recipe=%s",
            ctx.family_id,
            day,
            meal_key,
            slot_index,
            recipe_id,
        )
        return await self._shopping.sync_shopping_list(ctx, week_start)
