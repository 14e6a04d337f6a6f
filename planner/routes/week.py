from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends

from ..auth import get_planner_context
from ..deps import get_week_plan_service
from ..schemas import (
    AssignMealRequest,
    DayPlanSchema,
    ShoppingItemSchema,
    ShoppingListResponse,
    WeekPlanResponse,
)
from ..services.identity import PlannerContext
from ..services.week_plan import WeekPlanService, week_start_for
from .errors import service_errors


router = APIRouter(prefix="/weeks", tags=["week-plan"])


@router.get("/{week}", response_model=WeekPlanResponse)
async def get_week_plan(
    week: date,
    ctx: PlannerContext = Depends(get_planner_context),
    service: WeekPlanService = Depends(get_week_plan_service),
) -> WeekPlanResponse:
    with service_errors():
        view = await service.get_week_plan(ctx, week)
    if view is None:
        return WeekPlanResponse(week_start=week_start_for(week), days=[])
    return WeekPlanResponse(
        week_start=view.week_start,
        days=[DayPlanSchema.from_day(day) for day in view.days],
    )


@router.put("/{week}/slots", response_model=ShoppingListResponse)
async def assign_meal(
    week: date,
    body: AssignMealRequest,
    ctx: PlannerContext = Depends(get_planner_context),
    service: WeekPlanService = Depends(get_week_plan_service),
) -> ShoppingListResponse:
    with service_errors():
        view = await service.assign_meal(ctx, week, body.date, body.meal_key, body.slot_index, body.recipe_id)
    return ShoppingListResponse(
        week_start=view.week_start,
        items=[ShoppingItemSchema.from_item(item) for item in view.items],
    )
