from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from ..auth import get_planner_context
from ..config import get_settings
from ..deps import get_shopping_service
from ..ratelimit import limiter
from ..schemas import (
    ManualItemRequest,
    ManualItemResponse,
    OkResponse,
    ShoppingItemSchema,
    ShoppingListResponse,
    ToggleItemRequest,
    ToggleItemResponse,
)
from ..services.identity import PlannerContext
from ..services.shopping_list import ShoppingListService, ShoppingListView
from .errors import service_errors


router = APIRouter(prefix="/shopping-list", tags=["shopping-list"])

logger = logging.getLogger(__name__)


def _list_response(view: ShoppingListView) -> ShoppingListResponse:
    return ShoppingListResponse(
        week_start=view.week_start,
        items=[ShoppingItemSchema.from_item(item) for item in view.items],
    )


@router.get("/{week}", response_model=ShoppingListResponse)
async def get_shopping_list(
    week: date,
    ctx: PlannerContext = Depends(get_planner_context),
    service: ShoppingListService = Depends(get_shopping_service),
) -> ShoppingListResponse:
    with service_errors():
        view = await service.get_shopping_list(ctx, week)
    return _list_response(view)


@router.post("/{week}/sync", response_model=ShoppingListResponse)
async def sync_shopping_list(
    week: date,
    ctx: PlannerContext = Depends(get_planner_context),
    service: ShoppingListService = Depends(get_shopping_service),
) -> ShoppingListResponse:
    with service_errors():
        view = await service.sync_shopping_list(ctx, week)
    return _list_response(view)


@router.post("/{week}/refresh", response_model=ShoppingListResponse)
async def refresh_shopping_list(
    week: date,
    ctx: PlannerContext = Depends(get_planner_context),
    service: ShoppingListService = Depends(get_shopping_service),
) -> ShoppingListResponse:
    logger.info("Manual shopping list refresh user=%s week=%s", ctx.user_id, week)
    with service_errors():
        view = await service.refresh_shopping_list(ctx, week)
    return _list_response(view)


@router.post("/{week}/items", response_model=ManualItemResponse)
@limiter.limit(lambda: get_settings().manual_add_rate_limit)
async def add_manual_item(
    request: Request,
    week: date,
    body: ManualItemRequest,
    ctx: PlannerContext = Depends(get_planner_context),
    service: ShoppingListService = Depends(get_shopping_service),
) -> ManualItemResponse:
    with service_errors():
        result = await service.add_manual_item(
            ctx,
            week,
            body.ingredient_name,
            body.ingredient_name_secondary,
            body.quantity,
            body.unit,
        )
    return ManualItemResponse(
        duplicate=result.duplicate,
        item=ShoppingItemSchema.from_item(result.item) if result.item else None,
    )


@router.post("/{week}/items/toggle", response_model=ToggleItemResponse)
@limiter.limit(lambda: get_settings().toggle_rate_limit)
async def toggle_item(
    request: Request,
    week: date,
    body: ToggleItemRequest,
    ctx: PlannerContext = Depends(get_planner_context),
    service: ShoppingListService = Depends(get_shopping_service),
) -> ToggleItemResponse:
    with service_errors():
        item = await service.toggle_item(
            ctx,
            week,
            body.ingredient_name,
            body.unit,
            body.checked,
            name_secondary=body.ingredient_name_secondary,
        )
    return ToggleItemResponse(item=ShoppingItemSchema.from_item(item))


@router.delete("/{week}/items", response_model=OkResponse)
async def delete_item(
    week: date,
    name: str = Query(min_length=1, max_length=255),
    unit: str = Query(default="", max_length=32),
    name_secondary: Optional[str] = Query(default=None, max_length=255),
    ctx: PlannerContext = Depends(get_planner_context),
    service: ShoppingListService = Depends(get_shopping_service),
) -> OkResponse:
    with service_errors():
        await service.delete_item(ctx, week, name, unit, name_secondary=name_secondary)
    return OkResponse()
