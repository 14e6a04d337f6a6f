from __future__ import annotations

from redis import asyncio as aioredis

from .config import get_settings
from .db import get_session_factory
from .redis_util import get_redis
from .services.identity import FallbackFamilyDirectory, RedisFamilyDirectory, SqlFamilyDirectory
from .services.recipes import FallbackRecipeCatalog, RedisRecipeCatalog, SqlRecipeCatalog
from .services.shopping_list import ShoppingListService
from .services.stores import (
    FallbackShoppingItemStore,
    FallbackWeekPlanStore,
    RedisShoppingItemStore,
    RedisWeekPlanStore,
    SqlShoppingItemStore,
    SqlWeekPlanStore,
)
from .services.week_plan import WeekPlanService

_redis_client: aioredis.Redis | None = None


def _redis() -> aioredis.Redis | None:
    global _redis_client
    if _redis_client is None:
        _redis_client = get_redis()
    return _redis_client


def get_family_directory() -> FallbackFamilyDirectory:
    session_factory = get_session_factory()
    client = _redis()
    return FallbackFamilyDirectory(
        SqlFamilyDirectory(session_factory) if session_factory else None,
        RedisFamilyDirectory(client, prefix=get_settings().redis_family_prefix) if client is not None else None,
    )


def _recipe_catalog() -> FallbackRecipeCatalog:
    session_factory = get_session_factory()
    client = _redis()
    return FallbackRecipeCatalog(
        SqlRecipeCatalog(session_factory) if session_factory else None,
        RedisRecipeCatalog(client, hash_name=get_settings().redis_recipe_hash) if client is not None else None,
    )


def _week_plan_store() -> FallbackWeekPlanStore:
    session_factory = get_session_factory()
    client = _redis()
    return FallbackWeekPlanStore(
        SqlWeekPlanStore(session_factory) if session_factory else None,
        RedisWeekPlanStore(client, prefix=get_settings().redis_week_plan_prefix) if client is not None else None,
    )


def _build_shopping_service(plans: FallbackWeekPlanStore) -> ShoppingListService:
    settings = get_settings()
    session_factory = get_session_factory()
    client = _redis()
    store = FallbackShoppingItemStore(
        SqlShoppingItemStore(session_factory) if session_factory else None,
        RedisShoppingItemStore(client, prefix=settings.redis_shopping_prefix) if client is not None else None,
    )
    return ShoppingListService(
        store,
        plans,
        _recipe_catalog(),
        duplicate_window_seconds=settings.duplicate_window_seconds,
        default_unit=settings.default_manual_unit,
    )


def get_shopping_service() -> ShoppingListService:
    return _build_shopping_service(_week_plan_store())


def get_week_plan_service() -> WeekPlanService:
    plans = _week_plan_store()
    return WeekPlanService(plans, _build_shopping_service(plans))
