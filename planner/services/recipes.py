from __future__ import annotations

import abc
import json
import logging
from typing import Dict, Iterable, Optional, Sequence

from redis import asyncio as aioredis
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..domain import Ingredient, Recipe
from ..models import RecipeRecord
from .stores import FallbackPolicy, ensure_utc

logger = logging.getLogger(__name__)


class RecipeCatalog(abc.ABC):
    name = "abstract"

    @abc.abstractmethod
    async def get_many(self, recipe_ids: Iterable[str]) -> Dict[str, Recipe]:
        """Return the requested recipes by id; unknown ids are simply absent."""


def record_to_recipe(record: RecipeRecord) -> Recipe:
    secondary = record.ingredients_secondary
    return Recipe(
        id=str(record.id),
        name=record.name,
        name_secondary=record.name_secondary,
        ingredients=Ingredient.list_from(record.ingredients),
        ingredients_secondary=Ingredient.list_from(secondary) if isinstance(secondary, list) else None,
        family_id=record.family_id,
        created_by=record.created_by,
        created_at=ensure_utc(record.created_at),
    )


class SqlRecipeCatalog(RecipeCatalog):
    name = "sql"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_many(self, recipe_ids: Iterable[str]) -> Dict[str, Recipe]:
        wanted = {str(rid) for rid in recipe_ids if rid}
        if not wanted:
            return {}
        async with self._session_factory() as session:
            result = await session.execute(select(RecipeRecord).where(RecipeRecord.id.in_(sorted(wanted))))
            return {str(record.id): record_to_recipe(record) for record in result.scalars().all()}


class RedisRecipeCatalog(RecipeCatalog):
    """Recipe copies as JSON documents in a single Redis hash keyed by recipe id."""

    name = "redis"

    def __init__(self, client: aioredis.Redis, *, hash_name: str = "recipes") -> None:
        self._client = client
        self._hash_name = hash_name

    async def get_many(self, recipe_ids: Iterable[str]) -> Dict[str, Recipe]:
        wanted = sorted({str(rid) for rid in recipe_ids if rid})
        found: Dict[str, Recipe] = {}
        for rid in wanted:
            raw = await self._client.hget(self._hash_name, rid)
            if raw:
                found[rid] = Recipe.from_document(json.loads(raw))
        return found

    async def remember_many(self, recipes: Sequence[Recipe]) -> None:
        if not recipes:
            return
        await self._client.hset(
            self._hash_name,
            mapping={recipe.id: json.dumps(recipe.to_document()) for recipe in recipes},
        )


class FallbackRecipeCatalog(FallbackPolicy, RecipeCatalog):
    name = "fallback"

    def __init__(self, primary: Optional[RecipeCatalog], secondary: Optional[RedisRecipeCatalog]) -> None:
        super().__init__(primary, secondary, label="recipe catalog")

    async def get_many(self, recipe_ids: Iterable[str]) -> Dict[str, Recipe]:
        wanted = [str(rid) for rid in recipe_ids if rid]
        if not wanted:
            return {}
        if not self.configured:
            logger.warning("Recipe catalog unavailable: no backend configured")
            return {}
        found, by_primary = await self._call("get_many", wanted)
        if by_primary:
            recipes = list(found.values())
            await self._mirror("get_many", lambda catalog: catalog.remember_many(recipes))
        return found
