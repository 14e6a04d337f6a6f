"""In-memory stand-ins shared by the store, service and route tests."""

from __future__ import annotations

from datetime import date
from typing import Dict, Iterable, List, Optional

from planner.domain import Ingredient, Recipe
from planner.services.identity import FamilyDirectory
from planner.services.recipes import RecipeCatalog
from planner.services.stores import ShoppingItemStore, WeekPlanStore


class FakeRedis:
    """The subset of the redis.asyncio client the document stores use."""

    def __init__(self) -> None:
        self.hashes: Dict[str, Dict[str, str]] = {}
        self.values: Dict[str, str] = {}

    async def hget(self, name: str, key: str) -> Optional[str]:
        return self.hashes.get(name, {}).get(key)

    async def hset(self, name: str, key: Optional[str] = None, value: Optional[str] = None, mapping=None) -> int:
        target = self.hashes.setdefault(name, {})
        updates = dict(mapping or {})
        if key is not None:
            updates[key] = value
        added = len([field for field in updates if field not in target])
        target.update(updates)
        return added

    async def hgetall(self, name: str) -> Dict[str, str]:
        return dict(self.hashes.get(name, {}))

    async def hdel(self, name: str, *keys: str) -> int:
        target = self.hashes.get(name, {})
        removed = 0
        for key in keys:
            if key in target:
                del target[key]
                removed += 1
        return removed

    async def get(self, name: str) -> Optional[str]:
        return self.values.get(name)

    async def set(self, name: str, value: str, nx: bool = False):
        if nx and name in self.values:
            return None
        self.values[name] = value
        return True

    async def delete(self, *names: str) -> int:
        removed = 0
        for name in names:
            if self.values.pop(name, None) is not None or self.hashes.pop(name, None) is not None:
                removed += 1
        return removed


class BrokenBackend(ShoppingItemStore, WeekPlanStore, FamilyDirectory, RecipeCatalog):
    """A backend whose every call fails, as an unreachable database would."""

    name = "broken"

    def __init__(self) -> None:
        self.calls: List[str] = []

    def _fail(self, operation: str):
        self.calls.append(operation)
        raise ConnectionError(f"backend down during {operation}")

    async def list_items(self, family_id, week_start):
        self._fail("list_items")

    async def get_item(self, key):
        self._fail("get_item")

    async def upsert_items(self, family_id, week_start, items):
        self._fail("upsert_items")

    async def increment_item(self, key, quantity, *, ingredient_name, ingredient_name_secondary=None):
        self._fail("increment_item")

    async def update_checked(self, key, user_id, checked):
        self._fail("update_checked")

    async def delete_item(self, key):
        self._fail("delete_item")

    async def get_plan(self, family_id, week_start):
        self._fail("get_plan")

    async def create_plan(self, family_id, week_start, days):
        self._fail("create_plan")

    async def save_plan(self, family_id, week_start, days):
        self._fail("save_plan")

    async def family_for(self, user_id):
        self._fail("family_for")

    async def get_many(self, recipe_ids):
        self._fail("get_many")

    async def remember(self, user_id, family_id):
        self._fail("remember")

    async def remember_many(self, recipes):
        self._fail("remember_many")


class InMemoryRecipeCatalog(RecipeCatalog):
    def __init__(self, recipes: Iterable[Recipe] = ()) -> None:
        self.recipes = {recipe.id: recipe for recipe in recipes}

    async def get_many(self, recipe_ids):
        return {rid: self.recipes[rid] for rid in recipe_ids if rid in self.recipes}


def recipe(recipe_id: str, name: str, *ingredients: tuple) -> Recipe:
    """Build a recipe from (name, quantity, unit[, secondary name]) tuples."""
    parsed = []
    for entry in ingredients:
        item_name, quantity, unit = entry[:3]
        secondary = entry[3] if len(entry) > 3 else None
        parsed.append(Ingredient(name=item_name, quantity=quantity, unit=unit, name_secondary=secondary))
    return Recipe(id=recipe_id, name=name, ingredients=parsed)


MONDAY = date(2024, 11, 4)
