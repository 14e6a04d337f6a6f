from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from unittest import IsolatedAsyncioTestCase, mock

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from fakes import MONDAY, BrokenBackend, FakeRedis
from planner.domain import DayPlan, MealSlot
from planner.models import Base, FamilyMember, RecipeRecord
from planner.services.identity import (
    FallbackFamilyDirectory,
    PlannerContext,
    RedisFamilyDirectory,
    SqlFamilyDirectory,
    resolve_context,
)
from planner.services.recipes import FallbackRecipeCatalog, RedisRecipeCatalog, SqlRecipeCatalog, record_to_recipe
from planner.services.shopping_list import ShoppingListService
from planner.services.stores import (
    FallbackShoppingItemStore,
    FallbackWeekPlanStore,
    RedisShoppingItemStore,
    RedisWeekPlanStore,
    SqlShoppingItemStore,
    SqlWeekPlanStore,
    StoreError,
)

FAMILY = "fam-1"
USER_A = PlannerContext(user_id="user-a", family_id=FAMILY)
USER_B = PlannerContext(user_id="user-b", family_id=FAMILY)

RECIPES = [
    RecipeRecord(
        id="r1",
        name="Pancakes",
        ingredients=[
            {"name": "Flour", "name_ro": "Făină", "quantity": 100, "unit": "g"},
            {"name": "Milk", "quantity": "200", "unit": "ml"},
        ],
    ),
    RecipeRecord(
        id="r2",
        name="Bread",
        ingredients=[
            {"name": "flour", "quantity": 150, "unit": "grams"},
            {"name": "salt", "quantity": 5, "unit": "g"},
        ],
    ),
    RecipeRecord(
        id="r3",
        name="Supa",
        name_secondary="Soup",
        ingredients=[
            {"name": "Salt", "quantity": 0, "unit": "pinch"},
            {"name": "Lapte", "name_secondary": "Milk", "quantity": 300, "unit": "ml"},
        ],
    ),
]


def _later(seconds: float) -> datetime:
    return datetime.now(timezone.utc) + timedelta(seconds=seconds)


class ShoppingListServiceTest(IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self.Session = async_sessionmaker(self.engine, expire_on_commit=False)
        async with self.Session() as session:
            session.add_all(
                [
                    RecipeRecord(id=r.id, name=r.name, name_secondary=r.name_secondary, ingredients=r.ingredients)
                    for r in RECIPES
                ]
            )
            session.add(FamilyMember(user_id="user-a", family_id=FAMILY))
            await session.commit()

        self.redis = FakeRedis()
        self.plans = FallbackWeekPlanStore(SqlWeekPlanStore(self.Session), RedisWeekPlanStore(self.redis))
        self.store = FallbackShoppingItemStore(SqlShoppingItemStore(self.Session), RedisShoppingItemStore(self.redis))
        self.service = ShoppingListService(self.store, self.plans, SqlRecipeCatalog(self.Session))

    async def asyncTearDown(self):
        await self.engine.dispose()

    async def _plan(self, *assignments: tuple) -> None:
        days = []
        for offset, meal_key, recipe_id in assignments:
            days.append(DayPlan(date=MONDAY + timedelta(days=offset), meals={meal_key: [MealSlot(recipe_id)]}))
        await self.plans.save_plan(FAMILY, MONDAY, days)

    async def test_sync_builds_consolidated_list(self):
        await self._plan((0, "breakfast", "r1"), (1, "dinner", "r2"), (2, "lunch", "r3"))

        view = await self.service.sync_shopping_list(USER_A, MONDAY)

        by_key = {item.match_key: item for item in view.items}
        self.assertEqual(set(by_key), {("faina||flour", "g"), ("lapte||milk", "ml"), ("salt", "g")})
        self.assertEqual(by_key[("faina||flour", "g")].total_quantity, 250)
        self.assertEqual(by_key[("faina||flour", "g")].recipe_ids, ["r1", "r2"])
        self.assertEqual(by_key[("lapte||milk", "ml")].total_quantity, 500)
        self.assertEqual(by_key[("salt", "g")].total_quantity, 5)

    async def test_any_day_addresses_its_week(self):
        await self._plan((0, "breakfast", "r2"))

        view = await self.service.sync_shopping_list(USER_A, MONDAY + timedelta(days=3))

        self.assertEqual(view.week_start, MONDAY)
        self.assertEqual(len(view.items), 2)

    async def test_sync_twice_changes_nothing(self):
        await self._plan((0, "breakfast", "r1"), (1, "dinner", "r2"))
        first = await self.service.sync_shopping_list(USER_A, MONDAY)

        second = await self.service.sync_shopping_list(USER_A, MONDAY)

        self.assertEqual(
            [(i.match_key, i.total_quantity, i.updated_at) for i in first.items],
            [(i.match_key, i.total_quantity, i.updated_at) for i in second.items],
        )

    async def test_resync_keeps_checks_and_manual_items(self):
        await self._plan((0, "breakfast", "r1"), (1, "dinner", "r2"))
        await self.service.sync_shopping_list(USER_A, MONDAY)
        await self.service.toggle_item(USER_A, MONDAY, "Flour", "g", True)
        await self.service.add_manual_item(USER_A, MONDAY, "Batteries", None, 4, "pcs")

        await self._plan((1, "dinner", "r2"))
        view = await self.service.sync_shopping_list(USER_A, MONDAY)

        by_key = {item.match_key: item for item in view.items}
        self.assertEqual(set(by_key), {("flour", "g"), ("salt", "g"), ("batteries", "pcs")})
        self.assertEqual(by_key[("flour", "g")].total_quantity, 150)
        self.assertEqual(by_key[("flour", "g")].checked_by, ["user-a"])
        self.assertEqual(by_key[("batteries", "pcs")].total_quantity, 4)

    async def test_empty_plan_clears_planned_items_only(self):
        await self._plan((0, "breakfast", "r2"))
        await self.service.sync_shopping_list(USER_A, MONDAY)
        await self.service.add_manual_item(USER_A, MONDAY, "Coffee", None, 1, "bag")

        await self._plan()
        view = await self.service.refresh_shopping_list(USER_A, MONDAY)

        self.assertEqual([item.match_key for item in view.items], [("coffee", "bag")])

    async def test_toggle_union_across_members(self):
        await self._plan((0, "breakfast", "r1"))
        await self.service.sync_shopping_list(USER_A, MONDAY)

        await self.service.toggle_item(USER_A, MONDAY, "Milk", "ml", True)
        await self.service.toggle_item(USER_B, MONDAY, "milk", "millilitres", True)
        item = await self.service.toggle_item(USER_A, MONDAY, "Milk", "ml", False)
        self.assertTrue(item.checked)

        item = await self.service.toggle_item(USER_B, MONDAY, "Milk", "ml", False)
        self.assertFalse(item.checked)

    async def test_toggle_by_secondary_name(self):
        await self._plan((0, "breakfast", "r1"))
        await self.service.sync_shopping_list(USER_A, MONDAY)

        item = await self.service.toggle_item(USER_A, MONDAY, "Făină", "g", True)

        self.assertEqual(item.ingredient_key, "faina||flour")

    async def test_toggle_unknown_item(self):
        with self.assertRaises(LookupError):
            await self.service.toggle_item(USER_A, MONDAY, "Saffron", "g", True)

    async def test_repeated_manual_add_is_suppressed(self):
        first = await self.service.add_manual_item(USER_A, MONDAY, "milk", None, 1, "pcs")
        second = await self.service.add_manual_item(USER_A, MONDAY, "milk", None, 1, "pcs")

        self.assertFalse(first.duplicate)
        self.assertTrue(second.duplicate)
        items = (await self.service.get_shopping_list(USER_A, MONDAY)).items
        self.assertEqual([(i.match_key, i.total_quantity) for i in items], [(("milk", "pcs"), 1)])

    async def test_manual_add_after_window_increments(self):
        await self.service.add_manual_item(USER_A, MONDAY, "Milk", None, 1, "pcs")

        with mock.patch("planner.services.shopping_list._utcnow", return_value=_later(10)):
            result = await self.service.add_manual_item(USER_A, MONDAY, "milk", None, 2, "piece")

        self.assertFalse(result.duplicate)
        self.assertEqual(result.item.total_quantity, 3)

    async def test_manual_add_defaults_unit(self):
        result = await self.service.add_manual_item(USER_A, MONDAY, "  Lemons ", None, "2", None)

        self.assertEqual(result.item.unit, "pcs")
        self.assertEqual(result.item.ingredient_name, "Lemons")
        self.assertEqual(result.item.total_quantity, 2)

    async def test_manual_add_lands_on_planned_item(self):
        await self._plan((0, "breakfast", "r1"))
        await self.service.sync_shopping_list(USER_A, MONDAY)

        with mock.patch("planner.services.shopping_list._utcnow", return_value=_later(10)):
            result = await self.service.add_manual_item(USER_A, MONDAY, "flour", None, 50, "g")

        self.assertEqual(result.item.ingredient_key, "faina||flour")
        self.assertEqual(result.item.total_quantity, 150)

    async def test_blank_manual_item_is_rejected(self):
        with self.assertRaises(ValueError):
            await self.service.add_manual_item(USER_A, MONDAY, "   ", None, 1, "pcs")

    async def test_delete_item(self):
        await self.service.add_manual_item(USER_A, MONDAY, "Batteries", None, 4, "pcs")

        await self.service.delete_item(USER_A, MONDAY, "batteries", "pieces")

        self.assertEqual((await self.service.get_shopping_list(USER_A, MONDAY)).items, [])
        with self.assertRaises(LookupError):
            await self.service.delete_item(USER_A, MONDAY, "batteries", "pcs")

    async def test_user_without_family(self):
        loner = PlannerContext(user_id="user-z")

        view = await self.service.get_shopping_list(loner, MONDAY)
        self.assertEqual(view.items, [])
        with self.assertRaises(PermissionError):
            await self.service.add_manual_item(loner, MONDAY, "Milk", None, 1, "pcs")

    async def test_manual_part_survives_planning_and_unplanning(self):
        await self.service.add_manual_item(USER_A, MONDAY, "Milk", None, 2, "ml")

        await self._plan((0, "breakfast", "r1"))
        planned = await self.service.sync_shopping_list(USER_A, MONDAY)
        milk = {item.match_key: item for item in planned.items}[("milk", "ml")]
        self.assertEqual(milk.total_quantity, 202)
        self.assertEqual(milk.recipe_ids, ["r1"])

        again = await self.service.sync_shopping_list(USER_A, MONDAY)
        self.assertEqual({item.match_key: item for item in again.items}[("milk", "ml")].total_quantity, 202)

        await self._plan()
        view = await self.service.sync_shopping_list(USER_A, MONDAY)
        self.assertEqual([(i.match_key, i.total_quantity, i.recipe_ids) for i in view.items], [(("milk", "ml"), 2, [])])

    async def test_family_resolution(self):
        directory = FallbackFamilyDirectory(SqlFamilyDirectory(self.Session), RedisFamilyDirectory(self.redis))

        self.assertEqual(await resolve_context(directory, "user-a"), USER_A)
        self.assertFalse((await resolve_context(directory, "user-z")).has_family)
        self.assertFalse((await resolve_context(FallbackFamilyDirectory(None, None), "user-a")).has_family)

    async def test_family_resolution_survives_primary_outage(self):
        healthy = FallbackFamilyDirectory(SqlFamilyDirectory(self.Session), RedisFamilyDirectory(self.redis))
        await resolve_context(healthy, "user-a")

        degraded = FallbackFamilyDirectory(BrokenBackend(), RedisFamilyDirectory(self.redis))
        with self.assertLogs("planner.services.stores", level="WARNING"):
            self.assertEqual(await resolve_context(degraded, "user-a"), USER_A)

        with self.assertLogs("planner.services.stores", level="ERROR"):
            with self.assertRaises(StoreError):
                await resolve_context(FallbackFamilyDirectory(BrokenBackend(), BrokenBackend()), "user-a")


class RecipeCatalogTest(IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self.Session = async_sessionmaker(self.engine, expire_on_commit=False)
        async with self.Session() as session:
            session.add(
                RecipeRecord(
                    id="r4",
                    name="Clatite",
                    ingredients=[
                        {"name": "Flour", "quantity": 100, "unit": "g"},
                        None,
                        {"name": "Milk", "quantity": 250, "unit": "ml"},
                    ],
                    ingredients_secondary=[{"name": "Făină"}, None, {"name": "Lapte"}],
                )
            )
            await session.commit()
        self.redis = FakeRedis()

    async def asyncTearDown(self):
        await self.engine.dispose()

    async def test_malformed_entries_keep_ingredient_positions(self):
        loaded = (await SqlRecipeCatalog(self.Session).get_many(["r4"]))["r4"]

        self.assertEqual(len(loaded.ingredients), 3)
        self.assertEqual(len(loaded.ingredients_secondary), 3)
        self.assertEqual(loaded.ingredients[1].name, "")
        milk = loaded.ingredients[2]
        self.assertEqual(loaded.secondary_name_at(2, milk), "Lapte")

        async with self.Session() as session:
            record = await session.get(RecipeRecord, "r4")
        converted = record_to_recipe(record)
        self.assertEqual(converted.secondary_name_at(0, converted.ingredients[0]), "Făină")

    async def test_recipes_are_served_from_the_secondary_during_an_outage(self):
        healthy = FallbackRecipeCatalog(SqlRecipeCatalog(self.Session), RedisRecipeCatalog(self.redis))
        self.assertEqual(list(await healthy.get_many(["r4", "ghost"])), ["r4"])

        degraded = FallbackRecipeCatalog(BrokenBackend(), RedisRecipeCatalog(self.redis))
        with self.assertLogs("planner.services.stores", level="WARNING"):
            served = await degraded.get_many(["r4"])

        self.assertEqual(served["r4"].ingredients[2].name, "Milk")
        self.assertEqual(served["r4"].secondary_name_at(2, served["r4"].ingredients[2]), "Lapte")

    async def test_double_failure_raises_store_error(self):
        catalog = FallbackRecipeCatalog(BrokenBackend(), BrokenBackend())
        with self.assertLogs("planner.services.stores", level="ERROR"):
            with self.assertRaises(StoreError):
                await catalog.get_many(["r4"])


class FallbackTransparencyTest(IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self.Session = async_sessionmaker(self.engine, expire_on_commit=False)
        async with self.Session() as session:
            session.add(RecipeRecord(id="r2", name="Bread", ingredients=RECIPES[1].ingredients))
            await session.commit()
        self.redis = FakeRedis()

    async def asyncTearDown(self):
        await self.engine.dispose()

    async def test_list_synced_through_healthy_primary_is_readable_when_it_fails(self):
        plans = FallbackWeekPlanStore(SqlWeekPlanStore(self.Session), RedisWeekPlanStore(self.redis))
        healthy = ShoppingListService(
            FallbackShoppingItemStore(SqlShoppingItemStore(self.Session), RedisShoppingItemStore(self.redis)),
            plans,
            FallbackRecipeCatalog(SqlRecipeCatalog(self.Session), RedisRecipeCatalog(self.redis)),
        )
        await plans.save_plan(FAMILY, MONDAY, [DayPlan(date=MONDAY, meals={"dinner": [MealSlot("r2")]})])
        expected = await healthy.sync_shopping_list(USER_A, MONDAY)

        degraded = ShoppingListService(
            FallbackShoppingItemStore(BrokenBackend(), RedisShoppingItemStore(self.redis)),
            FallbackWeekPlanStore(BrokenBackend(), RedisWeekPlanStore(self.redis)),
            FallbackRecipeCatalog(BrokenBackend(), RedisRecipeCatalog(self.redis)),
        )
        with self.assertLogs("planner.services.stores", level="WARNING"):
            view = await degraded.get_shopping_list(USER_A, date(2024, 11, 6))
            resynced = await degraded.sync_shopping_list(USER_A, MONDAY)

        self.assertEqual(len(expected.items), 2)
        self.assertEqual(
            [(i.match_key, i.total_quantity) for i in view.items],
            [(i.match_key, i.total_quantity) for i in expected.items],
        )
        self.assertEqual(
            [(i.match_key, i.total_quantity) for i in resynced.items],
            [(i.match_key, i.total_quantity) for i in expected.items],
        )
