from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, List, Optional, Sequence

from ..domain import ItemKey, ShoppingItem
from .aggregation import aggregate, coerce_quantity, iter_planned_recipe_ids
from .identity import PlannerContext
from .normalize import ingredient_key, ingredient_name_keys, normalize_unit, split_name_keys
from .recipes import RecipeCatalog
from .reconcile import reconcile
from .stores import ShoppingItemStore, StoreError, WeekPlanStore
from .week_plan import week_start_for

logger = logging.getLogger(__name__)

DEFAULT_DUPLICATE_WINDOW_SECONDS = 5.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ShoppingListView:
    week_start: date
    items: List[ShoppingItem]


@dataclass
class ManualAddResult:
    item: Optional[ShoppingItem]
    duplicate: bool = False


def sort_items(items: Sequence[ShoppingItem]) -> List[ShoppingItem]:
    return sorted(items, key=lambda item: (item.ingredient_name.lower(), item.unit))


def find_item(
    items: Sequence[ShoppingItem],
    name: str,
    unit: str,
    name_secondary: Optional[str] = None,
) -> Optional[ShoppingItem]:
    """Locate the persisted item a user-supplied (name, unit) refers to.

    An exact key match wins; otherwise any item in the same canonical unit
    that shares one of the normalized names is the same ingredient.
    """
    canonical_unit = normalize_unit(unit)
    keys = ingredient_name_keys(name, name_secondary)
    if not keys:
        return None
    exact = ingredient_key(name, name_secondary)
    same_unit = [item for item in items if item.unit == canonical_unit]
    for item in same_unit:
        if item.ingredient_key == exact:
            return item
    for item in same_unit:
        if set(keys) & set(split_name_keys(item.ingredient_key)):
            return item
    return None


class ShoppingListService:
    """Meal plan to shopping list synchronisation for one family and week at a time.

    Every call re-reads current state from the store; nothing is cached
    between calls.
    """

    def __init__(
        self,
        store: ShoppingItemStore,
        plans: WeekPlanStore,
        catalog: RecipeCatalog,
        *,
        duplicate_window_seconds: float = DEFAULT_DUPLICATE_WINDOW_SECONDS,
        default_unit: str = "pcs",
    ) -> None:
        self._store = store
        self._plans = plans
        self._catalog = catalog
        self._duplicate_window = timedelta(seconds=duplicate_window_seconds)
        self._default_unit = default_unit

    @staticmethod
    def _require_family(ctx: PlannerContext) -> str:
        if not ctx.has_family:
            raise PermissionError("User has no family")
        return ctx.family_id

    async def get_shopping_list(self, ctx: PlannerContext, week: date) -> ShoppingListView:
        week_start = week_start_for(week)
        if not ctx.has_family:
            return ShoppingListView(week_start=week_start, items=[])
        items = await self._store.list_items(ctx.family_id, week_start)
        return ShoppingListView(week_start=week_start, items=sort_items(items))

    async def sync_shopping_list(self, ctx: PlannerContext, week: date) -> ShoppingListView:
        """Re-derive the week's list from its meal plan, keeping user state.

        Safe to repeat: with no plan change a second run writes nothing new
        and deletes nothing.
        """
        week_start = week_start_for(week)
        if not ctx.has_family:
            logger.warning("Skipping shopping list sync: no family user=%s", ctx.user_id)
            return ShoppingListView(week_start=week_start, items=[])
        family_id = ctx.family_id

        days = await self._plans.get_plan(family_id, week_start) or []
        recipes = await self._catalog.get_many(set(iter_planned_recipe_ids(days)))
        fresh = aggregate(days, recipes)
        current = await self._store.list_items(family_id, week_start)
        result = reconcile(fresh, current)
        logger.info(
            "Shopping list sync family=%s week=%s recipes=%s aggregated=%s upserts=%s deletes=%s",
            family_id,
            week_start,
            len(recipes),
            len(fresh),
            len(result.upserts),
            len(result.deletes),
        )

        # Independent per-key deletes; whatever fails here is re-derived by the next sync.
        for stale_key, unit in result.deletes:
            try:
                await self._store.delete_item(ItemKey(family_id, week_start, stale_key, unit))
            except StoreError as exc:
                logger.warning(
                    "Failed to delete shopping item family=%s week=%s key=%s unit=%s: %s",
                    family_id,
                    week_start,
                    stale_key,
                    unit,
                    exc,
                )
        await self._store.upsert_items(family_id, week_start, result.upserts)
        return await self.get_shopping_list(ctx, week_start)

    async def refresh_shopping_list(self, ctx: PlannerContext, week: date) -> ShoppingListView:
        return await self.sync_shopping_list(ctx, week)

    async def toggle_item(
        self,
        ctx: PlannerContext,
        week: date,
        name: str,
        unit: str,
        checked: bool,
        name_secondary: Optional[str] = None,
    ) -> ShoppingItem:
        family_id = self._require_family(ctx)
        week_start = week_start_for(week)
        target = find_item(await self._store.list_items(family_id, week_start), name, unit, name_secondary)
        if target is None:
            raise LookupError(f"No shopping item '{name}' ({unit})")
        updated = await self._store.update_checked(target.key_for(family_id, week_start), ctx.user_id, checked)
        if updated is None:
            # Deleted between the lookup and the write.
            raise LookupError(f"No shopping item '{name}' ({unit})")
        return updated

    async def add_manual_item(
        self,
        ctx: PlannerContext,
        week: date,
        name: str,
        name_secondary: Optional[str],
        quantity: Any,
        unit: Optional[str],
    ) -> ManualAddResult:
        family_id = self._require_family(ctx)
        week_start = week_start_for(week)
        display_name = (name or "").strip()
        if not display_name:
            raise ValueError("Item name is required")
        secondary = (name_secondary or "").strip() or None
        canonical_unit = normalize_unit(unit) or normalize_unit(self._default_unit)
        amount = coerce_quantity(quantity, ingredient_name=display_name)

        items = await self._store.list_items(family_id, week_start)
        target = find_item(items, display_name, canonical_unit, secondary)
        if target is not None:
            last_touched = target.updated_at or target.created_at
            if last_touched and _utcnow() - last_touched < self._duplicate_window:
                logger.warning(
                    "Ignoring repeated add of recently modified item family=%s week=%s key=%s unit=%s",
                    family_id,
                    week_start,
                    target.ingredient_key,
                    target.unit,
                )
                return ManualAddResult(item=target, duplicate=True)
            key = target.key_for(family_id, week_start)
        else:
            key = ItemKey(family_id, week_start, ingredient_key(display_name, secondary), canonical_unit)

        item = await self._store.increment_item(
            key,
            amount,
            ingredient_name=display_name,
            ingredient_name_secondary=secondary,
        )
        return ManualAddResult(item=item)

    async def delete_item(
        self,
        ctx: PlannerContext,
        week: date,
        name: str,
        unit: str,
        name_secondary: Optional[str] = None,
    ) -> None:
        family_id = self._require_family(ctx)
        week_start = week_start_for(week)
        target = find_item(await self._store.list_items(family_id, week_start), name, unit, name_secondary)
        if target is None:
            raise LookupError(f"No shopping item '{name}' ({unit})")
        await self._store.delete_item(target.key_for(family_id, week_start))
