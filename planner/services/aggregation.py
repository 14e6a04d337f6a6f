from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from ..domain import AggregatedEntry, DayPlan, Ingredient, Recipe
from ..models import MealKey
from .normalize import ingredient_name_keys, join_name_keys, normalize_name, normalize_unit

logger = logging.getLogger(__name__)

_LEADING_NUMBER_PATTERN = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)")
_MIXED_NUMBER_PATTERN = re.compile(r"^(\d+)\s+(\d+)/(\d+)")
_FRACTION_PATTERN = re.compile(r"^(\d+)/(\d+)")


def _parse_quantity(value: Any) -> Optional[float]:
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip().replace(",", ".")
    if not text:
        return 0.0
    mixed = _MIXED_NUMBER_PATTERN.match(text)
    if mixed and int(mixed.group(3)) != 0:
        return int(mixed.group(1)) + int(mixed.group(2)) / int(mixed.group(3))
    fraction = _FRACTION_PATTERN.match(text)
    if fraction and int(fraction.group(2)) != 0:
        return int(fraction.group(1)) / int(fraction.group(2))
    number = _LEADING_NUMBER_PATTERN.match(text)
    if number:
        return float(number.group(0))
    return None


def coerce_quantity(value: Any, *, ingredient_name: Optional[str] = None) -> float:
    """Coerce a recipe quantity to a float, substituting 0 for anything unparseable.

    Strings are read up to the first non-numeric character, so "200g" is 200.
    Decimal commas, "1/2" and "1 1/2" are understood. Values too large for a
    float count as unparseable.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        parsed = _parse_quantity(value)
    except (OverflowError, ValueError):
        parsed = None
    if parsed is not None and math.isfinite(parsed):
        return parsed
    logger.warning(
        "Invalid quantity %r for ingredient %r; using 0",
        value,
        ingredient_name,
    )
    return 0.0


class _NameKeyUnion:
    """Union-find over normalized name keys.

    Two mentions sharing any name key belong to the same ingredient, so
    "Milk" joins "Lapte"/"Milk" and "Flour"/"Făină" joins "Făină"/"Flour".
    """

    def __init__(self) -> None:
        self._parent: Dict[str, str] = {}

    def _find(self, key: str) -> str:
        self._parent.setdefault(key, key)
        root = key
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[key] != root:
            self._parent[key], key = root, self._parent[key]
        return root

    def link(self, keys: Sequence[str]) -> None:
        if not keys:
            return
        first = self._find(keys[0])
        for key in keys[1:]:
            other = self._find(key)
            if other != first:
                self._parent[other] = first

    def identity_keys(self) -> Dict[str, str]:
        members: Dict[str, List[str]] = {}
        for key in list(self._parent):
            members.setdefault(self._find(key), []).append(key)
        resolved: Dict[str, str] = {}
        for keys in members.values():
            joined = join_name_keys(keys)
            for key in keys:
                resolved[key] = joined
        return resolved


@dataclass
class _Mention:
    recipe_id: str
    name: str
    name_secondary: Optional[str]
    name_keys: List[str]
    quantity: float
    unit: str


@dataclass
class _Group:
    ingredient_key: str
    ingredient_name: str
    unit: str
    total_quantity: float = 0.0
    ingredient_name_secondary: Optional[str] = None
    recipe_ids: List[str] = field(default_factory=list)

    def add(self, mention: _Mention) -> None:
        self.total_quantity += mention.quantity
        if mention.recipe_id not in self.recipe_ids:
            self.recipe_ids.append(mention.recipe_id)
        if self.ingredient_name_secondary:
            return
        # A merged mention may carry the other locale's name as its primary one.
        display_key = normalize_name(self.ingredient_name)
        for candidate in (mention.name_secondary, mention.name):
            if candidate and normalize_name(candidate) != display_key:
                self.ingredient_name_secondary = candidate
                return


def iter_planned_recipe_ids(days: Iterable[DayPlan]) -> Iterator[str]:
    """Yield every non-empty slot's recipe id, in day/meal/slot order (with repeats)."""
    for day in days:
        for meal_key in MealKey.ALL:
            for slot in day.meals.get(meal_key) or []:
                if slot.recipe_id:
                    yield slot.recipe_id


def _collect_mentions(days: Iterable[DayPlan], recipes_by_id: Mapping[str, Recipe]) -> List[_Mention]:
    mentions: List[_Mention] = []
    missing: set[str] = set()
    for recipe_id in iter_planned_recipe_ids(days):
        recipe = recipes_by_id.get(recipe_id)
        if recipe is None:
            missing.add(recipe_id)
            continue
        for index, raw in enumerate(recipe.ingredients or []):
            ingredient = raw if isinstance(raw, Ingredient) else Ingredient.from_dict(raw)
            secondary = recipe.secondary_name_at(index, ingredient)
            name_keys = ingredient_name_keys(ingredient.name, secondary)
            if not name_keys:
                logger.debug("Skipping nameless ingredient %s in recipe %s", index, recipe_id)
                continue
            mentions.append(
                _Mention(
                    recipe_id=recipe_id,
                    name=ingredient.name,
                    name_secondary=secondary,
                    name_keys=name_keys,
                    quantity=coerce_quantity(ingredient.quantity, ingredient_name=ingredient.name),
                    unit=normalize_unit(ingredient.unit),
                )
            )
    if missing:
        logger.info("Skipping meal slots referencing unknown recipes: %s", sorted(missing))
    return mentions


def _suppress_zero_variants(groups: List[_Group]) -> List[_Group]:
    by_identity: Dict[str, List[_Group]] = {}
    for group in groups:
        by_identity.setdefault(group.ingredient_key, []).append(group)
    kept: List[_Group] = []
    for variants in by_identity.values():
        if len(variants) == 1:
            kept.extend(variants)
            continue
        positive = [group for group in variants if group.total_quantity > 0]
        if positive:
            kept.extend(positive)
        else:
            kept.append(variants[0])
    return kept


def aggregate(days: Iterable[DayPlan], recipes_by_id: Mapping[str, Recipe]) -> List[AggregatedEntry]:
    """Consolidate a week of meal slots into shopping entries.

    Quantities of the same ingredient in the same canonical unit are summed and
    the contributing recipe ids unioned. When an ingredient has several unit
    variants, zero-quantity variants are dropped as long as one is positive;
    if all are zero only the first one is kept.
    """
    mentions = _collect_mentions(days, recipes_by_id)
    union = _NameKeyUnion()
    for mention in mentions:
        union.link(mention.name_keys)
    identities = union.identity_keys()

    groups: Dict[Tuple[str, str], _Group] = {}
    for mention in mentions:
        identity = identities[mention.name_keys[0]]
        group = groups.get((identity, mention.unit))
        if group is None:
            group = _Group(
                ingredient_key=identity,
                ingredient_name=mention.name,
                unit=mention.unit,
            )
            groups[(identity, mention.unit)] = group
        group.add(mention)

    entries = [
        AggregatedEntry(
            ingredient_key=group.ingredient_key,
            ingredient_name=group.ingredient_name,
            ingredient_name_secondary=group.ingredient_name_secondary,
            unit=group.unit,
            total_quantity=group.total_quantity,
            recipe_ids=list(group.recipe_ids),
        )
        for group in _suppress_zero_variants(list(groups.values()))
    ]
    entries.sort(key=lambda entry: (entry.ingredient_name.lower(), entry.unit))
    return entries
