from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Set, Tuple

from ..domain import AggregatedEntry, ShoppingItem
from .normalize import split_name_keys

MatchKey = Tuple[str, str]


@dataclass
class ReconcileResult:
    upserts: List[ShoppingItem] = field(default_factory=list)
    deletes: List[MatchKey] = field(default_factory=list)


def _index_by_name_key(previous: Sequence[ShoppingItem]) -> Dict[MatchKey, List[ShoppingItem]]:
    index: Dict[MatchKey, List[ShoppingItem]] = {}
    for item in previous:
        if item.is_manual:
            continue
        for name_key in split_name_keys(item.ingredient_key):
            index.setdefault((name_key, item.unit), []).append(item)
    return index


def _previous_for(
    entry: AggregatedEntry,
    by_key: Dict[MatchKey, ShoppingItem],
    by_name_key: Dict[MatchKey, List[ShoppingItem]],
) -> List[ShoppingItem]:
    existing = by_key.get(entry.match_key)
    if existing is not None:
        return [existing]
    # The identity key grows or shrinks as linked names enter or leave the week.
    matched: List[ShoppingItem] = []
    for name_key in split_name_keys(entry.ingredient_key):
        for item in by_name_key.get((name_key, entry.unit), []):
            if item not in matched:
                matched.append(item)
    return matched


def _merged_checked_by(items: Sequence[ShoppingItem]) -> List[str]:
    members: List[str] = []
    for item in items:
        for member in item.checked_by:
            if member not in members:
                members.append(member)
    return members


def reconcile(
    fresh: Sequence[AggregatedEntry],
    previous: Sequence[ShoppingItem],
) -> ReconcileResult:
    """Diff a fresh aggregation against the persisted list of the same week.

    Items match on (ingredient_key, unit); a planned item whose key only
    gained or lost a linked name still matches every previous planned item
    sharing a name in the same unit, and their checks are unioned. A unit
    change is a new, unchecked item.

    Hand-added quantity is kept on top of the planned quantity. An item that
    is no longer planned is deleted, unless part of it was added by hand: it
    then reverts to a manual item holding only that part.
    """
    by_key: Dict[MatchKey, ShoppingItem] = {item.match_key: item for item in previous}
    by_name_key = _index_by_name_key(previous)

    upserts: List[ShoppingItem] = []
    fresh_keys: Set[MatchKey] = {entry.match_key for entry in fresh}
    absorbed: Set[MatchKey] = set()
    for entry in fresh:
        matched = _previous_for(entry, by_key, by_name_key)
        checked_by = _merged_checked_by(matched)
        if matched and not checked_by:
            checked = any(item.checked for item in matched)
        else:
            checked = bool(checked_by)
        manual = 0.0
        for item in matched:
            # A previous item split across several entries hands its manual part to the first only.
            if item.match_key not in absorbed:
                manual += item.manual_part
                absorbed.add(item.match_key)
        upserts.append(
            ShoppingItem(
                ingredient_key=entry.ingredient_key,
                ingredient_name=entry.ingredient_name,
                ingredient_name_secondary=entry.ingredient_name_secondary,
                unit=entry.unit,
                total_quantity=float(entry.total_quantity) + manual,
                checked=checked,
                checked_by=checked_by,
                recipe_ids=list(entry.recipe_ids),
                manual_quantity=manual,
            )
        )

    deletes: List[MatchKey] = []
    for item in previous:
        if item.is_manual or item.match_key in fresh_keys:
            continue
        if item.match_key not in absorbed and item.manual_part > 0:
            upserts.append(
                item.copy(
                    total_quantity=item.manual_part,
                    manual_quantity=item.manual_part,
                    recipe_ids=[],
                    created_at=None,
                    updated_at=None,
                )
            )
        else:
            deletes.append(item.match_key)
    return ReconcileResult(upserts=upserts, deletes=deletes)
