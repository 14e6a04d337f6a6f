"""Plain data types shared by the aggregation, reconciliation and store layers."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Any, Dict, List, Optional


@dataclass
class Ingredient:
    name: str
    quantity: Any = 0
    unit: str = ""
    name_secondary: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Ingredient":
        data = data or {}
        return cls(
            name=str(data.get("name") or ""),
            quantity=data.get("quantity", 0),
            unit=str(data.get("unit") or ""),
            name_secondary=data.get("name_secondary") or data.get("name_ro") or None,
        )

    @classmethod
    def list_from(cls, entries: Any) -> List["Ingredient"]:
        """Parse a stored ingredient list, keeping malformed entries as nameless placeholders.

        Primary and secondary ingredient lists are index-aligned, so nothing
        may be dropped here.
        """
        return [cls.from_dict(entry) if isinstance(entry, dict) else cls(name="") for entry in entries or []]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "quantity": self.quantity,
            "unit": self.unit,
            "name_secondary": self.name_secondary,
        }


@dataclass
class Recipe:
    id: str
    name: str
    ingredients: List[Ingredient] = field(default_factory=list)
    name_secondary: Optional[str] = None
    # Index-aligned with `ingredients` when present.
    ingredients_secondary: Optional[List[Ingredient]] = None
    family_id: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None

    def secondary_name_at(self, index: int, ingredient: Ingredient) -> Optional[str]:
        if ingredient.name_secondary:
            return ingredient.name_secondary
        if self.ingredients_secondary and 0 <= index < len(self.ingredients_secondary):
            return self.ingredients_secondary[index].name or None
        return None

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "name_secondary": self.name_secondary,
            "ingredients": [ingredient.to_dict() for ingredient in self.ingredients],
            "ingredients_secondary": (
                [ingredient.to_dict() for ingredient in self.ingredients_secondary]
                if self.ingredients_secondary is not None
                else None
            ),
            "family_id": self.family_id,
            "created_by": self.created_by,
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "Recipe":
        secondary = data.get("ingredients_secondary")
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            name_secondary=data.get("name_secondary") or None,
            ingredients=Ingredient.list_from(data.get("ingredients")),
            ingredients_secondary=Ingredient.list_from(secondary) if isinstance(secondary, list) else None,
            family_id=data.get("family_id"),
            created_by=data.get("created_by"),
        )


@dataclass
class MealSlot:
    recipe_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"recipe_id": self.recipe_id}


@dataclass
class DayPlan:
    date: date
    meals: Dict[str, List[MealSlot]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DayPlan":
        raw_date = data.get("date")
        day = raw_date if isinstance(raw_date, date) else date.fromisoformat(str(raw_date))
        meals: Dict[str, List[MealSlot]] = {}
        for key, slots in (data.get("meals") or {}).items():
            meals[key] = [MealSlot(recipe_id=(slot or {}).get("recipe_id")) for slot in slots or []]
        return cls(date=day, meals=meals)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "meals": {key: [slot.to_dict() for slot in slots] for key, slots in self.meals.items()},
        }


@dataclass
class AggregatedEntry:
    ingredient_key: str
    ingredient_name: str
    unit: str
    total_quantity: float
    recipe_ids: List[str] = field(default_factory=list)
    ingredient_name_secondary: Optional[str] = None

    @property
    def match_key(self) -> tuple[str, str]:
        return (self.ingredient_key, self.unit)


@dataclass(frozen=True)
class ItemKey:
    family_id: str
    week_start: date
    ingredient_key: str
    unit: str

    @property
    def hash_field(self) -> str:
        return f"{self.ingredient_key}|{self.unit}"


@dataclass
class ShoppingItem:
    ingredient_key: str
    ingredient_name: str
    unit: str
    total_quantity: float = 0.0
    ingredient_name_secondary: Optional[str] = None
    checked: bool = False
    checked_by: List[str] = field(default_factory=list)
    recipe_ids: List[str] = field(default_factory=list)
    # Share of total_quantity added by hand; survives re-aggregation.
    manual_quantity: float = 0.0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def match_key(self) -> tuple[str, str]:
        return (self.ingredient_key, self.unit)

    @property
    def is_manual(self) -> bool:
        return not self.recipe_ids

    @property
    def manual_part(self) -> float:
        if self.manual_quantity:
            return float(self.manual_quantity)
        # Rows written before manual_quantity existed: a manual item is all manual.
        return float(self.total_quantity) if self.is_manual else 0.0

    def key_for(self, family_id: str, week_start: date) -> ItemKey:
        return ItemKey(family_id, week_start, self.ingredient_key, self.unit)

    def copy(self, **changes: Any) -> "ShoppingItem":
        changes.setdefault("checked_by", list(self.checked_by))
        changes.setdefault("recipe_ids", list(self.recipe_ids))
        return replace(self, **changes)

    def to_document(self) -> Dict[str, Any]:
        """Serialise to the persisted item shape."""
        return {
            "ingredient_key": self.ingredient_key,
            "ingredient_name": self.ingredient_name,
            "ingredient_name_secondary": self.ingredient_name_secondary,
            "total_quantity": float(self.total_quantity),
            "unit": self.unit,
            "checked": self.checked,
            "checked_by": list(self.checked_by),
            "recipe_ids": list(self.recipe_ids),
            "manual_quantity": float(self.manual_quantity),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "ShoppingItem":
        def _ts(value: Any) -> Optional[datetime]:
            if not value:
                return None
            return value if isinstance(value, datetime) else datetime.fromisoformat(str(value))

        return cls(
            ingredient_key=str(data.get("ingredient_key") or ""),
            ingredient_name=str(data.get("ingredient_name") or ""),
            ingredient_name_secondary=data.get("ingredient_name_secondary") or None,
            unit=str(data.get("unit") or ""),
            total_quantity=float(data.get("total_quantity") or 0.0),
            checked=bool(data.get("checked")),
            checked_by=list(data.get("checked_by") or []),
            recipe_ids=list(data.get("recipe_ids") or []),
            manual_quantity=float(data.get("manual_quantity") or 0.0),
            created_at=_ts(data.get("created_at")),
            updated_at=_ts(data.get("updated_at")),
        )
