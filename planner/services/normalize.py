from __future__ import annotations

import re
import unicodedata
from typing import Any, Iterable, List, Optional

NAME_KEY_SEPARATOR = "||"

_PUNCTUATION_PATTERN = re.compile(r"[^\w\s]|_")
_WHITESPACE_PATTERN = re.compile(r"\s+")

UNIT_ALIASES = {
    "tsp": "tsp", "teaspoon": "tsp", "teaspoons": "tsp",
    "tbsp": "tbsp", "tablespoon": "tbsp", "tablespoons": "tbsp", "tbs": "tbsp", "tbl": "tbsp",
    "g": "g", "gr": "g", "gram": "g", "grams": "g",
    "kg": "kg", "kilogram": "kg", "kilograms": "kg",
    "mg": "mg", "milligram": "mg", "milligrams": "mg",
    "ml": "ml", "milliliter": "ml", "milliliters": "ml", "millilitre": "ml", "millilitres": "ml",
    "l": "l", "liter": "l", "liters": "l", "litre": "l", "litres": "l", "lit": "l",
    "oz": "oz", "ounce": "oz", "ounces": "oz",
    "lb": "lb", "lbs": "lb", "pound": "lb", "pounds": "lb",
    "cup": "cup", "cups": "cup", "c": "cup",
    "pcs": "pcs", "piece": "pcs", "pieces": "pcs", "pc": "pcs",
    "pinch": "pinch", "pinches": "pinch",
    "pkg": "pkg", "pack": "pkg", "packet": "pkg", "package": "pkg", "packages": "pkg",
    "jar": "jar", "jars": "jar",
    "can": "can", "cans": "can",
    "bottle": "bottle", "bottles": "bottle",
    "slice": "slice", "slices": "slice",
    "clove": "clove", "cloves": "clove",
    "bag": "bag", "bags": "bag",
    "bunch": "bunch", "bunches": "bunch",
}


def normalize_name(raw: Any) -> str:
    """Turn a free-text ingredient name into a comparison key.

    Case and diacritics are folded ("Făină" and "faina" compare equal),
    punctuation is removed and whitespace collapsed. Never raises and is
    idempotent.
    """
    if raw is None:
        return ""
    text = unicodedata.normalize("NFKD", str(raw).casefold())
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = _PUNCTUATION_PATTERN.sub("", text)
    return _WHITESPACE_PATTERN.sub(" ", text).strip()


def normalize_unit(raw: Any) -> str:
    key = normalize_name(raw)
    return UNIT_ALIASES.get(key, key)


def ingredient_name_keys(name: Any, name_secondary: Any = None) -> List[str]:
    keys: List[str] = []
    for candidate in (name, name_secondary):
        normalized = normalize_name(candidate)
        if normalized and normalized not in keys:
            keys.append(normalized)
    return keys


def join_name_keys(keys: Iterable[str]) -> str:
    return NAME_KEY_SEPARATOR.join(sorted({key for key in keys if key}))


def split_name_keys(ingredient_key: Optional[str]) -> List[str]:
    if not ingredient_key:
        return []
    return [part for part in ingredient_key.split(NAME_KEY_SEPARATOR) if part]


def ingredient_key(name: Any, name_secondary: Any = None) -> str:
    """Key of a single mention, ignoring any other mention it might be linked to."""
    return join_name_keys(ingredient_name_keys(name, name_secondary))
