from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence


@dataclass
class CheckedState:
    checked_by: List[str]
    checked: bool


def apply_toggle(checked_by: Sequence[str] | None, user_id: str, checked: bool) -> CheckedState:
    """Add or remove one household member from an item's checked-by set.

    The item reads as checked while anyone still has it checked, so a
    member un-checking only clears it once every other checker has too.
    """
    members = [member for member in (checked_by or []) if member]
    if checked:
        if user_id not in members:
            members.append(user_id)
    else:
        members = [member for member in members if member != user_id]
    return CheckedState(checked_by=members, checked=bool(members))
