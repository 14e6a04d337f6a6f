"""Persistence for shopping items and week plans.

Each concern has one interface with two implementations: the primary
structured store (SQL through async SQLAlchemy) and the secondary document
store (Redis hashes of JSON documents). `FallbackPolicy` is the only
fallback policy: try the primary, on any failure make exactly one attempt on
the secondary, and copy writes the primary served to the secondary.
"""

from __future__ import annotations

import abc
import json
import logging
from datetime import date, datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from redis import asyncio as aioredis
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..domain import DayPlan, ItemKey, ShoppingItem
from ..models import ShoppingItemRecord, WeekPlanRecord
from .checked_state import apply_toggle

logger = logging.getLogger(__name__)


class StoreError(RuntimeError):
    """Raised when neither backend could serve a persistence call."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands timestamps back without tzinfo; everything is stored as UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _same_content(current: ShoppingItem, incoming: ShoppingItem) -> bool:
    return (
        current.ingredient_name == incoming.ingredient_name
        and current.ingredient_name_secondary == incoming.ingredient_name_secondary
        and float(current.total_quantity) == float(incoming.total_quantity)
        and bool(current.checked) == bool(incoming.checked)
        and list(current.checked_by) == list(incoming.checked_by)
        and list(current.recipe_ids) == list(incoming.recipe_ids)
        and float(current.manual_quantity) == float(incoming.manual_quantity)
    )


def _days_to_json(days: Sequence[DayPlan]) -> List[Dict[str, Any]]:
    return [day.to_dict() for day in days]


def _days_from_json(raw: Any) -> List[DayPlan]:
    return [DayPlan.from_dict(entry) for entry in raw or [] if isinstance(entry, dict)]


class ShoppingItemStore(abc.ABC):
    name = "shopping"

    @abc.abstractmethod
    async def list_items(self, family_id: str, week_start: date) -> List[ShoppingItem]:
        ...

    @abc.abstractmethod
    async def get_item(self, key: ItemKey) -> Optional[ShoppingItem]:
        ...

    @abc.abstractmethod
    async def upsert_items(self, family_id: str, week_start: date, items: Sequence[ShoppingItem]) -> None:
        """Write items by key, replacing every attribute except timestamps."""

    @abc.abstractmethod
    async def increment_item(
        self,
        key: ItemKey,
        quantity: float,
        *,
        ingredient_name: str,
        ingredient_name_secondary: Optional[str] = None,
    ) -> ShoppingItem:
        """Add to an item's quantity, creating it as a manual item when missing."""

    @abc.abstractmethod
    async def update_checked(self, key: ItemKey, user_id: str, checked: bool) -> Optional[ShoppingItem]:
        """Read-modify-write of the checked-by set; None when the item does not exist."""

    @abc.abstractmethod
    async def delete_item(self, key: ItemKey) -> bool:
        ...


class WeekPlanStore(abc.ABC):
    name = "week_plan"

    @abc.abstractmethod
    async def get_plan(self, family_id: str, week_start: date) -> Optional[List[DayPlan]]:
        ...

    @abc.abstractmethod
    async def create_plan(self, family_id: str, week_start: date, days: Sequence[DayPlan]) -> List[DayPlan]:
        """Create the plan unless one exists; return whichever plan is stored."""

    @abc.abstractmethod
    async def save_plan(self, family_id: str, week_start: date, days: Sequence[DayPlan]) -> None:
        ...


# --------------------------------------------------------------------------- SQL


def _record_to_item(record: ShoppingItemRecord) -> ShoppingItem:
    return ShoppingItem(
        ingredient_key=record.ingredient_key,
        ingredient_name=record.ingredient_name,
        ingredient_name_secondary=record.ingredient_name_secondary,
        unit=record.unit,
        total_quantity=float(record.total_quantity or 0.0),
        checked=bool(record.checked),
        checked_by=list(record.checked_by or []),
        recipe_ids=list(record.recipe_ids or []),
        manual_quantity=float(record.manual_quantity or 0.0),
        created_at=ensure_utc(record.created_at),
        updated_at=ensure_utc(record.updated_at),
    )


def _key_clause(key: ItemKey) -> tuple:
    return (
        ShoppingItemRecord.family_id == key.family_id,
        ShoppingItemRecord.week_start == key.week_start,
        ShoppingItemRecord.ingredient_key == key.ingredient_key,
        ShoppingItemRecord.unit == key.unit,
    )


async def _commit(session: AsyncSession) -> None:
    try:
        await session.commit()
    except Exception:
        await session.rollback()
        raise


class SqlShoppingItemStore(ShoppingItemStore):
    name = "sql"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def list_items(self, family_id: str, week_start: date) -> List[ShoppingItem]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ShoppingItemRecord)
                .where(
                    ShoppingItemRecord.family_id == family_id,
                    ShoppingItemRecord.week_start == week_start,
                )
                .order_by(ShoppingItemRecord.ingredient_name, ShoppingItemRecord.unit)
            )
            return [_record_to_item(record) for record in result.scalars().all()]

    async def get_item(self, key: ItemKey) -> Optional[ShoppingItem]:
        async with self._session_factory() as session:
            result = await session.execute(select(ShoppingItemRecord).where(*_key_clause(key)))
            record = result.scalar_one_or_none()
            return _record_to_item(record) if record else None

    async def upsert_items(self, family_id: str, week_start: date, items: Sequence[ShoppingItem]) -> None:
        if not items:
            return
        try:
            await self._upsert_once(family_id, week_start, items)
        except IntegrityError:
            # A concurrent sync inserted one of the keys first; the second pass updates it.
            logger.info("Concurrent insert on shopping items family=%s week=%s; retrying as update", family_id, week_start)
            await self._upsert_once(family_id, week_start, items)

    async def _upsert_once(self, family_id: str, week_start: date, items: Sequence[ShoppingItem]) -> None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ShoppingItemRecord).where(
                    ShoppingItemRecord.family_id == family_id,
                    ShoppingItemRecord.week_start == week_start,
                    ShoppingItemRecord.ingredient_key.in_(sorted({item.ingredient_key for item in items})),
                )
            )
            existing = {(record.ingredient_key, record.unit): record for record in result.scalars().all()}
            now = _utcnow()
            for item in items:
                record = existing.get(item.match_key)
                if record is None:
                    record = ShoppingItemRecord(
                        family_id=family_id,
                        week_start=week_start,
                        ingredient_key=item.ingredient_key,
                        unit=item.unit,
                        created_at=now,
                    )
                    session.add(record)
                    existing[item.match_key] = record
                elif _same_content(_record_to_item(record), item):
                    continue
                record.ingredient_name = item.ingredient_name
                record.ingredient_name_secondary = item.ingredient_name_secondary
                record.total_quantity = float(item.total_quantity)
                record.checked = bool(item.checked)
                record.checked_by = list(item.checked_by)
                record.recipe_ids = list(item.recipe_ids)
                record.manual_quantity = float(item.manual_quantity)
                record.updated_at = now
            await _commit(session)

    async def increment_item(
        self,
        key: ItemKey,
        quantity: float,
        *,
        ingredient_name: str,
        ingredient_name_secondary: Optional[str] = None,
    ) -> ShoppingItem:
        increment = (
            update(ShoppingItemRecord)
            .where(*_key_clause(key))
            .values(
                total_quantity=ShoppingItemRecord.total_quantity + quantity,
                manual_quantity=ShoppingItemRecord.manual_quantity + quantity,
                updated_at=_utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as session:
            result = await session.execute(increment)
            if not result.rowcount:
                now = _utcnow()
                session.add(
                    ShoppingItemRecord(
                        family_id=key.family_id,
                        week_start=key.week_start,
                        ingredient_key=key.ingredient_key,
                        ingredient_name=ingredient_name,
                        ingredient_name_secondary=ingredient_name_secondary,
                        unit=key.unit,
                        total_quantity=float(quantity),
                        checked=False,
                        checked_by=[],
                        recipe_ids=[],
                        manual_quantity=float(quantity),
                        created_at=now,
                        updated_at=now,
                    )
                )
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                await session.execute(increment)
                await _commit(session)
            fetched = await session.execute(select(ShoppingItemRecord).where(*_key_clause(key)))
            return _record_to_item(fetched.scalar_one())

    async def update_checked(self, key: ItemKey, user_id: str, checked: bool) -> Optional[ShoppingItem]:
        async with self._session_factory() as session:
            # Row lock on PostgreSQL keeps concurrent toggles from dropping each other.
            result = await session.execute(
                select(ShoppingItemRecord).where(*_key_clause(key)).with_for_update()
            )
            record = result.scalar_one_or_none()
            if record is None:
                return None
            state = apply_toggle(record.checked_by, user_id, checked)
            record.checked_by = state.checked_by
            record.checked = state.checked
            record.updated_at = _utcnow()
            item = _record_to_item(record)
            await _commit(session)
            return item

    async def delete_item(self, key: ItemKey) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(ShoppingItemRecord)
                .where(*_key_clause(key))
                .execution_options(synchronize_session=False)
            )
            await _commit(session)
            return bool(result.rowcount)


class SqlWeekPlanStore(WeekPlanStore):
    name = "sql"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _load(self, session: AsyncSession, family_id: str, week_start: date) -> Optional[WeekPlanRecord]:
        result = await session.execute(
            select(WeekPlanRecord).where(
                WeekPlanRecord.family_id == family_id,
                WeekPlanRecord.start_date == week_start,
            )
        )
        return result.scalar_one_or_none()

    async def get_plan(self, family_id: str, week_start: date) -> Optional[List[DayPlan]]:
        async with self._session_factory() as session:
            record = await self._load(session, family_id, week_start)
            return _days_from_json(record.days) if record else None

    async def create_plan(self, family_id: str, week_start: date, days: Sequence[DayPlan]) -> List[DayPlan]:
        async with self._session_factory() as session:
            session.add(WeekPlanRecord(family_id=family_id, start_date=week_start, days=_days_to_json(days)))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                existing = await self._load(session, family_id, week_start)
                if existing is None:
                    raise
                return _days_from_json(existing.days)
        return list(days)

    async def save_plan(self, family_id: str, week_start: date, days: Sequence[DayPlan]) -> None:
        async with self._session_factory() as session:
            record = await self._load(session, family_id, week_start)
            if record is None:
                record = WeekPlanRecord(family_id=family_id, start_date=week_start)
                session.add(record)
            record.days = _days_to_json(days)
            record.updated_at = _utcnow()
            await _commit(session)


# ------------------------------------------------------------------------- Redis


class RedisShoppingItemStore(ShoppingItemStore):
    """Shopping items as JSON documents in one Redis hash per family and week."""

    name = "redis"

    def __init__(self, client: aioredis.Redis, *, prefix: str = "shopping") -> None:
        self._client = client
        self._prefix = prefix

    def _hash_name(self, family_id: str, week_start: date) -> str:
        return f"{self._prefix}:{family_id}:{week_start.isoformat()}"

    async def _read(self, key: ItemKey) -> Optional[ShoppingItem]:
        raw = await self._client.hget(self._hash_name(key.family_id, key.week_start), key.hash_field)
        return ShoppingItem.from_document(json.loads(raw)) if raw else None

    async def _write(self, key: ItemKey, item: ShoppingItem) -> None:
        await self._client.hset(
            self._hash_name(key.family_id, key.week_start),
            key.hash_field,
            json.dumps(item.to_document()),
        )

    async def list_items(self, family_id: str, week_start: date) -> List[ShoppingItem]:
        raw = await self._client.hgetall(self._hash_name(family_id, week_start))
        items = [ShoppingItem.from_document(json.loads(value)) for value in (raw or {}).values()]
        items.sort(key=lambda item: (item.ingredient_name, item.unit))
        return items

    async def get_item(self, key: ItemKey) -> Optional[ShoppingItem]:
        return await self._read(key)

    async def upsert_items(self, family_id: str, week_start: date, items: Sequence[ShoppingItem]) -> None:
        if not items:
            return
        hash_name = self._hash_name(family_id, week_start)
        current = {
            field: ShoppingItem.from_document(json.loads(value))
            for field, value in (await self._client.hgetall(hash_name) or {}).items()
        }
        now = _utcnow()
        mapping: Dict[str, str] = {}
        for item in items:
            field = item.key_for(family_id, week_start).hash_field
            previous = current.get(field)
            if previous is not None and _same_content(previous, item):
                continue
            document = item.copy(
                created_at=previous.created_at if previous and previous.created_at else now,
                updated_at=now,
            ).to_document()
            mapping[field] = json.dumps(document)
        if mapping:
            await self._client.hset(hash_name, mapping=mapping)

    async def increment_item(
        self,
        key: ItemKey,
        quantity: float,
        *,
        ingredient_name: str,
        ingredient_name_secondary: Optional[str] = None,
    ) -> ShoppingItem:
        now = _utcnow()
        item = await self._read(key)
        if item is None:
            item = ShoppingItem(
                ingredient_key=key.ingredient_key,
                ingredient_name=ingredient_name,
                ingredient_name_secondary=ingredient_name_secondary,
                unit=key.unit,
                total_quantity=float(quantity),
                manual_quantity=float(quantity),
                created_at=now,
                updated_at=now,
            )
        else:
            item = item.copy(
                total_quantity=float(item.total_quantity) + float(quantity),
                manual_quantity=item.manual_part + float(quantity),
                updated_at=now,
            )
        await self._write(key, item)
        return item

    async def update_checked(self, key: ItemKey, user_id: str, checked: bool) -> Optional[ShoppingItem]:
        # Plain read-modify-write: two members toggling the same item at the same
        # instant can race here and one contribution may be lost.
        item = await self._read(key)
        if item is None:
            return None
        state = apply_toggle(item.checked_by, user_id, checked)
        item = item.copy(checked_by=state.checked_by, checked=state.checked, updated_at=_utcnow())
        await self._write(key, item)
        return item

    async def delete_item(self, key: ItemKey) -> bool:
        removed = await self._client.hdel(self._hash_name(key.family_id, key.week_start), key.hash_field)
        return bool(removed)


class RedisWeekPlanStore(WeekPlanStore):
    name = "redis"

    def __init__(self, client: aioredis.Redis, *, prefix: str = "weekplan") -> None:
        self._client = client
        self._prefix = prefix

    def _key(self, family_id: str, week_start: date) -> str:
        return f"{self._prefix}:{family_id}:{week_start.isoformat()}"

    async def get_plan(self, family_id: str, week_start: date) -> Optional[List[DayPlan]]:
        raw = await self._client.get(self._key(family_id, week_start))
        return _days_from_json(json.loads(raw)) if raw else None

    async def create_plan(self, family_id: str, week_start: date, days: Sequence[DayPlan]) -> List[DayPlan]:
        key = self._key(family_id, week_start)
        created = await self._client.set(key, json.dumps(_days_to_json(days)), nx=True)
        if created:
            return list(days)
        raw = await self._client.get(key)
        return _days_from_json(json.loads(raw)) if raw else list(days)

    async def save_plan(self, family_id: str, week_start: date, days: Sequence[DayPlan]) -> None:
        await self._client.set(self._key(family_id, week_start), json.dumps(_days_to_json(days)))




# ---------------------------------------------------------------------- Fallback


class FallbackPolicy:
    """Primary first, one attempt on the secondary when it fails.

    Writes served by the primary are then mirrored to the secondary so it can
    answer reads during a later primary outage. A failed mirror is logged and
    does not fail the write; the next write of the same data repairs it.
    """

    def __init__(self, primary: Any, secondary: Any, *, label: str) -> None:
        self._primary = primary
        self._secondary = secondary
        self._label = label

    @property
    def configured(self) -> bool:
        return self._primary is not None or self._secondary is not None

    async def _call(self, operation: str, *args: Any, **kwargs: Any) -> Tuple[Any, bool]:
        """Run `operation`; the flag tells whether the primary served it."""
        if not self.configured:
            raise StoreError(f"No {self._label} store configured")
        if self._primary is not None:
            try:
                return await getattr(self._primary, operation)(*args, **kwargs), True
            except Exception as exc:
                if self._secondary is None:
                    raise StoreError(f"{self._label} store failed during {operation}") from exc
                logger.warning(
                    "Primary %s store (%s) failed during %s; falling back to %s: %s",
                    self._label,
                    self._primary.name,
                    operation,
                    self._secondary.name,
                    exc,
                )
        try:
            return await getattr(self._secondary, operation)(*args, **kwargs), False
        except Exception as exc:
            logger.error("Secondary %s store failed during %s: %s", self._label, operation, exc)
            raise StoreError(f"{self._label} store failed during {operation}") from exc

    async def _run(self, operation: str, *args: Any, **kwargs: Any) -> Any:
        result, _ = await self._call(operation, *args, **kwargs)
        return result

    async def _mirror(self, operation: str, write: Callable[[Any], Awaitable[Any]]) -> None:
        if self._secondary is None:
            return
        try:
            await write(self._secondary)
        except Exception as exc:
            logger.warning(
                "Could not mirror %s to secondary %s store (%s): %s",
                operation,
                self._label,
                self._secondary.name,
                exc,
            )


class FallbackShoppingItemStore(FallbackPolicy, ShoppingItemStore):
    name = "fallback"

    def __init__(
        self,
        primary: Optional[ShoppingItemStore],
        secondary: Optional[ShoppingItemStore],
    ) -> None:
        super().__init__(primary, secondary, label="shopping item")

    async def list_items(self, family_id: str, week_start: date) -> List[ShoppingItem]:
        return await self._run("list_items", family_id, week_start)

    async def get_item(self, key: ItemKey) -> Optional[ShoppingItem]:
        return await self._run("get_item", key)

    async def upsert_items(self, family_id: str, week_start: date, items: Sequence[ShoppingItem]) -> None:
        _, by_primary = await self._call("upsert_items", family_id, week_start, items)
        if by_primary:
            await self._mirror("upsert_items", lambda store: store.upsert_items(family_id, week_start, items))

    async def increment_item(
        self,
        key: ItemKey,
        quantity: float,
        *,
        ingredient_name: str,
        ingredient_name_secondary: Optional[str] = None,
    ) -> ShoppingItem:
        item, by_primary = await self._call(
            "increment_item",
            key,
            quantity,
            ingredient_name=ingredient_name,
            ingredient_name_secondary=ingredient_name_secondary,
        )
        if by_primary:
            # Copy the primary's result rather than repeating the increment on possibly stale data.
            await self._mirror(
                "increment_item",
                lambda store: store.upsert_items(key.family_id, key.week_start, [item]),
            )
        return item

    async def update_checked(self, key: ItemKey, user_id: str, checked: bool) -> Optional[ShoppingItem]:
        item, by_primary = await self._call("update_checked", key, user_id, checked)
        if by_primary and item is not None:
            await self._mirror(
                "update_checked",
                lambda store: store.upsert_items(key.family_id, key.week_start, [item]),
            )
        return item

    async def delete_item(self, key: ItemKey) -> bool:
        removed, by_primary = await self._call("delete_item", key)
        if by_primary:
            await self._mirror("delete_item", lambda store: store.delete_item(key))
        return removed


class FallbackWeekPlanStore(FallbackPolicy, WeekPlanStore):
    name = "fallback"

    def __init__(self, primary: Optional[WeekPlanStore], secondary: Optional[WeekPlanStore]) -> None:
        super().__init__(primary, secondary, label="week plan")

    async def get_plan(self, family_id: str, week_start: date) -> Optional[List[DayPlan]]:
        return await self._run("get_plan", family_id, week_start)

    async def create_plan(self, family_id: str, week_start: date, days: Sequence[DayPlan]) -> List[DayPlan]:
        stored, by_primary = await self._call("create_plan", family_id, week_start, days)
        if by_primary:
            await self._mirror("create_plan", lambda store: store.save_plan(family_id, week_start, stored))
        return stored

    async def save_plan(self, family_id: str, week_start: date, days: Sequence[DayPlan]) -> None:
        _, by_primary = await self._call("save_plan", family_id, week_start, days)
        if by_primary:
            await self._mirror("save_plan", lambda store: store.save_plan(family_id, week_start, days))
