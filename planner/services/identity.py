from __future__ import annotations

import abc
import logging
from dataclasses import dataclass
from typing import Optional

from redis import asyncio as aioredis
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models import FamilyMember
from .stores import FallbackPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlannerContext:
    """Who is acting and on which family's data; passed explicitly to every operation."""

    user_id: str
    family_id: Optional[str] = None

    @property
    def has_family(self) -> bool:
        return bool(self.family_id)


class FamilyDirectory(abc.ABC):
    name = "abstract"

    @abc.abstractmethod
    async def family_for(self, user_id: str) -> Optional[str]:
        """The family the user belongs to, or None."""


class SqlFamilyDirectory(FamilyDirectory):
    name = "sql"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def family_for(self, user_id: str) -> Optional[str]:
        async with self._session_factory() as session:
            result = await session.execute(select(FamilyMember.family_id).where(FamilyMember.user_id == user_id))
            return result.scalar_one_or_none()


class RedisFamilyDirectory(FamilyDirectory):
    """Membership copies kept as plain keys, one per user."""

    name = "redis"

    def __init__(self, client: aioredis.Redis, *, prefix: str = "family") -> None:
        self._client = client
        self._prefix = prefix

    def _key(self, user_id: str) -> str:
        return f"{self._prefix}:member:{user_id}"

    async def family_for(self, user_id: str) -> Optional[str]:
        raw = await self._client.get(self._key(user_id))
        if raw is None:
            return None
        return raw.decode() if isinstance(raw, bytes) else str(raw)

    async def remember(self, user_id: str, family_id: Optional[str]) -> None:
        if family_id is None:
            await self._client.delete(self._key(user_id))
        else:
            await self._client.set(self._key(user_id), family_id)


class FallbackFamilyDirectory(FallbackPolicy, FamilyDirectory):
    name = "fallback"

    def __init__(
        self,
        primary: Optional[FamilyDirectory],
        secondary: Optional[RedisFamilyDirectory],
    ) -> None:
        super().__init__(primary, secondary, label="family directory")

    async def family_for(self, user_id: str) -> Optional[str]:
        family_id, by_primary = await self._call("family_for", user_id)
        if by_primary:
            await self._mirror("family_for", lambda directory: directory.remember(user_id, family_id))
        return family_id


async def resolve_context(directory: FallbackFamilyDirectory, user_id: str) -> PlannerContext:
    """Look up the caller's family.

    With no directory configured the caller is treated as family-less. When
    every configured backend fails, StoreError propagates.
    """
    if not directory.configured:
        logger.warning("Family lookup unavailable: no directory configured user=%s", user_id)
        return PlannerContext(user_id=user_id)
    family_id = await directory.family_for(user_id)
    return PlannerContext(user_id=user_id, family_id=family_id)
