from __future__ import annotations

from redis import asyncio as aioredis

from .config import get_settings


def get_redis() -> aioredis.Redis | None:
    url = get_settings().redis_url
    if not url:
        return None
    return aioredis.from_url(url, decode_responses=True)
