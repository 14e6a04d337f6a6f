from __future__ import annotations

import os
from fastapi import APIRouter
from ..config import get_settings
from ..db import get_session_factory


router = APIRouter()


@router.get("/health")
def health():
    s = get_settings()
    return {
        "status": "ok",
        "service": s.app_name,
        "env": s.environment,
        "pid": os.getpid(),
        "stores": {
            "sql": get_session_factory() is not None,
            "redis": bool(s.redis_url),
        },
    }
