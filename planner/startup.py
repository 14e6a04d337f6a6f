from __future__ import annotations

from typing import Iterable, Tuple

import structlog

from .config import Settings

logger = structlog.get_logger(__name__)


def _collect_missing(settings: Settings, pairs: Iterable[Tuple[str, str]]) -> list[str]:
    missing: list[str] = []
    for attr, label in pairs:
        value = getattr(settings, attr, None)
        if value in (None, "", [], {}):
            missing.append(label)
    return missing


def validate_settings(settings: Settings) -> None:
    """Fail fast when a deployed environment cannot reach either store or verify tokens."""
    environment = (settings.environment or "dev").lower()

    store_missing = _collect_missing(
        settings,
        [
            ("database_url", "DATABASE_URL"),
            ("redis_url", "REDIS_URL"),
        ],
    )
    if environment in ("dev", "test"):
        if store_missing:
            logger.warning(
                "Running without both stores configured; store fallback is unavailable",
                missing=store_missing,
            )
        return

    # With both stores absent every shopping list call would fail.
    if len(store_missing) == 2:
        raise RuntimeError(
            f"Missing required configuration for environment '{environment}': "
            "at least one of DATABASE_URL or REDIS_URL"
        )
    if store_missing:
        logger.warning("Only one store configured; fallback disabled", missing=store_missing)

    required_pairs: list[Tuple[str, str]] = []
    if not settings.auth_disable_verification:
        required_pairs.extend(
            [
                ("clerk_issuer", "CLERK_ISSUER"),
                ("clerk_audience", "CLERK_AUDIENCE"),
            ]
        )

    missing = _collect_missing(settings, required_pairs)
    if missing:
        raise RuntimeError(
            f"Missing required configuration for environment '{environment}': {', '.join(sorted(missing))}"
        )
