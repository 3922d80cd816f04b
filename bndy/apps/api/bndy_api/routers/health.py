"""Liveness and readiness endpoints."""

import logging
from typing import Callable

from fastapi import APIRouter, Response, status
from sqlalchemy import text

from bndy_api import __version__
from bndy_api.auth.provider_bridge import get_provider_registry
from bndy_api.db.redis_client import RedisClient
from bndy_api.db.session import engine
from bndy_api.schemas import HealthResponse

router = APIRouter()
logger = logging.getLogger(__name__)


def _probe(name: str, check: Callable[[], None]) -> str:
    """Run ``check``; "up" on success, "down: <error type>" otherwise."""
    try:
        check()
        return "up"
    except Exception as e:
        # Error text can carry connection strings; log it, report the type only
        logger.error(
            f"{name} health check failed",
            extra={"event": "health.check.failed", "service": name, "error_type": type(e).__name__},
            exc_info=True,
        )
        return f"down: {type(e).__name__}"


def _ping_database() -> None:
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))


def check_database() -> str:
    return _probe("database", _ping_database)


def check_redis() -> str:
    """OTP codes, magic links, OAuth state and throttles all live in Redis."""
    return _probe("redis", lambda: RedisClient.get_client().ping())


def check_providers() -> str:
    """Provider settings are complete (raises on missing OAUTH_<NAME>_* values)."""
    return _probe("oauth", get_provider_registry)


@router.get("/health", response_model=HealthResponse)
def health_check() -> HealthResponse:
    """Liveness: always 200 while the process serves requests."""
    return HealthResponse(status="healthy", version=__version__, services={"api": "up"})


@router.get("/readyz", response_model=HealthResponse)
def readiness_check(response: Response) -> HealthResponse:
    """Readiness: 503 while the database, Redis or provider config is unusable."""
    services = {
        "api": "up",
        "database": check_database(),
        "redis": check_redis(),
        "oauth": check_providers(),
    }

    if any(svc_status.startswith("down") for svc_status in services.values()):
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", version=__version__, services=services)

    return HealthResponse(status="ready", version=__version__, services=services)
