"""
Services Router
Discovered services with profiling enabled.

Discovery itself happens outside this API; a discovery job PUTs what it
found and readers GET it back (optionally filtered by environment prefix)
until the cache TTL runs out.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field

from app.services_cache import ServiceInfo, ServicesCache

logger = logging.getLogger(__name__)


# =============================================================================
# Request/Response Models
# =============================================================================

class ServicesUpdate(BaseModel):
    services: List[ServiceInfo] = Field(default_factory=list)


class ServicesResponse(BaseModel):
    services: List[ServiceInfo] = Field(default_factory=list)
    cached: bool = False
    cached_at: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)


# =============================================================================
# Dependencies
# =============================================================================

def get_services_cache(request: Request) -> ServicesCache:
    return request.app.state.services_cache


def _cached_at(cache: ServicesCache) -> Optional[str]:
    ts = cache.fetched_at()
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


# =============================================================================
# Router
# =============================================================================

router = APIRouter()


@router.get("", response_model=ServicesResponse, summary="List cached services")
def list_services(
    env: Optional[str] = Query(None, description="Environment prefix (case-insensitive)"),
    cache: ServicesCache = Depends(get_services_cache),
):
    if cache.get() is None:
        return ServicesResponse(warnings=["services cache is empty or expired"])

    services = cache.filter_by_env_prefix(env or "")
    return ServicesResponse(services=services, cached=True, cached_at=_cached_at(cache))


@router.put("", response_model=ServicesResponse, summary="Replace cached services")
def put_services(
    update: ServicesUpdate,
    cache: ServicesCache = Depends(get_services_cache),
):
    cache.set(update.services)
    logger.info("Cached %d services", len(update.services))
    return ServicesResponse(
        services=update.services, cached=True, cached_at=_cached_at(cache),
    )


@router.delete("", status_code=status.HTTP_204_NO_CONTENT, summary="Clear cached services")
def clear_services(cache: ServicesCache = Depends(get_services_cache)):
    cache.clear()
