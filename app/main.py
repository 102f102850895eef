"""
pprof Insight API

HTTP front end for the analyzer_pprof engine.  ``/analysis`` runs one
detector per request over an inline profile or a file under
PROFILES_ROOT; ``/services`` holds the discovered-services list that a
discovery job pushes in and agents read back until its TTL runs out.
"""
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from analyzer_pprof import ANALYZER_VERSION, SCHEMA_VERSION  # type: ignore

from app.config import settings
from app.routers import analysis, services
from app.services_cache import ServicesCache

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

SERVICE_NAME = "pprof-insight-api"


# =============================================================================
# Lifespan
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Own the services cache for the life of the process."""
    root = Path(settings.PROFILES_ROOT)
    if not root.is_dir():
        logger.warning("PROFILES_ROOT %s does not exist; only inline profiles will load", root)

    app.state.services_cache = ServicesCache(settings.SERVICES_CACHE_TTL_SECONDS)
    logger.info(
        "%s %s up (analyzer %s, services ttl=%ss)",
        SERVICE_NAME, settings.API_VERSION, ANALYZER_VERSION,
        settings.SERVICES_CACHE_TTL_SECONDS,
    )
    try:
        yield
    finally:
        app.state.services_cache.clear()
        logger.info("services cache cleared")


app = FastAPI(
    title=settings.API_TITLE,
    description="Overhead, off-heap memory, contention, goroutine and allocation analysis of Go profiles",
    version=settings.API_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["*"],
)

app.include_router(analysis.router, prefix="/analysis", tags=["analysis"])
app.include_router(services.router, prefix="/services", tags=["services"])


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Log the offending fields and answer 422."""
    errors = exc.errors()
    logger.warning(
        "422 on %s %s: %s",
        request.method, request.url.path,
        [".".join(str(p) for p in e.get("loc", ())) for e in errors[:5]],
    )
    return JSONResponse(status_code=422, content={"detail": errors})


# =============================================================================
# Service endpoints
# =============================================================================

@app.get("/health")
async def health_check(request: Request):
    cache: ServicesCache = request.app.state.services_cache
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": settings.API_VERSION,
        "analyzer_version": ANALYZER_VERSION,
        "schema_version": SCHEMA_VERSION,
        "profiles_root_present": Path(settings.PROFILES_ROOT).is_dir(),
        "services_cached": not cache.is_expired(),
    }


@app.get("/")
async def root():
    """Index of the analysis endpoints."""
    endpoints = sorted(
        f"{method} /analysis{route.path}"
        for route in analysis.router.routes
        for method in getattr(route, "methods", ())
    )
    return {"service": SERVICE_NAME, "docs": "/docs", "analysis": endpoints}


def run():
    """Console entry point: serve the API with uvicorn."""
    import uvicorn
    uvicorn.run(app, host=settings.API_HOST, port=settings.API_PORT)


if __name__ == "__main__":
    run()
