"""
FastAPI server for the Texas Utility-Territory Resolution Engine.

Loads the territory catalog on startup (well under a second), then answers
ZIP lookups from memory and address lookups through the ESIID registry.
Handlers are plain ``def`` so each request runs in the worker thread pool.
"""

import logging
import os
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Callable, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from territory_engine.config import Config
from territory_engine.engine import ResolutionEngine
from territory_engine.errors import RateLimitedError, ResolutionError
from territory_engine.rate_limiter import client_identity

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("api")

# ---------------------------------------------------------------------------
# Global engine (loaded once at startup)
# ---------------------------------------------------------------------------
engine: Optional[ResolutionEngine] = None


def load_env_file(env_path: Path):
    if not env_path.exists():
        return
    for line in env_path.read_text().splitlines():
        line = line.strip()
        if line and not line.startswith("#") and "=" in line:
            key, val = line.split("=", 1)
            os.environ.setdefault(key.strip(), val.strip())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load the engine on startup, release its resources on shutdown."""
    global engine
    logger.info("Loading territory catalog...")
    t0 = time.time()

    load_env_file(Path(__file__).parent / ".env")
    config = Config.from_env()
    engine = ResolutionEngine(config)
    if not config.registry_api_key:
        logger.info("ESIID registry: no ERCOT_API_KEY set, using anonymous access")
    engine.cache.clear_expired()
    if config.warm_cache_limit:
        engine.warm_cache(config.warm_cache_limit)

    elapsed = time.time() - t0
    logger.info(f"Engine ready in {elapsed:.1f}s")

    yield

    if engine:
        engine.close()
        engine = None
    logger.info("Shutdown complete.")


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Texas Utility Territory API",
    description="Resolve a Texas ZIP code or service address to its electricity distribution utility.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------
class NavigateRequest(BaseModel):
    zipCode: str = Field(..., description="5-digit Texas ZIP code")
    validatePlansAvailable: bool = False


class SearchPlansRequest(BaseModel):
    zipCode: str
    address: Optional[str] = None
    usageKwh: Optional[int] = Field(1000, description="Monthly usage for plan pricing")
    filters: Optional[dict] = None


class EsiidLookupRequest(BaseModel):
    address: str = ""
    zipCode: str


class HealthResponse(BaseModel):
    status: str
    engine_loaded: bool
    uptime_seconds: float
    catalog_version: Optional[str] = None
    registry_ok: Optional[bool] = None


_start_time = time.time()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _client_id(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    ip = forwarded.split(",")[0].strip() if forwarded else (request.client.host if request.client else "")
    return client_identity(ip, request.headers.get("user-agent"))


def _respond(request: Request, bucket: str, max_age_kind: str, fn: Callable[[], dict]) -> JSONResponse:
    """Rate-limit, run, and translate engine errors into the JSON error contract."""
    if not engine:
        raise HTTPException(status_code=503, detail="Engine is still loading. Try again shortly.")

    headers = {}
    try:
        decision = engine.check_rate_limit(_client_id(request), bucket)
        if decision:
            headers.update(decision.headers())
        body = fn()
    except RateLimitedError as e:
        return JSONResponse(
            status_code=e.http_status,
            content=e.to_dict(),
            headers={"Retry-After": str(e.retry_after), "Cache-Control": "no-cache"},
        )
    except ResolutionError as e:
        logger.info(f"{request.url.path}: {e.code.value} {e.context}")
        headers["Cache-Control"] = "no-cache"
        return JSONResponse(status_code=e.http_status, content=e.to_dict(), headers=headers)
    except Exception as e:
        logger.error(f"{request.url.path} failed: {e}")
        raise HTTPException(status_code=500, detail="Resolution failed")

    max_age = engine.config.cache_max_age
    if body.get("errorType") == "non_deregulated":
        headers["Cache-Control"] = f"public, max-age={max_age['non_deregulated']}"
    elif body.get("success"):
        headers["Cache-Control"] = f"public, max-age={max_age[max_age_kind]}"
    else:
        headers["Cache-Control"] = "no-cache"
    return JSONResponse(content=body, headers=headers)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------
@app.get("/health", response_model=HealthResponse)
def health():
    """Health check."""
    return HealthResponse(
        status="ok" if engine else "loading",
        engine_loaded=engine is not None,
        uptime_seconds=round(time.time() - _start_time, 1),
        catalog_version=engine.catalog.version if engine else None,
        registry_ok=engine.registry.health_check() if engine else None,
    )


@app.get("/api/zip-lookup")
def zip_lookup(request: Request, zip: Optional[str] = Query(None, description="5-digit Texas ZIP code")):
    """ZIP-only lookup: territory or split candidates, plus the city page to navigate to."""
    return _respond(request, "zip", "zip", lambda: engine.lookup_zip(zip))


@app.post("/api/zip/navigate")
def zip_navigate(req: NavigateRequest, request: Request):
    """ZIP navigation with optional plan-availability check."""
    return _respond(
        request, "zip", "zip",
        lambda: engine.navigate(req.zipCode, validate_plans_available=req.validatePlansAvailable),
    )


@app.post("/api/search-plans")
def search_plans(req: SearchPlansRequest, request: Request):
    """Resolve the territory for a plan search; split ZIPs need an address."""
    bucket = "address" if req.address else "zip"
    return _respond(
        request, bucket, "zip",
        lambda: engine.search_plans(req.zipCode, address=req.address, usage_kwh=req.usageKwh, filters=req.filters),
    )


@app.post("/api/lookup-esiid")
def lookup_esiid(req: EsiidLookupRequest, request: Request):
    """Address-level resolution through the ESIID registry."""
    return _respond(request, "address", "address", lambda: engine.resolve_address(req.address, req.zipCode))
