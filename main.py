"""
Spot Price API - Gold & Silver in CAD
Current spot prices with provider fallback, a short-lived cache and monthly snapshots.
"""

from fastapi import Depends, FastAPI, Query
from fastapi import Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from pydantic import BaseModel
from contextlib import asynccontextmanager
from typing import Optional
from datetime import datetime, timezone
import hmac
import logging

import httpx

from spotprice import __version__
from spotprice.config import CURRENCY, MONTHLY_FALLBACK_PROVIDER, Settings, get_settings
from spotprice.derived import nisab_from_gold
from spotprice.models import Metal, NisabQuote, PriceUnavailableError
from spotprice.resolver import PriceResolver, build_resolver

# ══════════════════════════════════════════════════════════════════════════════
# Lifecycle
# ══════════════════════════════════════════════════════════════════════════════


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the shared HTTP client and the resolver for the life of the process."""
    settings = get_settings()
    client = httpx.AsyncClient(
        timeout=settings.request_timeout_seconds,
        follow_redirects=True,
        limits=httpx.Limits(max_keepalive_connections=10, max_connections=30),
    )
    app.state.resolver = build_resolver(client, settings)
    try:
        yield
    finally:
        await client.aclose()


def get_resolver(request: Request) -> PriceResolver:
    return request.app.state.resolver


# ══════════════════════════════════════════════════════════════════════════════
# Models
# ══════════════════════════════════════════════════════════════════════════════


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    cache_age_seconds: dict[str, Optional[int]]


# ══════════════════════════════════════════════════════════════════════════════
# FastAPI Application
# ══════════════════════════════════════════════════════════════════════════════

app = FastAPI(
    title="Spot Price API",
    description=f"""
## Gold & Silver Spot Prices in {CURRENCY}

Prices per troy ounce (31.1034768 grams) or per gram, resolved through a waterfall of providers:

1. **goldapi.io** (up to three API keys)
2. **metals-api.com**
3. **fcsapi.com**
4. **Yahoo Finance** (USD, converted to {CURRENCY})
5. **Monthly fallback** - the last price stored for the current (or latest) month

Successful lookups are cached for 10 minutes. Add `debug=1` to bypass the cache and see why each provider failed.
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ══════════════════════════════════════════════════════════════════════════════
# API Endpoints
# ══════════════════════════════════════════════════════════════════════════════


@app.get("/", tags=["Root"])
async def root():
    """Welcome endpoint with API information."""
    return {
        "name": "Spot Price API",
        "version": __version__,
        "currency": CURRENCY,
        "documentation": "/docs",
        "endpoints": {
            "gold": "/api/gold",
            "silver": "/api/silver",
            "nisab": "/api/nisab",
            "update_monthly": "/api/{metal}/update-monthly",
            "health": "/api/v1/health",
        },
    }


@app.get("/api/v1/health", response_model=HealthResponse, tags=["System"])
async def health_check(resolver: PriceResolver = Depends(get_resolver)):
    """Check API health and cache status."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        cache_age_seconds={metal.value: resolver.cache.age_seconds(metal.cache_key) for metal in Metal},
    )


@app.get("/api/nisab", response_model=NisabQuote, tags=["Prices"])
async def get_nisab(
    debug: bool = Query(default=False, description="Bypass the cache and report provider failures"),
    resolver: PriceResolver = Depends(get_resolver),
):
    """
    Get the Nisab threshold: the value of 85 grams of 24k gold.

    Uses the same resolution as `/api/gold`, including the monthly fallback.
    """
    try:
        resolved = await resolver.resolve(Metal.gold, diagnostics=debug)
    except PriceUnavailableError as e:
        logging.error(f"[Nisab API] Gold price unavailable: {str(e)}")
        content = e.to_dict(include_diagnostics=debug)
        content["error"] = "Failed to fetch gold price"
        return JSONResponse(status_code=500, content=content)

    return nisab_from_gold(resolved)


@app.get("/api/{metal}", tags=["Prices"])
async def get_metal_price(
    metal: Metal,
    grams: bool = Query(default=False, description="Return the per-gram price as `price`"),
    debug: bool = Query(default=False, description="Bypass the cache and report provider failures"),
    resolver: PriceResolver = Depends(get_resolver),
):
    """
    Get the current spot price for gold or silver.

    `price` is per troy ounce, or per gram when `grams=true`. Both figures are
    always included as `price_per_unit` and `price_per_gram`.
    """
    try:
        resolved = await resolver.resolve(metal, diagnostics=debug)
    except PriceUnavailableError as e:
        return JSONResponse(status_code=500, content=e.to_dict(include_diagnostics=debug))

    return resolved.as_response(grams=grams)


@app.post("/api/{metal}/update-monthly", tags=["Snapshots"])
async def update_monthly_price(
    metal: Metal,
    secret: Optional[str] = Query(default=None),
    resolver: PriceResolver = Depends(get_resolver),
    settings: Settings = Depends(get_settings),
):
    """
    Store the current live price as this month's fallback.

    Protected by `UPDATE_MONTHLY_SECRET`. Meant to be called at the start of
    each month by a scheduler; every live lookup also refreshes the snapshot.
    """
    expected = settings.update_monthly_secret
    if not expected or not secret or not hmac.compare_digest(secret.encode(), expected.encode()):
        return JSONResponse(status_code=401, content={"error": "Unauthorized - invalid or missing secret"})

    try:
        resolved = await resolver.resolve(metal, bypass_cache=True, refresh_snapshot=False)
    except PriceUnavailableError:
        return JSONResponse(status_code=500, content={"error": f"Failed to fetch current {metal.value} price"})

    payload = resolved.payload
    if payload.provider == MONTHLY_FALLBACK_PROVIDER:
        return JSONResponse(
            status_code=500,
            content={"error": f"No live {metal.value} price available; monthly snapshot left unchanged"},
        )

    # Written once here so the response reflects whether it succeeded
    if not resolver.snapshots.write(metal, payload):
        return JSONResponse(status_code=500, content={"error": f"Failed to update monthly {metal.value} price"})

    month = resolver.snapshots.current_month()
    logging.info(f"[Update {metal.label} Monthly] Stored price for {month}: {payload.price_per_unit} {CURRENCY}/oz")
    return {
        "success": True,
        "month": month,
        "price_per_unit": payload.price_per_unit,
        "price_per_gram": payload.price_per_gram,
        "provider": payload.provider,
        "message": f"Successfully stored monthly {metal.value} price for {month}",
    }


# ══════════════════════════════════════════════════════════════════════════════
# Error Handlers
# ══════════════════════════════════════════════════════════════════════════════


@app.exception_handler(404)
async def not_found_handler(request, exc):
    return JSONResponse(
        status_code=404,
        content={
            "error": "Not Found",
            "message": "The requested endpoint does not exist.",
            "available_endpoints": ["/api/gold", "/api/silver", "/api/nisab", "/api/v1/health", "/docs"],
        },
    )


@app.exception_handler(Exception)
async def server_error_handler(request: Request, exc: Exception):
    # Don't override FastAPI's built-in HTTP exceptions
    if isinstance(exc, StarletteHTTPException):
        raise exc

    logging.exception(f"Unhandled exception in {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal Server Error",
            "message": "Something went wrong. Please try again.",
            "detail": str(exc) if exc else "Unknown error",
        },
    )


# ══════════════════════════════════════════════════════════════════════════════
# Run Server
# ══════════════════════════════════════════════════════════════════════════════

if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(asctime)s %(levelname)s %(message)s",
    )
    print("🪙 Starting Spot Price API...")
    print("📖 Documentation: http://localhost:8000/docs")
    print("🔧 Health Check: http://localhost:8000/api/v1/health")

    uvicorn.run(app, host="0.0.0.0", port=8000)
