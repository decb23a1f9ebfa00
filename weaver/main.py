"""Weaver Connect - Main application."""

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from weaver.accounts.router import callback_router
from weaver.accounts.router import router as accounts_router
from weaver.auth.rate_limit import limiter
from weaver.config import ConfigurationError, get_settings
from weaver.connectors import UnsupportedPlatformError
from weaver.db.session import init_db
from weaver.logging_config import configure_logging
from weaver.metrics import router as metrics_router
from weaver.oauth.errors import ProviderAPIError, ReconnectRequiredError
from weaver.oauth.errors import RateLimitExceeded as ProviderRateLimitExceeded
from weaver.valkey import close_valkey

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    configure_logging(settings.LOG_LEVEL)
    if settings.DB_AUTO_CREATE:
        await init_db()
    yield
    # Cleanup on shutdown
    await close_valkey()


app = FastAPI(
    title="Weaver Connect",
    description="""
## Social Account Connection API

Weaver Connect links creators' social platform accounts to the analytics dashboard.

### Features

- 🔑 **OAuth 2.0 + PKCE** - TikTok Login Kit with S256 code challenge
- 🔄 **Token Refresh** - Proactive and on-401 refresh of provider tokens
- 📈 **Profile & Videos** - Follower, like and video statistics
- 📊 **Audit Logging** - Connection lifecycle event tracking
- 🛡️ **Rate Limiting** - Per-client and per-token request budgets

### Connection Flow

1. Call `/api/v1/accounts/connect/{platform}` with your dashboard session token
2. Send the browser to the returned `authorization_url`
3. The provider redirects to `/accounts/callback/{platform}`
4. The browser lands on the dashboard, or the popup notifies its opener and closes
    """,
    version="1.0.0",
    lifespan=lifespan,
)

# Rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(ReconnectRequiredError)
async def reconnect_required_handler(request: Request, exc: ReconnectRequiredError):
    return JSONResponse(
        status_code=401,
        content={"detail": str(exc), "error": "reconnect_required"},
    )


@app.exception_handler(ProviderRateLimitExceeded)
async def provider_rate_limit_handler(request: Request, exc: ProviderRateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={"detail": str(exc), "error": "rate_limited"},
        headers={"Retry-After": "60"},
    )


@app.exception_handler(ProviderAPIError)
async def provider_error_handler(request: Request, exc: ProviderAPIError):
    logger.error(
        "Provider call failed on %s: %s (code=%s, status=%s)",
        request.url.path,
        exc.message,
        exc.error_code,
        exc.status_code,
    )
    return JSONResponse(
        status_code=502,
        content={"detail": "Platform request failed", "error": "provider_error"},
    )


@app.exception_handler(httpx.HTTPError)
async def provider_unreachable_handler(request: Request, exc: httpx.HTTPError):
    logger.error("Provider unreachable on %s: %r", request.url.path, exc)
    return JSONResponse(
        status_code=502,
        content={"detail": "Platform is unreachable", "error": "provider_unreachable"},
    )


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error("Configuration error on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=503,
        content={"detail": "Platform integration is not configured", "error": "not_configured"},
    )


@app.exception_handler(UnsupportedPlatformError)
async def unsupported_platform_handler(request: Request, exc: UnsupportedPlatformError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes - JSON API under /api/v1
API_PREFIX = "/api/v1"
app.include_router(accounts_router, prefix=API_PREFIX)

# OAuth callback at the redirect URI registered with the provider
app.include_router(callback_router)

# Metrics at root level (for Prometheus scraping)
app.include_router(metrics_router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Weaver Connect",
        "version": "1.0.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}
