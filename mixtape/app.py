from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mixtape.api.error_handling import register_exception_handlers
from mixtape.api.routes import router
from mixtape.config import Settings, require_startup_settings
from mixtape.logging import get_logger, set_correlation_id

logger = get_logger(__name__)

# Refuse to build the app without a signing secret
_settings = require_startup_settings(Settings.from_env())

__version__ = "0.1.0"

HEALTH_CHECK_TIMEOUT_SECONDS = 5.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the runtime on startup and release the store on shutdown."""
    from mixtape.service.runtime import get_runtime

    runtime = get_runtime()
    logger.info("app_started", version=__version__)

    yield

    try:
        runtime.close()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


app = FastAPI(title="Mixtape API", version=__version__, lifespan=lifespan)


def _allowed_origins() -> List[str]:
    if _settings.cors_allow_origins:
        return _settings.cors_allow_origins
    # Local dev hosts; the configured front end is always allowed
    return sorted(
        {
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            _settings.frontend_url,
        }
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins(),
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
    max_age=3600,
)


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Tag each request with a correlation id.

    The id is taken from the client's ``X-Request-ID`` header when present,
    otherwise generated; it is bound for structured logging and echoed in the
    ``X-Request-ID`` response header.
    """
    client_request_id = request.headers.get("X-Request-ID")
    correlation_id = set_correlation_id(client_request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    if request.url.path.startswith("/api/") or request.url.path == "/healthz":
        response.headers.setdefault("Cache-Control", "no-store, private")
    return response


register_exception_handlers(app)
app.include_router(router)


@app.get("/healthz")
async def health() -> Dict[str, Any]:
    """Report store connectivity and build version."""
    from mixtape.service.runtime import get_runtime

    runtime = get_runtime()
    checks: Dict[str, Dict[str, Any]] = {}
    store_type = "memory" if runtime.settings.use_memory_store else "postgres"
    try:
        await asyncio.wait_for(
            asyncio.to_thread(runtime.store.verify_connection),
            HEALTH_CHECK_TIMEOUT_SECONDS,
        )
        db_ok = True
    except asyncio.TimeoutError:
        logger.error(
            "health_check_timeout", component="database", timeout=HEALTH_CHECK_TIMEOUT_SECONDS
        )
        db_ok = False
    except Exception as exc:
        logger.error("health_check_database_failed", error=str(exc))
        db_ok = False
    checks["database"] = {"status": "healthy" if db_ok else "unhealthy", "type": store_type}
    checks["google_oauth"] = {
        "status": "configured" if runtime.settings.google_oauth_configured else "not_configured"
    }

    return {
        "status": "healthy" if db_ok else "unhealthy",
        "checks": checks,
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
