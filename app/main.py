"""
app/main.py — Portfolio Backend FastAPI Server
===============================================
Visitor tracking, content analytics, congratulation cards, forms and the
contact form for the portfolio site. All routes return JSON.

Routes:
  GET  /                                      → API index (JSON)
  GET  /health                                → liveness check

  POST /api/track/pageview                    → record page view
  POST /api/track/interaction                 → record interaction
  POST /api/track/session                     → start session
  PUT  /api/track/session                     → end session

  POST /api/fingerprint                       → identify visitor
  GET  /api/fingerprint?userId=               → visitor + fingerprints
  GET  /api/fingerprint/info                  → transparency document
  GET  /api/fingerprint/stats                 → fingerprint statistics

  GET  /api/profile                           → profile / profile list
  POST /api/profile                           → add tag
  DELETE /api/profile                         → remove tag / delete profile
  GET  /api/profile/analytics                 → visitor metrics

  POST /api/analytics/track                   → content event
  POST /api/analytics/views                   → content view counter
  GET  /api/analytics/summary                 → dashboard summary (API key)
  GET  /api/analytics/debug                   → location diagnostics (API key)
  POST /api/analytics/send-report             → e-mail report (API key)

  POST /api/congratulation                    → create card (admin password)
  GET  /api/congratulation/{id}               → fetch card

  POST /api/forms                             → create form (API key)
  GET  /api/forms                             → list forms (API key)
  GET  /api/forms/{formId}                    → form definition
  POST /api/forms/{formId}/submissions        → submit form
  GET  /api/forms/{formId}/submissions        → list submissions (API key)
  GET  /api/submissions/{submissionId}/verify → submission exists?

  POST /api/contact                           → contact form e-mail
  GET  /api/revalidate?secret=                → drop in-process caches

Error bodies:
  {"success": false, "error": "<message>"}   (analytics / contact: {"error": ...})
"""

import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from app.rate_limit import RateLimitError, build_rate_limiters, configure_default_limits, limiter
from app.routers import analytics, congratulation, contact, fingerprint, forms, profile, revalidate, track
from app.services.geolocation import GeoLocator
from app.services.mailer import Mailer
from config_loader import get_secret, load_config
from db.models import init_db

APP_VERSION = "1.0.0"
PROJECT_ROOT = Path(__file__).parent.parent

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# LOGGING
# ─────────────────────────────────────────────────────────────────────────────

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(cfg: dict) -> None:
    """Root level from config; optional file handler (attached once per path)."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, str(cfg.get("level", "INFO")).upper(), logging.INFO))

    if not any(type(h) is logging.StreamHandler for h in root.handlers):
        stream = logging.StreamHandler()
        stream.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(stream)

    log_file = cfg.get("file")
    if not log_file:
        return
    log_path = Path(log_file)
    if not log_path.is_absolute():
        log_path = PROJECT_ROOT / log_path
    if any(isinstance(h, logging.FileHandler) and Path(h.baseFilename) == log_path.resolve()
           for h in root.handlers):
        return
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_path)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    root.addHandler(handler)


# ─────────────────────────────────────────────────────────────────────────────
# ERROR HANDLERS
# ─────────────────────────────────────────────────────────────────────────────

async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # dict details are complete bodies ({"error": ...} / {"message": ...})
    if isinstance(exc.detail, dict):
        content = exc.detail
    else:
        content = {"success": False, "error": exc.detail}
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = "; ".join(
        f"{'.'.join(str(p) for p in e.get('loc', ()))}: {e.get('msg')}" for e in exc.errors()
    )
    logger.info("BAD_REQUEST | %s %s | %s", request.method, request.url.path, problems)
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "Invalid request payload", "details": problems},
    )


async def _rate_limited(request: Request, exc: RateLimitError) -> JSONResponse:
    return JSONResponse(status_code=429, content={"success": False, "error": exc.message})


async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("UNHANDLED | %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"success": False, "error": "Internal server error"})


# ─────────────────────────────────────────────────────────────────────────────
# APP FACTORY
# ─────────────────────────────────────────────────────────────────────────────

def create_app(config: Optional[dict] = None) -> FastAPI:
    """Build a fully wired app. ``config`` defaults to the merged YAML config."""
    config = config if config is not None else load_config(PROJECT_ROOT)
    configure_logging(config.get("logging", {}))

    db_path = Path(config.get("database", {}).get("path", "db/portfolio.db"))
    if not db_path.is_absolute():
        db_path = PROJECT_ROOT / db_path

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db(db_path)
        logger.info("Portfolio backend ready | db=%s", db_path)
        yield

    app = FastAPI(
        title="Portfolio Backend",
        description="Visitor tracking, analytics, congratulation cards, forms and contact.",
        version=APP_VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url=None,
    )

    app.state.config = config
    app.state.db_path = db_path
    app.state.frontend_url = get_secret("FRONTEND_URL") or config.get("frontend_url", "http://localhost:3000")
    app.state.rate_limiters = build_rate_limiters(config.get("rate_limits", {}))
    app.state.geolocator = GeoLocator.from_config(config.get("geolocation", {}))
    app.state.mailer = Mailer.from_config(config.get("mail", {}))

    configure_default_limits(config.get("default_limits", {}))
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(RateLimitError, _rate_limited)
    app.add_exception_handler(StarletteHTTPException, _http_error)
    app.add_exception_handler(RequestValidationError, _validation_error)
    app.add_exception_handler(Exception, _unhandled)

    security_cfg = config.get("security", {})
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=security_cfg.get("trusted_proxies", ["127.0.0.1", "::1"]))
    app.add_middleware(
        CORSMiddleware,
        allow_origins=security_cfg.get("cors_origins", [app.state.frontend_url]),
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    for module in (track, fingerprint, profile, analytics, congratulation, forms, contact, revalidate):
        app.include_router(module.router)

    @app.get("/", summary="API index")
    async def index():
        return {
            "name": "Portfolio Backend",
            "version": APP_VERSION,
            "endpoints": sorted({
                f"{method} {route.path}"
                for route in app.routes
                if route.path.startswith("/api")
                for method in getattr(route, "methods", ()) or ()
            }),
        }

    @app.get("/health")
    async def health():
        return {"status": "ok", "ts": time.time(), "version": APP_VERSION}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    server_cfg = app.state.config.get("server", {})
    uvicorn.run(app, host=server_cfg.get("host", "0.0.0.0"), port=server_cfg.get("port", 8000), log_level="info")
