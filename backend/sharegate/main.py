"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from sharegate.config import get_settings
from sharegate.db.session import close_db, init_db
from sharegate.limiter import limiter
from sharegate.shares.analytics import AnalyticsRecorder, check_viewer_hash_key
from sharegate.shares.counter import ViewCounter
from sharegate.shares.errors import StorageError, ValidationError
from sharegate.shares.gate import AccessGate
from sharegate.shares.repository import SqlLinkRepository
from sharegate.shares.routes import router as share_router
from sharegate.shares.service import LinkAdminService

log = logging.getLogger(__name__)


def _setup_logging() -> None:
    """Configure logging from settings (stderr always; optional file)."""
    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    fmt = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    root = logging.getLogger("sharegate")
    root.setLevel(level)
    root.handlers.clear()
    sh = logging.StreamHandler()
    sh.setLevel(level)
    sh.setFormatter(fmt)
    root.addHandler(sh)
    if settings.log_file and str(settings.log_file).strip():
        try:
            fh = logging.FileHandler(settings.log_file, encoding="utf-8")
            fh.setLevel(level)
            fh.setFormatter(fmt)
            root.addHandler(fh)
            root.info("Logging to file %s", settings.log_file)
        except OSError as e:
            root.warning("Could not open log file %s: %s", settings.log_file, e)
    else:
        root.debug("Logging to stderr only (no log_file set)")


_setup_logging()

_links = SqlLinkRepository()
_analytics = AnalyticsRecorder(_links)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup; flush pending analytics and close the pool on shutdown."""
    log.info("Startup: initializing database")
    await init_db()
    check_viewer_hash_key()
    log.info("Startup complete")
    yield
    await _analytics.drain()
    await close_db()
    log.info("Shutdown")


app = FastAPI(title="Sharegate API", version="0.1.0", lifespan=lifespan)
app.state.link_service = LinkAdminService(_links)
app.state.access_gate = AccessGate(_links, ViewCounter(_links), _analytics)
app.state.analytics = _analytics

settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """Add security headers to all responses."""
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    # Shared content and owner data must not sit in shared caches
    response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies and parameters are 400, not 422."""
    return JSONResponse(
        status_code=400,
        content={"detail": "Invalid request", "errors": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(ValidationError)
async def link_validation_handler(request: Request, exc: ValidationError):
    """Missing or invalid link fields: 400 with the offending field names."""
    return JSONResponse(
        status_code=400,
        content={"detail": str(exc), "fields": exc.fields},
    )


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    """Backing store failure: log details, return a generic 500."""
    log.error(
        "Storage failure on %s %s: %s", request.method, request.url.path, exc, exc_info=exc
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Return generic 500 without leaking stack trace or internals."""
    if isinstance(exc, HTTPException):
        raise exc
    log.exception("Unhandled exception: %s", exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.include_router(share_router)


@app.get("/health")
@limiter.exempt
def health() -> JSONResponse:
    """Health check. Exempt from rate limiting."""
    return JSONResponse(content={"status": "ok"})
