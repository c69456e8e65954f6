from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.exc import SQLAlchemyError
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from dotenv import load_dotenv
import os
import logging
import time
import traceback

# Load environment variables
load_dotenv()

from app.database import SessionLocal
from app.middleware.security import SESSION_COOKIE_NAME, SecurityHeadersMiddleware, CSRFMiddleware, CsrfGuard
from app.routes import auth, watchlist, search
from app.services.background_jobs import BackgroundJobService
from app.services.identity_backend import build_identity_backend
from app.services.session_store import SessionStore
from app.services.tmdb_service import build_tmdb_client
from app.utils.audit import LoggingAuditSink, redact
from app.utils.errors import InternalError, WatchlistError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"

# Status codes raised by the framework itself (unknown route, wrong method)
_STATUS_CODES = {
    400: "validation_error",
    401: "unauthenticated",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    429: "rate_limited",
}


# ============================================
# Application Lifespan Management
# ============================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: start the session sweeper
    Shutdown: stop it gracefully
    """
    logger.info("=" * 60)
    logger.info("Movie Watchlist API starting")
    logger.info(f"   Environment: {os.getenv('ENVIRONMENT', 'development')}")
    logger.info(f"   Identity backend: {type(app.state.identity_backend).__name__}")
    logger.info("=" * 60)

    jobs = BackgroundJobService(app.state.session_store, app.state.audit_sink)
    app.state.background_jobs = jobs
    try:
        jobs.start()
    except Exception as e:
        logger.error(f"Failed to start background jobs: {str(e)}")

    yield

    logger.info("Movie Watchlist API shutting down")
    try:
        jobs.shutdown()
    except Exception as e:
        logger.error(f"Error stopping background jobs: {str(e)}")


app = FastAPI(
    title="Movie Watchlist API",
    description="Personal movie watchlist with session auth and TMDB search",
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# ============================================
# Collaborators (replaced in tests)
# ============================================

app.state.session_store = SessionStore()
app.state.audit_sink = LoggingAuditSink()
app.state.csrf_guard = CsrfGuard(app.state.session_store)
app.state.identity_backend = build_identity_backend(SessionLocal)
app.state.metadata_client = build_tmdb_client()

# ============================================
# Middleware (last added runs first)
# ============================================

allowed_origins = [
    "http://localhost:3000",
    "http://localhost:5173",
]
if production_url := os.getenv("FRONTEND_URL"):
    allowed_origins.append(production_url)

app.add_middleware(CSRFMiddleware)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "X-CSRF-Token"],
)

# Trusted Hosts - Production only
if os.getenv("ENVIRONMENT") == "production":
    trusted_hosts = [h.strip() for h in os.getenv("TRUSTED_HOSTS", "").split(",") if h.strip()]
    if trusted_hosts:
        app.add_middleware(TrustedHostMiddleware, allowed_hosts=trusted_hosts)

access_logger = logging.getLogger("app.access")


# Access log: one line per request, session id redacted
@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    session_id = request.cookies.get(SESSION_COOKIE_NAME)
    session = request.app.state.session_store.get(session_id)
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        access_logger.info(
            f"{request.method} {request.url.path} {status_code} {elapsed_ms:.1f}ms "
            f"user={session.user_id if session else '-'} session={redact(session_id)}"
        )


# ============================================
# Exception Handlers
# ============================================

def _error_response(request: Request, status_code: int, detail, code: str, headers=None) -> JSONResponse:
    """{"detail", "error"} body with CORS headers for allowed origins"""
    response = JSONResponse(
        status_code=status_code,
        content={"detail": detail, "error": code},
        headers=headers,
    )
    origin = request.headers.get("origin")
    if origin in allowed_origins:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
    return response


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if isinstance(exc, WatchlistError):
        code = exc.code
    else:
        code = _STATUS_CODES.get(exc.status_code, "internal_error")
    return _error_response(request, exc.status_code, exc.detail, code, getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # Field names only; submitted values are never echoed back
    fields = sorted({
        str(err["loc"][-1]) for err in exc.errors() if err.get("loc")
    })
    detail = f"Invalid input: {', '.join(fields)}" if fields else "Invalid input"
    return _error_response(request, 400, detail, "validation_error")


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Database error on {request.method} {request.url.path}: {type(exc).__name__}")
    return _error_response(
        request, 502, "Upstream service unavailable. Please try again later.", "upstream_unavailable"
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Catch-all: log with trace, answer with a generic 500"""
    logger.error(f"Unhandled exception: {str(exc)}", exc_info=True)
    request.app.state.audit_sink.emit(
        "request.unhandled_exception",
        method=request.method,
        path=request.url.path,
        error=type(exc).__name__,
        level=logging.ERROR,
    )
    detail = "Internal server error"
    if os.getenv("DIAGNOSTIC_ERRORS", "false").lower() == "true":
        detail = {
            "message": detail,
            "trace": traceback.format_exception(type(exc), exc, exc.__traceback__),
        }
    return _error_response(request, InternalError.status_code, detail, InternalError.code)


# ============================================
# Routes
# ============================================

@app.get("/", tags=["Health"])
def root():
    """Basic health check"""
    return {
        "message": "Movie Watchlist API",
        "version": API_VERSION,
        "status": "healthy",
        "docs": "/docs",
    }


@app.get("/health", tags=["Health"])
def health_check(request: Request):
    """Detailed health check for monitoring"""
    jobs = getattr(request.app.state, "background_jobs", None)
    return {
        "status": "healthy",
        "api_version": API_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "sessions": request.app.state.session_store.get_stats(),
        "background_jobs": jobs.get_job_stats() if jobs else None,
    }


app.include_router(auth.router)
app.include_router(watchlist.router)
app.include_router(watchlist.watched_router)
app.include_router(search.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        log_level="info",
    )
