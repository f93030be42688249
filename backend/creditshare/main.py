"""
CreditShare Backend - FastAPI Application Factory
==================================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() builds the storage handles (engine, session factory,
       blob store), wires the services and stores everything on app.state,
       then registers middleware, exception handlers and routers.
Who:   uvicorn (`uvicorn creditshare.main:app`) and the test suite
       (`create_app(test_settings)`).

Application Architecture:
    ┌─────────────────────────────────────────────────────────┐
    │                      FastAPI App                        │
    │                                                         │
    │  Middleware Chain:                                      │
    │  ┌──────────┐ ┌─────────────┐ ┌──────┐                  │
    │  │ Req ID   │→│  Logging    │→│ CORS │                  │
    │  └──────────┘ └─────────────┘ └──────┘                  │
    │                                                         │
    │  Routes:                                                │
    │  ┌───────────────┐ ┌──────────────────────┐ ┌─────────┐ │
    │  │ /api/files/*  │ │ /api/transactions/*  │ │ /health │ │
    │  └───────────────┘ └──────────────────────┘ └─────────┘ │
    │                                                         │
    │  app.state:                                             │
    │    engine, session_factory, blob_store, ledger,         │
    │    user/catalog/upload/download/issue services          │
    └─────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  configure logging, log storage root and credit policy
    Shutdown: dispose the database engine
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from creditshare import __version__
from creditshare.config import Settings, settings as default_settings
from creditshare.database import build_engine, build_session_factory
from creditshare.exceptions import (
    AuthenticationError,
    CreditShareError,
    ForbiddenError,
    InsufficientCreditsError,
    InternalError,
    InvalidInputError,
    NotFoundError,
)
from creditshare.middleware.logging import RequestLoggingMiddleware
from creditshare.middleware.request_id import RequestIDMiddleware, request_id_var
from creditshare.routes import files, health, transactions
from creditshare.services.blob_store import LocalBlobStore
from creditshare.services.catalog_service import CatalogService
from creditshare.services.download_service import DownloadService
from creditshare.services.issue_service import IssueService
from creditshare.services.ledger_service import LedgerService
from creditshare.services.upload_service import UploadService
from creditshare.services.user_service import UserService

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging(settings: Settings) -> None:
    """
    Configure the root logger once for the whole process.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s
    Output: stdout (collected by the container runtime)
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
        force=True,
    )

    # Per-operation chatter from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings: Settings = app.state.settings

    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging(settings)
    logger.info("=" * 60)
    logger.info("CreditShare Backend starting up...")
    logger.info("Blob storage root: %s", app.state.blob_store.root)
    logger.info(
        "Credit policy: download_cost=%d credit_reward=%d",
        settings.download_cost,
        settings.credit_reward,
    )
    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("CreditShare Backend shutting down...")
    await app.state.engine.dispose()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_response(status_code: int, error: str, message: str, details: Optional[dict] = None) -> JSONResponse:
    content = {
        "error": error,
        "message": message,
        "request_id": request_id_var.get(""),
    }
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map the exception hierarchy to HTTP responses.

    Handler hierarchy:
        InvalidInputError / RequestValidationError → 400
        AuthenticationError                        → 401
        InsufficientCreditsError                   → 403 insufficient_credits
        ForbiddenError                             → 403 forbidden
        NotFoundError                              → 404
        InternalError (Database, FileStorage)      → 500, generic message
        CreditShareError (base)                    → 500
        Exception (fallback)                       → 500, stack trace logged

    5xx responses never carry exception context; it is logged server-side.
    """

    @app.exception_handler(InvalidInputError)
    async def handle_invalid_input(request: Request, exc: InvalidInputError):
        logger.warning("[%s] Invalid input: %s", request_id_var.get(""), exc.message)
        return _error_response(400, "invalid_input", exc.message, exc.context)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
        message = f"Invalid {field}: {first.get('msg', 'invalid value')}" if field else "Invalid request."
        logger.warning("[%s] Request validation failed: %s", request_id_var.get(""), message)
        return _error_response(400, "invalid_input", message, {"field": field} if field else None)

    @app.exception_handler(AuthenticationError)
    async def handle_authentication(request: Request, exc: AuthenticationError):
        return _error_response(401, "unauthorized", exc.message)

    @app.exception_handler(InsufficientCreditsError)
    async def handle_insufficient_credits(request: Request, exc: InsufficientCreditsError):
        return _error_response(
            403,
            "insufficient_credits",
            exc.message,
            {"required": exc.required, "available": exc.available},
        )

    @app.exception_handler(ForbiddenError)
    async def handle_forbidden(request: Request, exc: ForbiddenError):
        return _error_response(403, "forbidden", exc.message)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return _error_response(404, "not_found", exc.message)

    @app.exception_handler(InternalError)
    async def handle_internal(request: Request, exc: InternalError):
        rid = request_id_var.get("")
        logger.error("[%s] %s: %s | Context: %s", rid, type(exc).__name__, exc.message, exc.context)
        return _error_response(500, "server_error", "An internal error occurred. Please try again later.")

    @app.exception_handler(CreditShareError)
    async def handle_application_error(request: Request, exc: CreditShareError):
        rid = request_id_var.get("")
        logger.error("[%s] Unhandled application error: %s | Context: %s", rid, exc.message, exc.context)
        return _error_response(500, "server_error", "An internal error occurred. Please try again later.")

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        rid = request_id_var.get("")
        logger.error("[%s] Unexpected error: %s", rid, str(exc), exc_info=True)
        return _error_response(
            500,
            "internal_server_error",
            "An unexpected error occurred. Please try again or contact support.",
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Storage handles and services are built here rather than in the lifespan
    hook so that an app driven without lifespan events (httpx ASGITransport
    in tests) is fully wired.
    """
    settings = settings or default_settings

    app = FastAPI(
        title="CreditShare API",
        description=(
            "File sharing with a credit economy. Uploading a file earns credits; "
            "the first download of someone else's file costs credits, re-downloads are free."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Storage handles & services ────────────────────────────────────────
    engine = build_engine(settings)
    session_factory = build_session_factory(engine)
    blob_store = LocalBlobStore(
        settings.storage_root,
        chunk_size=settings.blob_chunk_size,
        io_timeout=settings.blob_io_timeout,
    )
    ledger = LedgerService()

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.blob_store = blob_store
    app.state.ledger = ledger
    app.state.user_service = UserService(session_factory)
    app.state.catalog_service = CatalogService(session_factory)
    app.state.upload_service = UploadService(
        session_factory,
        blob_store,
        ledger,
        credit_reward=settings.credit_reward,
        max_file_size=settings.max_file_size,
    )
    app.state.download_service = DownloadService(
        session_factory,
        blob_store,
        ledger,
        download_cost=settings.download_cost,
    )
    app.state.issue_service = IssueService(session_factory)

    # ── Register Middleware ───────────────────────────────────────────────
    # Middleware executes in reverse order of addition:
    # RequestID → Logging → GZip → CORS → route
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID",
            "X-Credits-Charged",
            "X-Credits-Balance",
            "Content-Disposition",
        ],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(files.router)
    app.include_router(transactions.router)
    app.include_router(health.router)

    return app


# uvicorn imports `creditshare.main:app`
app = create_app()
