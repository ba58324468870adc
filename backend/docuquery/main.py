"""
FastAPI Application — Entry Point

DocuQuery API: document upload, processing control, RAG queries, analyses
and usage.

Architecture:
  - All routes are versioned under /api/v1/
  - Caller identity comes from the X-User-Id header (set by the gateway)
  - Processing runs in Celery workers; the API only enqueues
  - Structured JSON error responses on all 4xx/5xx:
      {"error": {"code", "message", "failures"}}

Error mapping:
  DocumentNotFoundError / ConversationNotFoundError  → 404
  RetryLimitExceeded / DocumentNotReadyError         → 409
  UnsupportedFileTypeError / ValueError              → 400
  QueryError (with per-provider failures)            → 502
  EmbeddingError / VectorIndexError / StorageError   → 502
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from docuquery.api.dependencies import get_services
from docuquery.api.v1.conversations import router as conversations_router
from docuquery.api.v1.documents import router as documents_router
from docuquery.api.v1.query import router as query_router
from docuquery.api.v1.usage import router as usage_router
from docuquery.core.config import settings
from docuquery.core.exceptions import (
    ConversationNotFoundError,
    DocumentNotFoundError,
    DocumentNotReadyError,
    EmbeddingError,
    QueryError,
    RetryLimitExceeded,
    StorageError,
    UnsupportedFileTypeError,
    VectorIndexError,
)
from docuquery.core.logging import setup_logging
from docuquery.db.session import check_db_health, dispose_engine
from docuquery.schemas.documents import ErrorResponse

logger = logging.getLogger(__name__)

# (exception type, HTTP status, error code); resolved along the exception MRO
_ERROR_MAP: tuple[tuple[type[Exception], int, str], ...] = (
    (DocumentNotFoundError,     status.HTTP_404_NOT_FOUND,   "DOCUMENT_NOT_FOUND"),
    (ConversationNotFoundError, status.HTTP_404_NOT_FOUND,   "CONVERSATION_NOT_FOUND"),
    (RetryLimitExceeded,        status.HTTP_409_CONFLICT,    "RETRY_LIMIT_EXCEEDED"),
    (DocumentNotReadyError,     status.HTTP_409_CONFLICT,    "DOCUMENT_NOT_READY"),
    (UnsupportedFileTypeError,  status.HTTP_400_BAD_REQUEST, "UNSUPPORTED_FILE_TYPE"),
    (QueryError,                status.HTTP_502_BAD_GATEWAY, "LLM_UNAVAILABLE"),
    (EmbeddingError,            status.HTTP_502_BAD_GATEWAY, "EMBEDDING_FAILED"),
    (VectorIndexError,          status.HTTP_502_BAD_GATEWAY, "VECTOR_INDEX_FAILED"),
    (StorageError,              status.HTTP_502_BAD_GATEWAY, "STORAGE_FAILED"),
    (ValueError,                status.HTTP_400_BAD_REQUEST, "INVALID_REQUEST"),
)

_HTTP_CODES = {
    status.HTTP_400_BAD_REQUEST:              "BAD_REQUEST",
    status.HTTP_401_UNAUTHORIZED:             "UNAUTHORIZED",
    status.HTTP_404_NOT_FOUND:                "NOT_FOUND",
    status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: "FILE_TOO_LARGE",
}


def error_response(status_code: int, code: str, message: str, failures: list | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse.build(code, message, failures),
    )


# ---------------------------------------------------------------------------
# Application lifespan: startup / shutdown hooks
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Run on startup: configure logging, validate DB connectivity.
    Run on shutdown: close the cache client and the connection pool.
    """
    setup_logging()
    logger.info(
        "Starting DocuQuery API | env=%s vector_store=%s",
        settings.app_env, settings.vector_store_backend,
    )

    db_health = await check_db_health()
    if db_health["status"] != "ok":
        logger.critical("Database health check failed at startup: %s", db_health)
        raise RuntimeError(f"DB unavailable: {db_health}")

    logger.info("Database: connected")
    logger.info("S3 bucket: %s", settings.s3_bucket)

    yield

    logger.info("Shutting down DocuQuery API")
    if get_services.cache_info().currsize:
        await get_services().aclose()
    await dispose_engine()


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app() -> FastAPI:
    app = FastAPI(
        title="DocuQuery",
        description=(
            "Document processing and retrieval-augmented question answering over "
            "PDF, DOCX and XLSX uploads."
        ),
        version="1.0.0",
        docs_url="/api/docs" if not settings.is_production else None,
        redoc_url="/api/redoc" if not settings.is_production else None,
        openapi_url="/api/openapi.json" if not settings.is_production else None,
        lifespan=lifespan,
    )

    # ----------------------------------------------------------------
    # Middleware (applied in reverse order: last added = outermost)
    # ----------------------------------------------------------------

    app.add_middleware(GZipMiddleware, minimum_size=1024)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.app_env == "development" else [],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "X-Request-ID", "X-User-Id"],
        expose_headers=["X-Request-ID"],
    )

    @app.middleware("http")
    async def request_id_and_logging(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        start = time.perf_counter()

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request_id

        logger.info(
            "HTTP %s %s %d %.1fms | user=%s",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            request.headers.get("X-User-Id", "-"),
        )
        return response

    # ----------------------------------------------------------------
    # Exception handlers: uniform structured error responses
    # ----------------------------------------------------------------

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        code = _HTTP_CODES.get(exc.status_code, "HTTP_ERROR")
        return error_response(exc.status_code, code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        message = "; ".join(
            f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        return error_response(status.HTTP_422_UNPROCESSABLE_ENTITY, "VALIDATION_ERROR", message)

    def _register(exc_type: type[Exception], status_code: int, code: str) -> None:
        async def handler(request: Request, exc: Exception):
            if status_code >= 500:
                logger.error("Upstream failure | path=%s error=%s", request.url.path, exc)
            failures = exc.failures if isinstance(exc, QueryError) else None
            return error_response(status_code, code, str(exc), failures)

        app.add_exception_handler(exc_type, handler)

    for exc_type, status_code, code in _ERROR_MAP:
        _register(exc_type, status_code, code)

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Catch-all for unhandled exceptions — never expose stack traces."""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        logger.exception(
            "Unhandled exception | path=%s request_id=%s",
            request.url.path, request_id,
        )
        response = error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "INTERNAL_ERROR",
            "An unexpected error occurred.",
        )
        response.headers["X-Request-ID"] = request_id
        return response

    # ----------------------------------------------------------------
    # Routers
    # ----------------------------------------------------------------

    app.include_router(documents_router,     prefix="/api/v1")
    app.include_router(query_router,         prefix="/api/v1")
    app.include_router(conversations_router, prefix="/api/v1")
    app.include_router(usage_router,         prefix="/api/v1")

    # ----------------------------------------------------------------
    # Health endpoint (no identity: used by load balancer)
    # ----------------------------------------------------------------

    @app.get(
        "/health",
        tags=["Operations"],
        summary="Liveness + database probe",
    )
    async def health() -> JSONResponse:
        db_status = await check_db_health()
        if db_status["status"] != "ok":
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "degraded", "service": "docuquery-api", "database": db_status},
            )
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"status": "ok", "service": "docuquery-api", "database": db_status},
        )

    return app


# ---------------------------------------------------------------------------
# Application instance (imported by uvicorn)
# ---------------------------------------------------------------------------

app = create_app()


# ---------------------------------------------------------------------------
# Local development entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "docuquery.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.app_env == "development",
        log_level="debug" if settings.debug else "info",
        access_log=True,
    )
