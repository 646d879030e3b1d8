from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from lms.api.certificates import router as certificates_router
from lms.api.courses import router as courses_router
from lms.api.enrollments import router as enrollments_router
from lms.api.health import router as health_router
from lms.api.metrics_endpoint import router as metrics_router
from lms.api.progress import router as progress_router
from lms.core.config import SETTINGS
from lms.core.errors import DomainError, ErrorKind
from lms.core.logging import setup_logging
from lms.db import engine as db
from lms.db.redis import lifespan_redis
from lms.middleware.metrics import MetricsMiddleware
from lms.middleware.request_context import (
    RequestContextMiddleware,
    install_request_context_filter,
)
from lms.repos.registry import in_memory
from lms.services.catalog import seed_sample_catalog

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
install_request_context_filter()

logger = logging.getLogger(__name__)

_STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.INVALID_STATE: 400,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INTEGRITY: 500,
}


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Teardown runs in reverse order (Redis, then the database pool).
    async with db.lifespan_db():
        async with lifespan_redis():
            if db.engine is None and SETTINGS.is_dev:
                await seed_sample_catalog(in_memory)
            yield


app = FastAPI(
    title="lms-service",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    status_code = _STATUS_BY_KIND[exc.kind]
    if status_code >= 500:
        logger.error(
            "%s %s failed: %s %s",
            request.method,
            request.url.path,
            exc.error_code,
            exc.extra,
        )
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "error_code": exc.error_code},
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Middleware execution order: last-added runs first (outermost layer).
# RequestContext (outermost) → Metrics → CORS → route handler
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(courses_router)
app.include_router(enrollments_router)
app.include_router(progress_router)
app.include_router(certificates_router)

logger.info(
    "lms-service started  env=%s log_level=%s port=%d issuance=%s docs=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    SETTINGS.certificate_issuance,
    "on" if SETTINGS.is_dev else "off",
)
