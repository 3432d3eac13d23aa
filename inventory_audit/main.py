"""FastAPI application entry point, wires everything together.

Usage:
    python -m inventory_audit.main
"""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from inventory_audit.audit.middleware import AuditContextMiddleware
from inventory_audit.audit.routes import router as audit_router
from inventory_audit.config import settings
from inventory_audit.db.engine import db_lifespan
from inventory_audit.errors import AuditError

# ── Logging setup ────────────────────────────────────────────────────

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    stream=sys.stdout,
)
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = logging.getLogger(__name__)

# ── FastAPI lifespan ─────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup and shutdown lifecycle."""
    logger.info("Starting inventory API (env=%s, audit mode=%s)", settings.environment, settings.audit.mode)
    if settings.audit.mode == "interceptor":
        logger.warning("Audit mode 'interceptor': writes outside the ORM are not audited")

    async with db_lifespan():
        logger.info("Database initialized")
        yield
        logger.info("Shutting down inventory API...")

    logger.info("Shutdown complete")


# ── FastAPI app ──────────────────────────────────────────────────────


def create_app() -> FastAPI:
    app = FastAPI(
        title="Industrial Inventory API",
        description="Equipment inventory with tamper-resistant audit trail",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_middleware(AuditContextMiddleware)
    app.include_router(audit_router)

    @app.exception_handler(AuditError)
    async def audit_error_handler(request: Request, exc: AuditError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("Audit error on %s %s: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {
            "status": "ok",
            "environment": settings.environment,
            "audit_mode": settings.audit.mode,
        }

    return app


app = create_app()


# ── Entry point ──────────────────────────────────────────────────────

if __name__ == "__main__":
    uvicorn.run(
        "inventory_audit.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )
