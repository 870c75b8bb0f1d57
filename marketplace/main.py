"""
Agent Template Marketplace
FastAPI Main Application

Entry point for the template marketplace API: lifecycle, lineage,
favorites, search and usage analytics of agent templates.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from marketplace.api.responses import error_response
from marketplace.config import get_settings
from marketplace.database import async_session_factory, close_db, init_db
from marketplace.errors import MarketplaceError, ValidationError
from marketplace.services import RelationshipLedger

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    logger.info(f"Starting {settings.app_name} in {settings.app_env} mode")

    await init_db()
    logger.info("Database initialized")

    # Apply fork counts left pending by earlier failures
    ledger = RelationshipLedger(async_session_factory, settings)
    applied = await ledger.reconcile_fork_counts()
    logger.info(f"Fork count reconciliation applied {applied} pending increments")

    yield

    # Shutdown
    logger.info("Shutting down application")
    await close_db()


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Marketplace for publishing, forking and favoriting AI agent templates",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/api/docs" if settings.debug else None,
    redoc_url="/api/redoc" if settings.debug else None,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# API Routes
# =============================================================================

@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "environment": settings.app_env,
    }


@app.get("/api/config")
async def get_config():
    """Get public configuration."""
    return {
        "app_name": settings.app_name,
        "environment": settings.app_env,
        "search_max_limit": settings.search_max_limit,
        "list_max_limit": settings.list_max_limit,
        "allow_anonymous_clone": settings.allow_anonymous_clone,
    }


# =============================================================================
# Import and include API routers
# =============================================================================

from marketplace.api import search, templates, users  # noqa: E402
app.include_router(templates.router, prefix="/api/templates", tags=["templates"])
app.include_router(search.router, prefix="/api/search", tags=["search"])
app.include_router(users.router, prefix="/api/users", tags=["users"])


# =============================================================================
# Error Handlers
# =============================================================================

@app.exception_handler(MarketplaceError)
async def marketplace_exception_handler(request: Request, exc: MarketplaceError):
    """Render typed errors as the response envelope."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
    return error_response(exc)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed requests use the same envelope as service validation errors."""
    error = ValidationError(
        "Invalid request",
        details=[
            {"loc": list(e.get("loc", [])), "msg": e.get("msg"), "type": e.get("type")}
            for e in exc.errors()
        ],
    )
    return error_response(error)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": {
                "code": "INTERNAL_ERROR",
                "message": str(exc) if settings.debug else "An unexpected error occurred",
            },
        },
    )


# =============================================================================
# Development server entry point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "marketplace.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="info",
    )
