"""
File Ingest Agent - Main FastAPI Application

Hosts the ingest orchestrator and exposes:
- Health check
- Start / stop / status and debug toggle
- Baseline sweep
- Plugin registry management
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from app.utils.config import get_settings
from app.utils.log_config import configure_logging
from app.api import health, admin, plugins
from domains.file_ingest.dispatch.plugins import PluginError, PluginNotFoundError
from domains.file_ingest.orchestrator import Orchestrator


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings = get_settings()
    configure_logging(settings)
    logger.info(f"Starting {settings.api_title} v{settings.api_version}")

    orchestrator = Orchestrator()
    app.state.orchestrator = orchestrator

    if settings.auto_start:
        orchestrator.start()

    yield

    # Cleanup
    logger.info("Shutting down application...")
    orchestrator.stop()
    logger.success("Application shut down complete")


# Create FastAPI app
settings = get_settings()
app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description="Watches folders, classifies and correlates files, dispatches uploads to plugins",
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PluginError)
async def plugin_exception_handler(request: Request, exc: PluginError):
    """Registry misuse is the caller's fault."""
    status_code = 404 if isinstance(exc, PluginNotFoundError) else 400
    logger.warning(f"Plugin request rejected: {exc}")
    return JSONResponse(status_code=status_code, content={"error": "Plugin error", "detail": str(exc)})


# Exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.error(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc) if settings.log_level == "DEBUG" else "An error occurred"
        }
    )


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(admin.router, prefix="/admin", tags=["Admin"])
app.include_router(plugins.router, prefix="/plugins", tags=["Plugins"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "status": "operational",
        "docs": "/docs",
        "health": "/health"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=settings.api_port,
        log_level=settings.log_level.lower()
    )
