"""Main FastAPI application for the generation helper.

The API server itself carries no ML dependencies: every model runs as a
separate worker process with its own virtual environment and port.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from genhelper.api.routers import generation, jobs, settings, workers
from genhelper.config import get_api_port

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan events (startup and shutdown)."""
    from genhelper.worker import get_helper

    # Startup
    logger.info("Starting up application...")

    logger.info("Initializing database...")
    from genhelper.db.settings import init_settings_table
    from genhelper.db.job_logs import cleanup_old_logs, ensure_table
    init_settings_table()
    ensure_table()
    removed = cleanup_old_logs(days=30)
    if removed:
        logger.info(f"Removed {removed} job history entries older than 30 days")

    helper = get_helper()
    logger.info(
        f"Helper initialized: root={helper.helper_dir}, port={helper.api_port}, "
        f"timings={helper.timings}"
    )
    helper.state.log_system(f"Server started on port {helper.api_port}")

    logger.info("Startup complete")

    try:
        yield  # Application runs here
    finally:
        # Shutdown
        logger.info("Shutting down application...")
        helper.state.log_system("Server shutting down")
        try:
            await helper.shutdown()
        except Exception as e:
            logger.warning(f"Error shutting down workers: {e}")
        logger.info("Shutdown complete")


# Create FastAPI app with lifespan handler
app = FastAPI(
    title="Generation Helper API",
    description="Local worker lifecycle and generation jobs for image, 3D, motion and audio models",
    version="0.1.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

# The desktop shell calls from its own origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(workers.router)
app.include_router(generation.router)
app.include_router(jobs.router)
app.include_router(settings.router)


@app.get("/api")
async def root():
    """Root API endpoint with service information."""
    return {
        "name": "Generation Helper API",
        "version": "0.1.0",
        "status": "running",
        "endpoints": {
            "status": "/api/status",
            "logs": "/api/logs",
            "deploy": "/api/deploy",
            "start": "/api/start",
            "stop": "/api/stop",
            "stop_all": "/api/stop-all",
            "checkpoints": "/api/checkpoints",
            "image": "/api/flux/generate",
            "mesh": "/api/hunyuan3d/generate",
            "rig": "/api/unirig/rig",
            "motion": "/api/motion/generate",
            "voice": "/api/voice/generate",
            "audio": "/api/audio/generate",
            "jobs": "/api/jobs",
            "settings": "/api/settings",
            "docs": "/api/docs",
        },
    }


@app.get("/api/health")
async def health():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="127.0.0.1", port=get_api_port())
