"""
stagerun FastAPI application.

API Structure (v1):
- /v1/health - Service health
- /v1/executors - Step executor listing
- /v1/pipelines/validate - Pipeline validation
- /v1/runs/* - Run submission, status and cancellation
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from stagerun.api.routes import router as utility_router
from stagerun.api.runs_routes import router as runs_router
from stagerun.core.config import settings
from stagerun.core.logging import get_logger, setup_logging
from stagerun.steps.registry import get_executor_registry

logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown."""
    setup_logging(settings.log_level)
    logger.info("Starting stagerun service")
    logger.info(f"Workspace: {settings.workspace_dir}")
    logger.info(f"Step executors: {', '.join(get_executor_registry().list_kinds())}")
    if settings.log_dir:
        logger.info(f"Step logs: {settings.log_dir}")

    yield

    logger.info("Shutting down stagerun service")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    description="Run build/deploy pipelines as ordered stages of external tools",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(utility_router, prefix=settings.api_prefix)
app.include_router(runs_router, prefix=settings.api_prefix)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": settings.app_name,
        "version": settings.version,
        "status": "running"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
