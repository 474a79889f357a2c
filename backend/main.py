"""FastAPI application entry point for the PlanForge backend.

This module initializes the FastAPI application with middleware, routers
and the generation engine wired up in the lifespan handler.

Usage:
    uv run uvicorn main:app --reload
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import router, set_client_registry, set_orchestrator, set_runtime_config
from config import configure_logging, settings
from generation.client import ClientRegistry, ContentClient
from generation.json_repair import JsonRepair
from generation.orchestrator import StageOrchestrator
from generation.prompts import DEFAULT_GENERATOR_CONFIGS
from generation.retry import RetryingClient
from models.database import ProjectStore

# Configure structured logging
configure_logging(settings.log_level, settings.log_format)

logger = structlog.get_logger(__name__)


def build_orchestrator(store: ProjectStore, registry: ClientRegistry) -> StageOrchestrator:
    """Assemble the generation engine on top of a project store."""
    content_client = ContentClient(registry, store)
    return StageOrchestrator(
        features=store,
        structures=store,
        tasks=store,
        prompt_configs=store,
        retrying=RetryingClient(content_client),
        repair=JsonRepair(content_client),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events.

    Creates the project store (seeding default prompt configs and the model
    record), the per-caller client registry and the stage orchestrator.

    Args:
        app: The FastAPI application instance.

    Yields:
        None during application runtime.
    """
    # Startup
    logger.info(
        "application_starting",
        backend_port=settings.backend_port,
        log_level=settings.log_level,
        default_model=settings.default_model,
    )

    store = ProjectStore(settings.database_path)
    await store.init(
        generator_configs=DEFAULT_GENERATOR_CONFIGS,
        runtime_defaults={settings.model_config_key: settings.default_model},
    )

    registry = ClientRegistry(store)
    orchestrator = build_orchestrator(store, registry)

    # Register dependencies with routes
    set_orchestrator(orchestrator)
    set_client_registry(registry)
    set_runtime_config(store)

    # Store on app.state for access
    app.state.project_store = store
    app.state.client_registry = registry
    app.state.orchestrator = orchestrator

    logger.info("application_started")

    yield

    # Shutdown
    logger.info("application_shutting_down")
    app.state.client_registry.clear()
    logger.info("application_shutdown_complete")


# Create FastAPI application
app = FastAPI(
    title="PlanForge",
    description="Backend API that turns project design artifacts into an ordered, "
    "agent-consumable build plan of atomic coding tasks.",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# Configure CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["*"],
)

# Include HTTP routes
app.include_router(router, tags=["execute_coding"])


@app.get("/", include_in_schema=False)
async def root() -> dict[str, str]:
    """Root endpoint that points at the API documentation."""
    return {
        "message": "PlanForge API",
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.backend_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
