"""FastAPI application factory."""

# Import timezone enforcement (sets TZ=UTC)
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Response, status
from sqlalchemy import text

from benana.api.routes import images, queue, settings as settings_routes
from benana.core import timezone  # noqa: F401
from benana.core.config import Settings, configure_logging
from benana.core.database import create_engine, init_db, setup_db_session
from benana.core.paths import StudioPaths, ensure_studio_directories
from benana.services.artifacts.image_store import ImageStore
from benana.services.config_store import ConfigStore
from benana.services.image_generation.gemini_client import GeminiClient
from benana.uow import create_uow_factory
from benana.workers.generation_queue import GenerationQueue

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Handles startup and shutdown tasks:
    - Startup: Create studio directories, open the database, recover the queue
    - Shutdown: Stop dispatching, wait for running jobs, dispose the engine
    """
    settings: Settings = app.state.settings

    # Configure logging
    configure_logging(settings)

    paths = StudioPaths(settings.home)
    ensure_studio_directories(paths)

    # Setup database
    engine = create_engine(settings.resolved_database_url)
    fts_available = await init_db(engine)
    session_factory = setup_db_session(engine)
    uow_factory = create_uow_factory(session_factory)

    async with await uow_factory() as uow:
        default_project_id = await uow.projects.ensure_default_project()

    # Services
    config_store = ConfigStore(paths)
    gemini_client = GeminiClient.from_settings(settings)
    image_store = ImageStore(uow_factory, paths, settings)
    generation_queue = GenerationQueue(
        uow_factory=uow_factory,
        config_store=config_store,
        gemini_client=gemini_client,
        image_store=image_store,
        concurrency=config_store.get_public_config().queue_concurrency,
    )

    # Store in app.state for access in routes
    app.state.paths = paths
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.config_store = config_store
    app.state.gemini_client = gemini_client
    app.state.image_store = image_store
    app.state.queue = generation_queue

    # Requeue jobs left running by a previous process, then start dispatching
    await generation_queue.start()

    logger.info(
        "application.startup",
        home=str(paths.root),
        default_project_id=default_project_id,
        fts_available=fts_available,
    )

    yield

    logger.info("application.shutdown")
    await generation_queue.shutdown()
    await engine.dispose()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        settings: Explicit settings (loaded from the environment when omitted)

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title="Benana Studio API",
        description="Local image generation studio backed by the Gemini API",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings or Settings()  # type: ignore[call-arg]

    # Register API routers
    app.include_router(queue.router)
    app.include_router(images.router)
    app.include_router(settings_routes.router)

    # Health check endpoint with database validation
    @app.get("/health")
    async def health_check(response: Response):
        """Health check endpoint with database connectivity test.

        Returns:
            200: {"status": "healthy"} if database connection succeeds
            503: {"status": "unhealthy", "error": {...}} if database connection fails
        """
        try:
            async with app.state.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()

            logger.debug("health_check.success")
            return {"status": "healthy"}

        except Exception as e:
            logger.error(
                "health_check.failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {
                "status": "unhealthy",
                "error": {
                    "type": type(e).__name__,
                    "message": str(e),
                },
            }

    return app


# Create app instance for uvicorn
app = create_app()
