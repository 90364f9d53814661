import logging
import traceback
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from wins_column.config.settings import Settings
from wins_column.database import create_session_maker, init_db
from wins_column.exceptions import WinsColumnError
from wins_column.jobs.setup import JobSystem, create_job_system
from wins_column.queues.router import router as jobs_router
from wins_column.webhooks.router import router as webhooks_router

logger = logging.getLogger("wins_column")


@asynccontextmanager
async def lifespan(app: FastAPI) -> Any:
    settings: Settings = app.state.settings
    if getattr(app.state, "job_system", None) is not None:
        # Prebuilt by the caller, who owns its lifecycle.
        yield
        return

    try:
        app.state.engine, app.state.db_session_maker = create_session_maker(settings.database_url)
        await init_db(app.state.engine)
    except Exception as e:
        logger.warning(f"Failed to create database session: {e}")
        raise

    job_system = create_job_system(app.state.db_session_maker, settings)
    app.state.job_system = job_system
    if settings.run_processor:
        await job_system.processor.start()
    else:
        logger.info("Job processor disabled for this process")

    yield

    await job_system.aclose()
    await app.state.engine.dispose()
    logger.info("Application shutdown completed")


def create_app(settings: Optional[Settings] = None, job_system: Optional[JobSystem] = None) -> FastAPI:
    app = FastAPI(
        title="Wins Column",
        description="Commit summaries and release emails from GitHub pushes",
        lifespan=lifespan,
    )
    app.state.settings = settings or Settings()
    app.state.job_system = job_system

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, e: HTTPException) -> JSONResponse:
        logger.error(f"HTTP {e.status_code}: {e.detail} - {request.method} {request.url}")
        return JSONResponse(
            status_code=e.status_code,
            content={"detail": e.detail},
        )

    @app.exception_handler(ValidationError)
    async def validation_exception_handler(request: Request, e: ValidationError) -> JSONResponse:
        logger.error(f"Validation error on {request.method} {request.url}: {e}")
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation error", "errors": e.errors(include_url=False)},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, e: ValueError) -> JSONResponse:
        logger.error(f"ValueError on {request.method} {request.url}: {e}")
        return JSONResponse(
            status_code=400,
            content={"detail": str(e)},
        )

    @app.exception_handler(WinsColumnError)
    async def wins_column_error_handler(request: Request, e: WinsColumnError) -> JSONResponse:
        logger.error(f"{type(e).__name__} on {request.method} {request.url}: {e.message}")
        return JSONResponse(
            status_code=400,
            content={"detail": e.message, "details": e.details},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, e: Exception) -> JSONResponse:
        logger.error(f"Unhandled exception on {request.method} {request.url}:")
        logger.error(traceback.format_exc())
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "error": str(e)},
        )

    app.include_router(jobs_router)
    app.include_router(webhooks_router)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "ok"}

    return app
