"""Second Brain core FastAPI application.

Wires the canonicalization engine, the recall scheduler, the job dispatcher
and the maintenance jobs into the application lifecycle.
"""

from collections.abc import AsyncGenerator
from contextlib import AsyncExitStack, asynccontextmanager

import logfire
import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from second_brain.api import dependencies, router
from second_brain.core.base import ApplicationError
from second_brain.core.config import settings
from second_brain.core.handlers import GlobalErrorHandler
from second_brain.core.logging import configure_logfire, get_logger, setup_logging
from second_brain.infrastructure.embeddings.voyage import VoyageEmbeddingService
from second_brain.infrastructure.neo4j.driver import create_neo4j_driver, ensure_constraints
from second_brain.infrastructure.repositories.chunks import Neo4jCanonicalRepository, Neo4jChunkRepository
from second_brain.infrastructure.repositories.in_memory import InMemoryStore
from second_brain.infrastructure.repositories.recall import Neo4jRecallRepository
from second_brain.jobs.dispatch import AsyncioJobDispatcher
from second_brain.jobs.handlers import EngineJobHandlers
from second_brain.services.canonicalization import CanonicalizationEngine
from second_brain.services.maintenance import MaintenanceOrchestrator
from second_brain.services.recall_scheduler import RecallScheduler

configure_logfire(token=settings.logfire_token)
setup_logging()
logger = get_logger(__name__)

error_handler = GlobalErrorHandler()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None]:
    """Application lifecycle: storage, services, dispatcher and maintenance jobs."""
    logger.info("Starting Second Brain core...")

    async with AsyncExitStack() as stack:
        if settings.storage_backend == "neo4j":
            driver = await stack.enter_async_context(create_neo4j_driver())
            await ensure_constraints(driver)
            chunks = Neo4jChunkRepository(driver)
            canonicals = Neo4jCanonicalRepository(driver)
            recall_store = Neo4jRecallRepository(driver)
        else:
            logger.warning("Using in-memory storage; nothing survives a restart")
            store = InMemoryStore()
            chunks = canonicals = recall_store = store

        embeddings = None
        if settings.voyage_api_key.get_secret_value():
            embeddings = VoyageEmbeddingService()
            logger.info(f"Using embedding model '{embeddings.model}'")
        else:
            logger.warning("No Voyage API key; chunks must arrive with embeddings")

        engine = CanonicalizationEngine(chunks, canonicals, embeddings=embeddings)
        scheduler = RecallScheduler(recall_store)

        dispatcher = AsyncioJobDispatcher()
        EngineJobHandlers(chunks, engine, scheduler).register_all(dispatcher)
        await dispatcher.start()
        stack.push_async_callback(dispatcher.stop)

        orchestrator = None
        if not settings.disable_maintenance_jobs:
            orchestrator = MaintenanceOrchestrator(engine)
            await orchestrator.start()
            stack.push_async_callback(orchestrator.shutdown)
        else:
            logger.info("Maintenance jobs disabled by configuration")

        dependencies.canonicalization_engine = engine
        dependencies.recall_scheduler = scheduler
        dependencies.job_dispatcher = dispatcher
        dependencies.maintenance = orchestrator

        logger.info("Second Brain core started", storage_backend=settings.storage_backend)
        try:
            yield
        finally:
            logger.info("Shutting down Second Brain core...")
            dependencies.canonicalization_engine = None
            dependencies.recall_scheduler = None
            dependencies.job_dispatcher = None
            dependencies.maintenance = None

    logger.info("Second Brain core shutdown complete")


async def application_error_handler(_request: Request, exc: ApplicationError) -> JSONResponse:
    status_code, body = await error_handler.handle_application_error(exc)
    return JSONResponse(status_code=status_code, content=body)


async def validation_error_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [{"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")} for e in exc.errors()]
    body = await error_handler.handle_validation_error(exc, errors)
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body)


async def http_exception_handler(_request: Request, exc: HTTPException) -> JSONResponse:
    body = await error_handler.handle_http_exception(exc)
    body["error"] = exc.detail
    return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))


def create_app() -> FastAPI:
    app = FastAPI(
        title="Second Brain Core API",
        description="Chunk canonicalization and spaced-repetition recall",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Enable FastAPI instrumentation for request tracing
    logfire.instrument_fastapi(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ApplicationError, application_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    """Development server entry point."""
    logger.info("Starting Second Brain core development server...")

    uvicorn.run("second_brain.main:app", host="0.0.0.0", port=8000, reload=settings.debug, log_level="info")
