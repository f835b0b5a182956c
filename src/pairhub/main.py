"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from pairhub.api.auth import router as auth_router
from pairhub.api.sessions import router as sessions_router
from pairhub.api.stream import router as stream_router
from pairhub.config import settings
from pairhub.database.engine import init_db
from pairhub.errors import PairHubError
from pairhub.mock_protocol.router import router as mock_protocol_router
from pairhub.services.container import Services, build_services
from pairhub.webhook.handler import router as webhook_router

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle hook."""
    services: Services = app.state.services
    logger.info("Starting %s …", services.settings.app_name)
    await init_db(services.store.engine)
    logger.info("Database initialised")
    await services.registry.reconcile_orphans()

    scheduler = AsyncIOScheduler()
    services.metering.attach(scheduler)
    scheduler.start()
    yield
    logger.info("Shutting down %s …", services.settings.app_name)
    scheduler.shutdown(wait=False)
    await services.orchestrator.shutdown()
    await services.store.dispose()


async def pairhub_error_handler(request: Request, exc: PairHubError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": "Invalid request body"})


def create_app(services: Services | None = None) -> FastAPI:
    services = services or build_services()
    app = FastAPI(
        title=services.settings.app_name,
        description="WhatsApp bot sessions via pairing code, metered in coins",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services
    app.add_exception_handler(PairHubError, pairhub_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    app.include_router(auth_router)
    app.include_router(sessions_router)
    app.include_router(stream_router)
    app.include_router(webhook_router)
    if services.settings.protocol_backend == "simulated":
        app.include_router(mock_protocol_router)

    @app.get("/health")
    async def health_check():
        """Simple liveness probe."""
        return {
            "status": "healthy",
            "app": services.settings.app_name,
            "liveSessions": services.registry.live_count,
        }

    return app


app = create_app()
