from contextlib import asynccontextmanager
import asyncio
import logging

from fastapi import FastAPI, Request

from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from epg_now.config import CustomSettings, settings, setup_logging
from epg_now.services import EPGManager

from epg_now.routers import main_router


logger = logging.getLogger(__name__)


def create_app(
    app_settings: CustomSettings | None = None,
    manager: EPGManager | None = None,
) -> FastAPI:
    """Build the service with one EPG manager owned by the app"""
    app_settings = app_settings or settings
    epg_manager = manager or EPGManager(app_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup and shutdown events"""
        logger.info("Starting EPG Now...")
        app_settings.log_summary()

        initial_load: asyncio.Task | None = None
        try:
            await epg_manager.start()
            if app_settings.epg_source:
                # Initial load runs in the background
                initial_load = asyncio.create_task(epg_manager.initialize(app_settings.epg_source))
            logger.info("EPG Now started successfully")
        except Exception as e:
            logger.error(f"Failed to start EPG Now: {e}", exc_info=True)
            raise

        yield

        logger.info("Shutting down EPG Now...")
        if initial_load and not initial_load.done():
            initial_load.cancel()
        try:
            await epg_manager.shutdown()
        except Exception as e:
            logger.error(f"Error during shutdown: {e}", exc_info=True)
        logger.info("EPG Now stopped")

    app = FastAPI(
        title="EPG Now",
        version="0.1.0",
        lifespan=lifespan
    )
    app.state.epg_manager = epg_manager
    app.include_router(main_router)

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        """Malformed query input"""
        logger.warning(f"Bad request for {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Log validation errors with details"""
        logger.error(f"Validation error for {request.method} {request.url.path}")
        logger.error(f"Validation details: {exc.errors()}")

        errors = []
        for error in exc.errors():
            errors.append({
                "type": error.get("type"),
                "loc": error.get("loc"),
                "msg": error.get("msg"),
                "input": str(error.get("input", ""))[:100]
            })

        return JSONResponse(status_code=422, content={"detail": errors})

    return app


setup_logging()
app = create_app()
