"""
PayGate Backend - FastAPI Application

Merchant payment gateway: HMAC-signed merchant requests, JWT dashboard
sessions, signed transactions and signed webhooks.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from typing import Optional
import logging

from . import __version__
from .config import Settings, settings as default_settings
from .exceptions import AuthenticationError, GatewayError
from .db.init_db import build_storage
from .db.storage import Storage
from .mocks.settlement_oracle import RandomSettlementOracle, SettlementOracle
from .services.scheduler import HousekeepingScheduler
from .services.webhook_notifier import WebhookDispatcher
from .api.auth import router as auth_router
from .api.merchants import router as merchants_router
from .api.transactions import router as transactions_router


# Configure logging
logging.basicConfig(
    level=getattr(logging, default_settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events:
    - Startup: Build storage, start webhook workers and housekeeping scheduler
    - Shutdown: Drain webhooks, stop scheduler, close storage
    """
    config: Settings = app.state.settings

    # Startup
    logger.info("Starting PayGate backend server...")
    logger.info(f"Storage backend: {config.storage_backend}")

    if app.state.storage is None:
        try:
            app.state.storage = await build_storage(config)
            logger.info("Storage initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize storage: {e}")
            raise

    await app.state.dispatcher.start()

    housekeeping = HousekeepingScheduler(app.state.storage, config)
    try:
        housekeeping.start()
    except Exception as e:
        logger.error(f"Failed to start scheduler: {e}")
        raise

    logger.info("Server startup complete")

    yield

    # Shutdown
    logger.info("Shutting down PayGate backend server...")

    try:
        housekeeping.shutdown(wait=True)
    except Exception as e:
        logger.error(f"Error during scheduler shutdown: {e}")

    try:
        await app.state.dispatcher.shutdown(wait=True)
    except Exception as e:
        logger.error(f"Error during webhook dispatcher shutdown: {e}")

    await app.state.storage.close()


def create_app(
    settings: Optional[Settings] = None,
    storage: Optional[Storage] = None,
    settlement_oracle: Optional[SettlementOracle] = None,
    dispatcher: Optional[WebhookDispatcher] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Configuration; defaults to the environment
        storage: Ready storage backend; built from settings at startup if omitted
        settlement_oracle: Payment outcome strategy; random (90% success) if omitted
        dispatcher: Webhook worker pool; built from settings if omitted

    Returns:
        Configured FastAPI app
    """
    config = settings or default_settings

    app = FastAPI(
        title="PayGate API",
        description="Merchant payment gateway with signed requests, transactions and webhooks",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = config
    app.state.storage = storage
    app.state.settlement_oracle = settlement_oracle or RandomSettlementOracle()
    app.state.dispatcher = dispatcher or WebhookDispatcher(
        workers=config.webhook_workers,
        queue_size=config.webhook_queue_size,
        timeout=config.webhook_timeout_seconds,
    )

    # Configure CORS middleware for the dashboard
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        """
        Handle gateway errors with the standard response format.

        Authentication failures share one opaque body; the real error code
        only appears in the log.
        """
        if isinstance(exc, AuthenticationError):
            logger.warning(f"Authentication rejected: {exc.error_code} on {request.method} {request.url.path}")
        elif exc.status_code >= 500:
            logger.error(f"Gateway error: {exc.error_code} - {exc.message}")
        else:
            logger.info(f"Gateway error: {exc.error_code} - {exc.message}")

        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        """
        Handle validation errors with user-friendly messages.

        Used for input validation failures not caught by Pydantic.
        """
        logger.warning(f"Validation error: {str(exc)}")

        return JSONResponse(
            status_code=400,
            content={
                "error_code": "validation_error",
                "message": str(exc),
                "details": {}
            }
        )

    @app.exception_handler(Exception)
    async def general_error_handler(request: Request, exc: Exception):
        """
        Catch-all handler for unexpected errors.

        Logs full exception for debugging but returns generic message to client.
        """
        logger.error(f"Unexpected error: {str(exc)}", exc_info=True)

        return JSONResponse(
            status_code=500,
            content={
                "error_code": "internal_error",
                "message": "An unexpected error occurred",
                "details": {"error_type": type(exc).__name__} if config.debug else {}
            }
        )

    # Health check endpoint
    @app.get("/api/health")
    async def health_check():
        """
        Health check endpoint for monitoring and load balancers.

        Returns:
            Server status and version information
        """
        return {
            "status": "healthy",
            "version": __version__,
            "storage_backend": config.storage_backend,
            "webhooks": {
                "running": app.state.dispatcher.running,
                "pending": app.state.dispatcher.pending,
            },
        }

    # Include API routers
    app.include_router(auth_router, prefix="/api/auth", tags=["Auth"])
    app.include_router(merchants_router, prefix="/api/merchants", tags=["Merchants"])
    app.include_router(transactions_router, prefix="/api/transactions", tags=["Transactions"])

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "paygate.main:app",
        host=default_settings.host,
        port=default_settings.port,
        reload=default_settings.debug,
        log_level=default_settings.log_level.lower()
    )
