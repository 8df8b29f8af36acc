"""
PaySync Backend - FastAPI Application

Payment order synchronization service: signed storefront endpoints,
Stripe webhooks, and a background reconciliation sweep that repairs orders
whose webhook never arrived.
"""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging

from .config import settings
from .container import ServiceContainer
from .exceptions import PaySyncError
from .db.init_db import initialize_database
from .api.orders import router as orders_router
from .api.webhooks import router as webhooks_router
from .api.admin import router as admin_router
from .api.products import router as products_router


# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events:
    - Startup: Build services, create tables, start the reconciliation scheduler
    - Shutdown: Stop the scheduler, dispose the database engine
    """
    # Startup
    logger.info("Starting PaySync backend server...")
    logger.info(f"Demo mode: {settings.demo_mode}")

    services = getattr(app.state, "services", None)
    owns_services = services is None
    if owns_services:
        services = ServiceContainer.from_settings(settings)
        app.state.services = services

    # Initialize database
    try:
        await initialize_database(services.engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

    # Start APScheduler for the reconciliation sweep
    if settings.reconciliation_enabled and owns_services:
        try:
            services.scheduler.start()
            logger.info("APScheduler started for order reconciliation")
        except Exception as e:
            logger.error(f"Failed to start scheduler: {e}")
            if not settings.demo_mode:
                raise
            logger.warning("Continuing without scheduler in demo mode")
    else:
        logger.info("Order reconciliation scheduler disabled")

    logger.info("Server startup complete")

    yield

    # Shutdown
    logger.info("Shutting down PaySync backend server...")

    if owns_services:
        try:
            services.scheduler.shutdown(wait=True)
            logger.info("Scheduler shutdown complete")
        except Exception as e:
            logger.error(f"Error during scheduler shutdown: {e}")
        await services.close()


# Initialize FastAPI application
app = FastAPI(
    title="PaySync API",
    description="Payment order synchronization with signed requests and gateway reconciliation",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(PaySyncError)
async def paysync_error_handler(request: Request, exc: PaySyncError):
    """
    Handle domain errors with the standardized response format.

    Status code comes from the exception class (401 auth, 409 replay,
    404 not found, 502 gateway, ...); body from PaySyncError.to_dict().
    """
    if exc.status_code >= 500:
        logger.error(f"{exc.error_code} - {exc.message}", extra={"details": exc.details})
    else:
        logger.warning(f"{exc.error_code} - {exc.message}", extra={"details": exc.details})

    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict()
    )


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
            "details": {"error_type": type(exc).__name__} if settings.demo_mode else {}
        }
    )


# Health check endpoint
@app.get("/api/health")
async def health_check(request: Request):
    """
    Health check endpoint for monitoring and load balancers.

    Always 200; database connectivity is reported, not enforced.
    """
    services = request.app.state.services
    try:
        database = "connected" if await services.store.ping() else "unavailable"
    except Exception as e:
        logger.warning(f"Health check database ping failed: {e}")
        database = "unavailable"

    return {
        "status": "healthy" if database == "connected" else "degraded",
        "version": "0.1.0",
        "demo_mode": settings.demo_mode,
        "database": database,
        "reconciliation": {
            "scheduler_running": services.scheduler.running,
            "sweep_in_progress": services.sweeper.running,
        },
    }


# Include API routers
app.include_router(orders_router, prefix="/api", tags=["Orders"])
app.include_router(webhooks_router, prefix="/api", tags=["Webhooks"])
app.include_router(admin_router, prefix="/api/admin", tags=["Admin"])
app.include_router(products_router, prefix="/api/products", tags=["Products"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "paysync.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.demo_mode,
        log_level=settings.log_level.lower()
    )
