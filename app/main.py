# app/main.py
"""
Credit operations service: FastAPI app with database pool lifecycle management.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from app.config import settings
from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger, setup_logging
from app.middleware import CORSMiddleware, RequestContextMiddleware
from app.routes import credit_operations, health

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""

    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    try:
        logger.info("Initializing database pool")
        await db_pool.initialize()
        logger.info("All services initialized successfully", services=["database_pool"])

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e))
        try:
            await db_pool.close()
        except Exception as cleanup_error:
            logger.error("Error cleaning up database pool", error=str(cleanup_error))
        raise

    yield

    logger.info("Application shutting down")

    try:
        logger.info("Closing database pool")
        await db_pool.close()
        logger.info("All services closed successfully")
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))


app = FastAPI(
    title="Credit Operations",
    description="Credit ledger and listing boost allocation for the vehicle marketplace",
    version="0.1.0",
    lifespan=lifespan,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    logger.info(
        "HTTP request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
    )
    return response


# Added last = runs first: request id is bound before CORS and request logging
app.add_middleware(CORSMiddleware, allowed_origins=settings.CORS_ALLOW_ORIGINS)
app.add_middleware(RequestContextMiddleware)

# Include routers
app.include_router(health.router)
app.include_router(credit_operations.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
