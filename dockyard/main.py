"""
FastAPI main application entry point.
"""
import logging

from fastapi import FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from dockyard.api.v1.router import api_router
from dockyard.core.config import settings
from dockyard.core.database import engine
from dockyard.core.event_handlers import register_all_handlers
from dockyard.core.exception_handlers import register_exception_handlers
from dockyard.services.deployment.executor import deployment_executor

logger = logging.getLogger(__name__)

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Deployment orchestration API: turns stored project files into running containers",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/api/openapi.json",
)

# Register domain exception handlers
register_exception_handlers(app)

# When allow_credentials=True, origins must be specific (not ["*"])
cors_origins = settings.get_cors_origins()
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        "Authorization",
        "Accept",
        "Origin",
        "X-Requested-With",
    ],
    max_age=600,  # Cache preflight requests for 10 minutes
)


@app.on_event("startup")
async def startup_event():
    """
    Startup event handler.
    """
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Register event handlers
    register_all_handlers()

    # Check database connection
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("Database connection successful")
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return

    # Deployments cut off by a previous shutdown can never finish
    try:
        await deployment_executor.recover_interrupted()
    except Exception as e:
        logger.error(f"Error recovering interrupted deployments: {e}")


@app.on_event("shutdown")
async def shutdown_event():
    """
    Shutdown event handler.
    """
    await deployment_executor.shutdown()
    await engine.dispose()
    logger.info("Application shutdown complete")


@app.get("/api/health", status_code=status.HTTP_200_OK)
async def health_check():
    """
    Health check endpoint.

    Returns:
        Health status and component checks
    """
    db_healthy = False
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        db_healthy = True
    except Exception as e:
        logger.warning(f"Health check database probe failed: {e}")

    overall_status = "healthy" if db_healthy else "unhealthy"

    return JSONResponse(
        status_code=status.HTTP_200_OK if db_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": overall_status,
            "components": {
                "database": "healthy" if db_healthy else "unhealthy",
            },
            "version": settings.APP_VERSION,
        }
    )


@app.get("/api/v1/info", status_code=status.HTTP_200_OK)
async def info():
    """
    API information endpoint.

    Returns:
        API version and system information
    """
    return {
        "app_name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "api_version": "v1",
    }


# Include API v1 router
app.include_router(api_router, prefix="/api/v1")
