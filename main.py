"""
PayCore - FastAPI Application Entry Point

This is the main entry point for the FastAPI application.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from paycore.config import settings
from paycore.database import async_session_maker, close_db, init_db
from paycore.routers import pay_runs, reports, tax, wage_advances
from paycore.utils.error_handling import setup_exception_handlers

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def seed_tax_tables():
    """
    Seed the PITA 2011 and NTA 2025 tax tables on startup.
    Existing versions are left untouched.
    """
    from paycore.services.tax_law_service import seed_nigerian_tax_tables
    
    async with async_session_maker() as session:
        created = await seed_nigerian_tax_tables(session)
        logger.info(f"Tax law tables ready ({len(created)} created)")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI.
    Handles startup and shutdown events.
    """
    # Startup
    logger.info(f"Starting {settings.app_name}...")
    logger.info(f"Environment: {settings.app_env}")
    
    # Initialize database (dev only - use migrations in production)
    if settings.is_development:
        await init_db()
        logger.info("Database tables initialized")
        await seed_tax_tables()
    
    yield
    
    # Shutdown
    logger.info(f"Shutting down {settings.app_name}...")
    await close_db()
    logger.info("Database connections closed")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    description="Payroll tax and deduction computation with pay-run lifecycle management",
    version="1.0.0",
    docs_url="/api/docs" if settings.is_development else None,
    redoc_url="/api/redoc" if settings.is_development else None,
    lifespan=lifespan,
)

setup_exception_handlers(app)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "environment": settings.app_env,
    }


app.include_router(pay_runs.router, prefix="/api/v1/payroll", tags=["Pay Runs"])
app.include_router(wage_advances.router, prefix="/api/v1/payroll", tags=["Wage Advances"])
app.include_router(tax.router, prefix="/api/v1/payroll", tags=["PAYE Estimates"])
app.include_router(reports.router, prefix="/api/v1/payroll", tags=["Payroll Reports"])


if __name__ == "__main__":
    import uvicorn
    
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
    )
