"""
GeoScale Heat Map API

FastAPI application that:
1. Creates database tables on startup
2. Reports service and database health
3. Serves the heat map endpoints (scans, history, grids, weak locations)

Run locally:
    uvicorn api.main:app --reload
"""

import logging
import sys
from datetime import datetime

from fastapi import FastAPI

from geoscale import __version__
from geoscale.database import init_db, check_db_connection
from geoscale.utils.config import get_settings

from .heatmap import router as heatmap_router

# Configure logging to stdout (hosting platforms treat stderr as errors)
logging.basicConfig(
    level=get_settings().LOG_LEVEL.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
    force=True,
)
logger = logging.getLogger(__name__)

# Quiet down chatty loggers
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

app = FastAPI(
    title="GeoScale Heat Map API",
    description="Local search ranking heat maps powered by DataForSEO and Google Maps",
    version=__version__,
)

app.include_router(heatmap_router)


# ============================================================================
# STARTUP - Initialize Database
# ============================================================================

@app.on_event("startup")
async def startup_event():
    """Initialize database on startup."""
    logger.info("Initializing database...")
    try:
        init_db()
        if check_db_connection():
            logger.info("Database connection verified")
        else:
            logger.warning("Database connection check failed - continuing anyway")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")


# ============================================================================
# HEALTH
# ============================================================================

@app.get("/")
async def root():
    return {"status": "ok", "service": "GeoScale Heat Map API"}


@app.get("/api/health")
async def health():
    """Detailed health check including database and API configuration."""
    settings = get_settings()
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "version": __version__,
        "database": "connected" if check_db_connection() else "disconnected",
        "dataforseo": "configured" if settings.has_dataforseo else "missing",
        "google_maps": "configured" if settings.has_google_maps else "missing",
    }
