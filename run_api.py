"""
Script to run the person service API server.

This script starts the FastAPI application using uvicorn. The service keeps
its change stream, router and poller in process, so it runs one worker.
"""

import logging
import os

import uvicorn

from app.config import get_settings

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

if __name__ == "__main__":
    settings = get_settings()
    reload = os.getenv("API_RELOAD", "false").lower() == "true"

    logger.info(f"Starting person service API on {settings.HOST}:{settings.PORT}")
    logger.info(f"Table: {settings.TABLE_NAME}, Reload: {reload}")
    if settings.ENABLE_DOCS:
        logger.info("API Documentation available at /docs")

    uvicorn.run(
        "app.api.main:create_app",
        factory=True,
        host=settings.HOST,
        port=settings.PORT,
        reload=reload,
        workers=1,
        log_level=settings.LOG_LEVEL.lower(),
    )
