# /botrix/utils/lifecycle.py

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI

from botrix.utils.logging import setup_logging
from botrix.services.db_service import db_service
from botrix.services.flow_service import flow_service

# This file manages the application's lifespan: logging and the database
# connection on startup, outbound HTTP and database clients on shutdown.

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    setup_logging()

    logger.info("Application starting up...")
    await db_service.connect()
    logger.info("Application startup complete. Ready to accept requests.")

    yield  # Application is now running

    logger.info("Application shutting down...")
    await flow_service.close()
    db_service.close()
