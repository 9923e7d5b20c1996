"""FastAPI main application for safepreview."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from safepreview import __version__
from safepreview.api.preview_endpoints import router as preview_router
from safepreview.config import settings
from safepreview.exceptions import FileSystemFailure
from safepreview.services.blob_store import get_blob_store
from safepreview.services.key_store import get_key_store
from safepreview.utils.logging_config import setup_logging


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    setup_logging(
        log_level=settings.LOG_LEVEL,
        log_to_file=settings.LOG_TO_FILE,
        log_dir=settings.LOG_DIR
    )
    logger.info("safepreview starting up")

    # Load (or create) the secret key once so the first request does not pay for it
    try:
        await get_key_store().get_secret_key()
        logger.info("Secret key loaded")
    except FileSystemFailure as e:
        logger.error(f"Secret key unavailable: {e}")

    yield

    logger.info("safepreview shutting down")
    get_blob_store().clear()


# Create FastAPI app
app = FastAPI(
    title="safepreview",
    description="Safe link previews and encrypted image exchange for chat clients",
    version=__version__,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(preview_router)


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "message": "safepreview is running"}
