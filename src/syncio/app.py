"""FastAPI application for Stremio addon sync.

This is the main entry point for the sync API server.
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .sync.api import auth_router, router
from .sync.api.dependencies import (
    close_db_pool,
    close_stremio_clients,
    init_db_pool,
    init_stremio_clients,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager.

    Handles startup and shutdown events:
    - Startup: Initialize database pool and Stremio clients
    - Shutdown: Cancel device logins, close clients and the database pool
    """
    logger.info("Starting Syncio API...")

    try:
        await init_db_pool()
        logger.info("Database pool initialized")
    except Exception as e:
        logger.error(f"Failed to initialize database pool: {e}")
        raise

    await init_stremio_clients()

    yield

    logger.info("Shutting down Syncio API...")

    await close_stremio_clients()
    await close_db_pool()
    logger.info("Database pool closed")


app = FastAPI(
    title="Syncio Addon Sync API",
    description="""
    Keeps the Stremio addon collections of a group's members in line with
    the group's addon list.

    ## Features

    - **Plan**: Preview the changes a sync would make to an account
    - **Sync**: Sync one user, or every member of a group
    - **Status**: See which accounts are out of sync
    - **Device login**: Link a Stremio account through an approval link
    """,
    version="1.0.0",
    lifespan=lifespan,
)

cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "X-API-Key", "Accept"],
)

app.include_router(router)
app.include_router(auth_router)


@app.get("/health")
async def health():
    """Global health check."""
    return {"status": "healthy"}


def main():
    import uvicorn

    uvicorn.run(
        "src.syncio.app:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
    )


if __name__ == "__main__":
    main()
