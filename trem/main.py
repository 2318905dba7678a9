"""Trem repository core FastAPI application entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from trem import config
from trem.db import connection, migrations
from trem.observability import initialize as initialize_observability, shutdown as shutdown_observability
from trem.routers.assets import assets_router
from trem.routers.ingestion import ingestion_router
from trem.routers.repos import repos_router
from trem.services.repository_service import RepositoryService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("trem")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("Trem repository core starting up")
    initialize_observability(app)

    db = await connection.get_connection()
    await migrations.run_migrations(db)
    app.state.repository_service = RepositoryService(db)

    yield

    logger.info("Trem repository core shutting down")
    app.state.repository_service = None
    shutdown_observability(app)
    await connection.close_connection()


app = FastAPI(
    title="Trem Repository API",
    description="Versioned video project repositories with AI asset ingestion",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        config.FRONTEND_ORIGIN,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(repos_router)
app.include_router(ingestion_router)
app.include_router(assets_router)


@app.get("/api/health")
def health():
    """Health check endpoint."""
    return {
        "status": "ok",
        "db": "connected" if connection._connection else "disconnected",
        "backend": config.DB_BACKEND,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("trem.main:app", host=config.HOST, port=config.PORT)
