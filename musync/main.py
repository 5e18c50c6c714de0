"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from musync.config import get_settings
from musync.db import close_db, init_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle hook."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    await init_db()
    logger.info("DB ready at %s", settings.db_abs_path)
    yield
    await close_db()
    logger.info("DB closed")


app = FastAPI(
    title="musync",
    version="0.1.0",
    lifespan=lifespan,
)

# Session middleware (signed cookie carrying the user id set by the login front).
app.add_middleware(SessionMiddleware, secret_key=get_settings().secret_key)

# Routers
from musync.routes_playlists import router as playlists_router  # noqa: E402
from musync.routes_sync import router as sync_router  # noqa: E402

app.include_router(playlists_router)
app.include_router(sync_router)


@app.get("/health")
async def health():
    """Simple health-check endpoint."""
    return JSONResponse({"status": "ok", "version": app.version})
