"""Main FastAPI application."""
from fastapi import FastAPI
from contextlib import asynccontextmanager

from callscreen.core.config import settings
from callscreen.core.logging import setup_logging
from callscreen.api import health, sessions
from callscreen.api.webhooks import voice


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    setup_logging()
    if settings.session_backend == "database":
        from callscreen.db.database import init_db

        await init_db()
    yield
    # Shutdown
    pass


app = FastAPI(
    title="Call Screening Detector",
    description="Detects iOS call screening on outbound calls and reacts to each outcome",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router, tags=["health"])
app.include_router(voice.router, prefix="/webhooks", tags=["webhooks"])
app.include_router(sessions.router, tags=["sessions"])
