"""FastAPI application factory for Taskboard."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .config import settings
from .errors import register_exception_handlers
from .security.guard import SecurityHeadersMiddleware

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Auto-create tables for SQLite (local dev)
    if "sqlite" in settings.database_url:
        from .database import engine
        from .models import Base
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    yield


app = FastAPI(title=settings.app_title, lifespan=lifespan)

app.add_middleware(SecurityHeadersMiddleware)
register_exception_handlers(app)

# Import and register routers
from .routers import health, tasks  # noqa: E402

app.include_router(tasks.router)
app.include_router(health.router)
