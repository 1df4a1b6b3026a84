"""FastAPI application factory."""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlmodel import SQLModel

from tourdesk.api.routes import sync as sync_routes
from tourdesk.db.engine import get_engine


def create_app() -> FastAPI:
    """Build and return the FastAPI app."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Create tables on startup (idempotent); honours a test engine override
        engine = app.dependency_overrides.get(get_engine, get_engine)()
        SQLModel.metadata.create_all(engine)
        yield

    app = FastAPI(
        title="Tourdesk Sync API",
        description="Two-way sync between the booking database and the shared spreadsheet",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.include_router(sync_routes.router, prefix="/sync", tags=["sync"])

    return app


# Module-level app instance for uvicorn
app = create_app()
