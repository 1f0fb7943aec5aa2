"""FastAPI application factory."""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlmodel import SQLModel

from scriptsync.api.auth import StaticTokenVerifier
from scriptsync.api.routes import sync as sync_routes
from scriptsync.config import get_settings
from scriptsync.db.engine import get_engine
from scriptsync.db.migrations import run_migrations
from scriptsync.runtime import build_runtime
from scriptsync.smartsuite.sync_service import build_sync_service


def create_app(settings=None, engine=None) -> FastAPI:
    """
    Build and return the FastAPI app.

    The engine and SyncRuntime are created in the lifespan, so importing this
    module does not touch the database or open connections.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app_settings = settings or get_settings()
        if engine is not None:
            app_engine = engine
            SQLModel.metadata.create_all(app_engine)
            run_migrations(app_engine)
        else:
            # get_engine() creates tables and runs migrations itself
            app_engine = get_engine()

        runtime = build_runtime(app_settings)
        app.state.engine = app_engine
        app.state.runtime = runtime
        app.state.token_verifier = StaticTokenVerifier(app_settings.sync_api_token)
        app.state.sync_service_factory = lambda: build_sync_service(
            app_settings, app_engine, runtime
        )
        yield
        await runtime.aclose()

    app = FastAPI(
        title="Script Sync API",
        description="SmartSuite → script editor data sync",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.include_router(sync_routes.router, prefix="/sync", tags=["sync"])

    return app


# Module-level app instance for uvicorn
app = create_app()
