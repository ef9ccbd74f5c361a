from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from app.api import router
from app.web import router as web_router
from logging_config import configure_logging
from services.dashboard import DashboardService, build_dashboard
from settings import get_settings


def create_app(dashboard: Optional[DashboardService] = None) -> FastAPI:
    """Build the application.

    The dashboard service (and the feed store it owns) is created when the
    application starts and closed when it stops; pass one in to override.
    """
    configure_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        service = dashboard or build_dashboard(get_settings())
        app.state.dashboard = service
        try:
            yield
        finally:
            service.close()
            del app.state.dashboard

    app = FastAPI(
        title="CO₂ Uplink Dashboard",
        description="Decodes sensor uplink payloads and serves CO₂ time series, hourly averages and exports.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    app.include_router(web_router)
    return app


app = create_app()
