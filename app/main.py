import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.application.use_cases.notifications import NotificationService
from app.config import get_settings
from app.infrastructure.database import SessionLocal, engine, initialize_database
from app.infrastructure.notifications import (
    NotificationBus,
    NotificationStreamGateway,
    build_notification_bus,
)
from app.interfaces.api.routes import register_routes


def create_app(*, notification_bus: NotificationBus | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    ``notification_bus`` overrides the bus selected by ``EVENT_BUS_MODE``.
    """

    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Wire the notification core at startup and release it on shutdown."""

        initialize_database()
        bus = notification_bus or build_notification_bus(settings)
        gateway = NotificationStreamGateway(
            heartbeat_interval=settings.sse_heartbeat_interval_seconds,
            max_pending_frames=settings.stream_max_pending_frames,
        )
        app.state.notification_service = NotificationService(
            SessionLocal, bus, gateway, settings
        )
        try:
            yield
        finally:
            gateway.close_all()
            await bus.close()
            engine.dispose()

    app = FastAPI(title="Chat3D API", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_routes(app)
    return app
