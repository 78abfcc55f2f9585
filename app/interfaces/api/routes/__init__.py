from fastapi import FastAPI

from .events import router as events_router


def register_routes(app: FastAPI) -> None:
    """Register every API router on the FastAPI application."""

    app.include_router(events_router)
