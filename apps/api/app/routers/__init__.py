"""API routers."""

from app.routers.tickets import router as tickets_router

__all__ = ["tickets_router"]
