"""API routers."""
from .monitors import router as monitors_router

__all__ = ["monitors_router"]
