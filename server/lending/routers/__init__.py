"""FastAPI routers package."""

from .equipment import router as equipment_router
from .health import router as health_router
from .metrics import router as metrics_router
from .requests import router as requests_router

__all__ = [
    "equipment_router",
    "health_router",
    "metrics_router",
    "requests_router",
]
