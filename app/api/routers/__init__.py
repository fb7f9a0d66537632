"""
app/api/routers package marker.
"""

from app.api.routers.datasets import router as datasets_router
from app.api.routers.materialization_jobs import router as materialization_jobs_router
from app.api.routers.metrics import router as metrics_router
from app.api.routers.uploads import router as uploads_router

__all__ = [
    "datasets_router",
    "materialization_jobs_router",
    "metrics_router",
    "uploads_router",
]
