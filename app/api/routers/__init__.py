"""
app/api/routers package marker.
"""

from app.api.routers.imports import router as imports_router
from app.api.routers.scheduled_imports import router as scheduled_imports_router

__all__ = [
    "imports_router",
    "scheduled_imports_router",
]
