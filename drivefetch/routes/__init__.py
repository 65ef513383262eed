from .download import router as download_router
from .tasks import router as tasks_router
from .system import router as system_router

__all__ = [
    "download_router",
    "tasks_router",
    "system_router",
]
