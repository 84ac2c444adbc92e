"""API routers."""
from .status import router as status_router
from .alerts import router as alerts_router
from .notifier import router as notifier_router

__all__ = ["status_router", "alerts_router", "notifier_router"]
