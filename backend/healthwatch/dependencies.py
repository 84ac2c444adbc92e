"""FastAPI dependencies."""
from fastapi import HTTPException, Request

from .services.engine import MonitorEngine


def get_engine(request: Request) -> MonitorEngine:
    """Engine created in the application lifespan."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Monitor engine not started")
    return engine
