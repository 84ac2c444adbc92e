"""Notifier API."""
from fastapi import APIRouter, Depends

from ..dependencies import get_engine
from ..schemas.alert import NotifierTestResponse
from ..services.engine import MonitorEngine

router = APIRouter(prefix="/api/notifier", tags=["notifier"])


@router.post("/test", response_model=NotifierTestResponse)
async def test_notifier(engine: MonitorEngine = Depends(get_engine)):
    """Reload notification settings and verify the SMTP connection."""
    engine.notifier.configure(engine.config_source.load())
    return NotifierTestResponse(success=await engine.notifier.test_connection())
