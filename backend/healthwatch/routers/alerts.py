"""Alert API - list alerts and apply operator status changes."""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import HTMLResponse

from ..dependencies import get_engine
from ..schemas.alert import AlertList, AlertResponse, AlertStatusUpdate
from ..services.engine import MonitorEngine
from ..services.store import AlertConflictError, AlertNotFoundError

router = APIRouter(prefix="/api/alerts", tags=["alerts"])

LINK_ACTIONS = {
    "in_process": ("Marked as In Process", "You will receive reminders every 24 hours until resolved."),
    "abort": ("Alert Aborted", "Marked as a false alarm. No more notifications will be sent."),
    "done": ("Marked as Done", "The issue is resolved. No more notifications will be sent."),
}


def _page(title: str, message: str) -> str:
    return (
        "<html><body style=\"font-family: Arial; text-align: center; padding: 50px;\">"
        f"<h2>{title}</h2><p>{message}</p></body></html>"
    )


@router.get("", response_model=AlertList)
async def list_alerts(
    status: Optional[str] = Query(None, pattern="^(new|in_process|done|abort)$"),
    limit: int = Query(100, ge=1, le=1000),
    engine: MonitorEngine = Depends(get_engine),
):
    alerts = await engine.store.list_alerts(status=status, limit=limit)
    return AlertList(
        count=len(alerts),
        alerts=[AlertResponse.model_validate(alert) for alert in alerts],
    )


@router.get("/{alert_id}", response_model=AlertResponse)
async def get_alert(alert_id: str, engine: MonitorEngine = Depends(get_engine)):
    alert = await engine.store.get_alert(alert_id)
    if alert is None:
        raise HTTPException(status_code=404, detail="Alert not found")
    return AlertResponse.model_validate(alert)


@router.put("/{alert_id}/status", response_model=AlertResponse)
async def update_alert_status(
    alert_id: str,
    data: AlertStatusUpdate,
    engine: MonitorEngine = Depends(get_engine),
):
    try:
        alert = await engine.alerts.update_status(alert_id, data.status)
    except AlertNotFoundError:
        raise HTTPException(status_code=404, detail="Alert not found")
    except AlertConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return AlertResponse.model_validate(alert)


@router.get("/{alert_id}/status", response_class=HTMLResponse)
async def update_alert_status_from_link(
    alert_id: str,
    action: str = Query(""),
    engine: MonitorEngine = Depends(get_engine),
):
    """Email action link target (GET so it works from a mail client)."""
    if action not in LINK_ACTIONS:
        return HTMLResponse(_page("Invalid Action", "Valid actions are: in_process, abort, done"), status_code=400)

    try:
        await engine.alerts.update_status(alert_id, action)
    except AlertNotFoundError:
        return HTMLResponse(_page("Alert Not Found", f"Alert ID: {alert_id}"), status_code=404)
    except AlertConflictError as e:
        return HTMLResponse(_page("Alert Already Open", str(e)), status_code=409)

    title, message = LINK_ACTIONS[action]
    return HTMLResponse(_page(title, message))
