"""Status API - current per-endpoint state, history, and manual checks."""
from dataclasses import asdict

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query

from ..dependencies import get_engine
from ..schemas.status import (
    CheckHistory,
    CheckResultResponse,
    EndpointStatus,
    ScanTriggerResponse,
    StatusOverview,
    StatusStats,
)
from ..services.alert_manager import derive_issues, severity
from ..services.engine import MonitorEngine

router = APIRouter(prefix="/api/status", tags=["status"])

DEFAULT_SSL_ALERT_DAYS = 30


@router.get("", response_model=StatusOverview)
async def get_status(engine: MonitorEngine = Depends(get_engine)):
    """Latest check for every endpoint, merged with customer labels."""
    latest = await engine.store.latest_per_endpoint()
    endpoints = {e.url: e for e in (engine.endpoints or engine.reload())}

    servers = []
    for check in latest:
        endpoint = endpoints.get(check.server_url)
        ssl_alert_days = endpoint.ssl_alert_days if endpoint else DEFAULT_SSL_ALERT_DAYS
        issues = derive_issues(check, ssl_alert_days, engine.alerts.slow_threshold_ms)
        servers.append(EndpointStatus(
            **asdict(check),
            customer=(endpoint.customer if endpoint and endpoint.customer else "Unknown"),
            severity=severity(issues).value,
            issues=[issue.type.value for issue in issues],
        ))

    stats = StatusStats(
        total=len(servers),
        online=sum(1 for s in servers if s.online),
        offline=sum(1 for s in servers if not s.online),
        ssl_warning=sum(1 for s in servers if "ssl_expiring" in s.issues),
        ssl_failed=sum(1 for s in servers if s.ssl_valid is False),
    )

    return StatusOverview(
        timestamp=engine.clock.now(),
        scan_in_progress=engine.scan_in_progress,
        pending_retests=len(engine.retests),
        stats=stats,
        servers=servers,
    )


@router.get("/history/{server_url:path}", response_model=CheckHistory)
async def get_history(
    server_url: str,
    limit: int = Query(50, ge=1, le=2000),
    engine: MonitorEngine = Depends(get_engine),
):
    """Recent checks for one endpoint, newest first."""
    history = await engine.store.history_for(server_url, limit)
    return CheckHistory(
        server_url=server_url,
        history=[CheckResultResponse(**asdict(check)) for check in history],
    )


@router.post("/check-all", response_model=ScanTriggerResponse, status_code=202)
async def trigger_scan(background_tasks: BackgroundTasks, engine: MonitorEngine = Depends(get_engine)):
    """Start a full scan in the background unless one is already running."""
    if engine.scan_in_progress:
        return ScanTriggerResponse(triggered=False, message="A scan is already running")
    background_tasks.add_task(engine.run_scan)
    return ScanTriggerResponse(triggered=True, message="Check triggered for all endpoints")


@router.post("/check", response_model=CheckResultResponse)
async def check_endpoint_now(
    url: str = Query(..., min_length=1),
    engine: MonitorEngine = Depends(get_engine),
):
    """Probe one configured endpoint without recording or alerting."""
    endpoint = engine.find_endpoint(url)
    if endpoint is None:
        raise HTTPException(status_code=404, detail="Endpoint not found in configuration")
    result = await engine.prober.probe(endpoint)
    return CheckResultResponse(**asdict(result))
