"""Status overview schemas for the API."""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel


class CheckResultResponse(BaseModel):
    """One recorded probe."""
    server_name: str
    server_url: str
    checked_at: datetime
    online: bool
    response_time_ms: Optional[int] = None
    ssl_valid: Optional[bool] = None
    ssl_expires_at: Optional[datetime] = None
    ssl_days_remaining: Optional[int] = None
    ssl_issuer: Optional[str] = None
    status_code: Optional[int] = None
    error_message: Optional[str] = None
    consecutive_failures: int = 0

    class Config:
        from_attributes = True


class EndpointStatus(CheckResultResponse):
    """Latest check for an endpoint with display fields."""
    customer: str = "Unknown"
    severity: str = "healthy"  # healthy, warning, critical
    issues: List[str] = []


class StatusStats(BaseModel):
    total: int
    online: int
    offline: int
    ssl_warning: int
    ssl_failed: int


class StatusOverview(BaseModel):
    """Current state of every endpoint that has been checked."""
    timestamp: datetime
    scan_in_progress: bool
    pending_retests: int
    stats: StatusStats
    servers: List[EndpointStatus]


class CheckHistory(BaseModel):
    server_url: str
    history: List[CheckResultResponse]


class ScanTriggerResponse(BaseModel):
    triggered: bool
    message: str
