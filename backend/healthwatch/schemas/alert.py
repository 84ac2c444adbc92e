"""Alert schemas for the API."""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field


class AlertResponse(BaseModel):
    """Schema for an alert in API responses."""
    id: str
    server_name: str
    server_url: str
    issue_type: str
    issue_details: Optional[str] = None
    status: str  # new, in_process, done, abort
    created_at: datetime
    last_alerted_at: datetime
    resolved_at: Optional[datetime] = None
    alert_count: int

    class Config:
        from_attributes = True


class AlertList(BaseModel):
    count: int
    alerts: List[AlertResponse]


class AlertStatusUpdate(BaseModel):
    """Operator transition of an alert."""
    status: str = Field(..., pattern="^(new|in_process|done|abort)$")


class NotifierTestResponse(BaseModel):
    success: bool
