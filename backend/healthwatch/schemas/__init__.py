"""Pydantic schemas for endpoint descriptors and API request/response models."""
from .endpoint import MonitoredEndpoint
from .status import (
    CheckResultResponse,
    CheckHistory,
    EndpointStatus,
    ScanTriggerResponse,
    StatusOverview,
    StatusStats,
)
from .alert import (
    AlertList,
    AlertResponse,
    AlertStatusUpdate,
    NotifierTestResponse,
)

__all__ = [
    "MonitoredEndpoint",
    "CheckResultResponse",
    "CheckHistory",
    "EndpointStatus",
    "ScanTriggerResponse",
    "StatusOverview",
    "StatusStats",
    "AlertList",
    "AlertResponse",
    "AlertStatusUpdate",
    "NotifierTestResponse",
]
