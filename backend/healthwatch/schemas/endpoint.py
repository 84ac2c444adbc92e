"""Monitored endpoint descriptor."""
from typing import Optional
from pydantic import BaseModel, Field


class MonitoredEndpoint(BaseModel):
    """An endpoint to probe, as supplied by the endpoint source for one scan cycle."""
    name: str = Field(..., min_length=1, max_length=255)
    url: str = Field(..., pattern=r"^https?://")
    check_interval: int = Field(default=300, ge=10)  # seconds
    ssl_alert_days: int = Field(default=30, ge=0)
    failure_threshold: int = Field(default=3, ge=1, le=10)
    alert_email: Optional[str] = None
    customer: Optional[str] = None
    enabled: bool = True

    class Config:
        frozen = True

    @property
    def is_secure(self) -> bool:
        return self.url.lower().startswith("https://")
