"""CheckRecord model - durable log of probe results."""
from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String

from ..database import Base


class CheckRecord(Base):
    """One probe of one endpoint. Only consecutive_failures changes after insert."""

    __tablename__ = "server_checks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    server_name = Column(String, nullable=False)
    server_url = Column(String, nullable=False, index=True)
    checked_at = Column(DateTime, nullable=False, index=True)
    is_online = Column(Boolean, nullable=False)
    response_time_ms = Column(Integer, nullable=True)
    ssl_valid = Column(Boolean, nullable=True)  # NULL = not an https endpoint
    ssl_expires_at = Column(DateTime, nullable=True)
    ssl_days_remaining = Column(Integer, nullable=True)  # Negative once expired
    ssl_issuer = Column(String, nullable=True)
    status_code = Column(Integer, nullable=True)
    error_message = Column(String, nullable=True)
    consecutive_failures = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("idx_checks_server_time", "server_url", "checked_at"),
    )
