"""Endpoint and notification config sources, reloaded once per scan cycle."""
import json
import logging
import os
from typing import List, Optional, Protocol

from pydantic import TypeAdapter, ValidationError

from ..config import Settings
from ..schemas.endpoint import MonitoredEndpoint
from .notifier import NotifierConfig

logger = logging.getLogger(__name__)

_endpoint_list = TypeAdapter(List[MonitoredEndpoint])


class EndpointSource(Protocol):
    def load_endpoints(self) -> List[MonitoredEndpoint]: ...


class ConfigSource(Protocol):
    def load(self) -> NotifierConfig: ...


class StaticEndpointSource:
    def __init__(self, endpoints: Optional[List[MonitoredEndpoint]] = None):
        self.endpoints = list(endpoints or [])

    def load_endpoints(self) -> List[MonitoredEndpoint]:
        return list(self.endpoints)


class JsonFileEndpointSource:
    """Reads a JSON array of endpoint objects.

    A missing or unreadable file yields an empty list, so the cycle is skipped
    rather than aborted.
    """

    def __init__(self, path: str):
        self.path = path

    def load_endpoints(self) -> List[MonitoredEndpoint]:
        if not os.path.exists(self.path):
            logger.warning(f"No endpoint list found at {self.path}")
            return []
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
            endpoints = _endpoint_list.validate_python(data)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.error(f"Error loading endpoints from {self.path}: {e}")
            return []

        logger.info(f"Loaded {len(endpoints)} endpoints from {self.path}")
        return endpoints


class StaticConfigSource:
    def __init__(self, config: Optional[NotifierConfig] = None):
        self.config = config or NotifierConfig()

    def load(self) -> NotifierConfig:
        return self.config


class EnvConfigSource:
    """Builds the notifier config from a fresh read of the environment."""

    def load(self) -> NotifierConfig:
        current = Settings()
        return NotifierConfig(
            host=current.smtp_host,
            port=current.smtp_port,
            username=current.smtp_username,
            password=current.smtp_password,
            use_tls=current.smtp_use_tls,
            from_address=current.alert_email_from,
            cc_address=current.alert_email_cc,
            report_to=current.report_email_to,
            base_url=current.base_url,
        )
