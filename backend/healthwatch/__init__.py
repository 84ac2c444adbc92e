"""HealthWatch - endpoint reachability and TLS certificate monitoring."""

__version__ = "1.0.0"
