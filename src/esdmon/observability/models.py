"""Observability data models.

Plain dataclasses shared by the process collector, the health checks and
the HTTP health endpoint.
"""

from dataclasses import asdict, dataclass
from typing import Any, Optional


@dataclass
class MemoryUsage:
    """Resident and virtual memory of this process."""

    rss_mb: float
    vms_mb: float


@dataclass
class ProcessInfo:
    """Current process information."""

    pid: int
    uptime_seconds: float
    version: str  # From installed package metadata
    memory: MemoryUsage


@dataclass
class HealthCheckResult:
    """Result of a single health check."""

    name: str  # e.g. "sensor_feed", "liveness_sweeper"
    status: str  # "pass" | "fail" | "warn"
    message: str
    timestamp: int  # Unix epoch
    details: Optional[dict]  # Additional diagnostic context

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
