"""
Health check aggregation — deep health probe for all subsystems.

Checks:
    • Database connectivity (SELECT 1), skipped for the in-memory store
    • Live connections currently registered
    • Web Push configuration (VAPID keys)

Returns a structured health report suitable for:
    - Kubernetes liveness/readiness probes
    - Load balancer health checks
    - Monitoring dashboards

Push being unconfigured only degrades the service: live delivery still
works. An unreachable database makes it unhealthy.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List

from groupsos.core.config import settings
from groupsos.core.database import ping_database

if TYPE_CHECKING:
    from groupsos.services import Services

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # partial functionality
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: float = 0.0
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            d["message"] = self.message
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    status: HealthStatus = HealthStatus.HEALTHY
    version: str = settings.APP_VERSION
    environment: str = settings.ENVIRONMENT
    timestamp: str = ""
    uptime_seconds: float = 0.0
    components: List[ComponentHealth] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "environment": self.environment,
            "timestamp": self.timestamp or datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "components": [c.to_dict() for c in self.components],
        }


# Track application start time
_start_time = time.monotonic()


async def check_database(services: "Services") -> ComponentHealth:
    """Check database connectivity."""
    comp = ComponentHealth(name="database")
    start = time.monotonic()
    if not services.uses_database:
        comp.message = "In-memory store"
        comp.latency_ms = (time.monotonic() - start) * 1000
        return comp
    try:
        await ping_database()
        comp.status = HealthStatus.HEALTHY
        comp.message = "Connection pool available"
        comp.details = {"url": services.settings.DATABASE_URL.split("@")[-1]}
    except Exception as e:
        logger.error("Database health check failed: %s", e)
        comp.status = HealthStatus.UNHEALTHY
        comp.message = str(e)
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_live_connections(services: "Services") -> ComponentHealth:
    """Report how many users hold a live connection."""
    comp = ComponentHealth(name="live_connections")
    start = time.monotonic()
    count = services.registry.count()
    comp.message = f"{count} connected"
    comp.details = {"connected_users": count, "path": services.settings.WS_PATH}
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_web_push(services: "Services") -> ComponentHealth:
    """Check that VAPID keys are configured."""
    comp = ComponentHealth(name="web_push")
    start = time.monotonic()
    if services.push is None:
        comp.status = HealthStatus.DEGRADED
        comp.message = "VAPID keys not configured — offline members are not notified"
    else:
        comp.message = "VAPID configured"
        comp.details = {"subject": services.settings.VAPID_CLAIMS_SUB}
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def run_health_check(services: "Services") -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    checks = [
        check_database(services),
        check_live_connections(services),
        check_web_push(services),
    ]

    # Run all checks
    for coro in checks:
        comp = await coro
        report.components.append(comp)

    # Aggregate status
    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    return report
