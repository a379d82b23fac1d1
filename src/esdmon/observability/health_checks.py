"""Health checks reported by the /api/health endpoint."""

from __future__ import annotations

import time
from datetime import datetime, timezone

from ..config.manager import get_config_manager
from ..gateway.liveness import LivenessSweeper
from ..gateway.registry import ClientRegistry
from ..status.store import StatusStore
from .models import HealthCheckResult


def _now() -> int:
    return int(time.time())


def _cfg_int(key: str, default: int) -> int:
    try:
        return int(get_config_manager().get(key))
    except Exception:
        return default


def _failed_result(name: str, message: str, exc: Exception) -> HealthCheckResult:
    return HealthCheckResult(
        name=name,
        status="fail",
        message=f"{message}: {exc}",
        timestamp=_now(),
        details={"error": str(exc)},
    )


def check_sensor_feed(store: StatusStore) -> HealthCheckResult:
    """Warn when the sensor has gone quiet."""
    now = _now()
    last_update = store.get_status().last_update
    if last_update is None:
        return HealthCheckResult(
            name="sensor_feed",
            status="pass",
            message="No sensor reading received yet",
            timestamp=now,
            details=None,
        )

    age = max(0.0, (datetime.now(timezone.utc) - last_update).total_seconds())
    threshold = _cfg_int("health.sensor_stale_seconds", 60)
    if age > threshold:
        return HealthCheckResult(
            name="sensor_feed",
            status="warn",
            message=f"Last sensor reading {age:.0f}s ago (threshold: {threshold}s)",
            timestamp=now,
            details={"age_seconds": round(age, 1), "threshold": threshold},
        )
    return HealthCheckResult(
        name="sensor_feed",
        status="pass",
        message=f"Sensor reporting (last reading {age:.0f}s ago)",
        timestamp=now,
        details=None,
    )


def check_liveness_sweeper(sweeper: LivenessSweeper) -> HealthCheckResult:
    now = _now()
    if not sweeper.is_running:
        return HealthCheckResult(
            name="liveness_sweeper",
            status="fail",
            message="Liveness sweeper is not running",
            timestamp=now,
            details=None,
        )
    return HealthCheckResult(
        name="liveness_sweeper",
        status="pass",
        message=f"Liveness sweeper running every {sweeper.interval_seconds}s",
        timestamp=now,
        details={"last_sweep_timestamp": sweeper.last_sweep_timestamp or None},
    )


def check_observers(registry: ClientRegistry) -> HealthCheckResult:
    count = len(registry)
    return HealthCheckResult(
        name="observers",
        status="pass",
        message=f"{count} client(s) connected",
        timestamp=_now(),
        details={"count": count},
    )


def run_all_health_checks(
    store: StatusStore,
    registry: ClientRegistry,
    sweeper: LivenessSweeper,
) -> list[HealthCheckResult]:
    """Run all health checks and return results in stable order."""
    results: list[HealthCheckResult] = []
    try:
        results.append(check_sensor_feed(store))
    except Exception as exc:
        results.append(_failed_result("sensor_feed", "Sensor feed check failed", exc))

    try:
        results.append(check_liveness_sweeper(sweeper))
    except Exception as exc:
        results.append(_failed_result("liveness_sweeper", "Liveness sweeper check failed", exc))

    try:
        results.append(check_observers(registry))
    except Exception as exc:
        results.append(_failed_result("observers", "Observer check failed", exc))

    return results
