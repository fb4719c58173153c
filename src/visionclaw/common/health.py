"""Health checking utilities for VisionClaw."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable

from visionclaw.common.logging import get_logger


class HealthStatus(Enum):
    """Health status enum."""

    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class CheckOutcome:
    """What a check function reports back."""

    ok: bool
    detail: str = ""


CheckFn = Callable[[], Awaitable["bool | CheckOutcome"]]


@dataclass
class HealthCheck:
    """Individual health check definition."""

    name: str
    check_fn: CheckFn
    timeout_seconds: float = 5.0
    critical: bool = True  # If False, failure only causes DEGRADED status


@dataclass
class HealthResult:
    """Result of a health check."""

    name: str
    status: HealthStatus
    message: str = ""
    latency_ms: float = 0.0
    timestamp: float = field(default_factory=time.time)


@dataclass
class AggregatedHealth:
    """Aggregated health status from multiple checks."""

    status: HealthStatus
    checks: list[HealthResult]
    timestamp: float = field(default_factory=time.time)
    message: str = ""


class HealthChecker:
    """Health checker that aggregates multiple health checks."""

    def __init__(self, component: str) -> None:
        self.component = component
        self._checks: list[HealthCheck] = []
        self._last_result: AggregatedHealth | None = None
        self.logger = get_logger("health_checker", component=component)

    def add_check(
        self,
        name: str,
        check_fn: CheckFn,
        timeout_seconds: float = 5.0,
        critical: bool = True,
    ) -> None:
        """Add a health check.

        Args:
            name: Check name.
            check_fn: Async function returning a bool or a CheckOutcome.
            timeout_seconds: Timeout for the check.
            critical: If True, failure causes UNHEALTHY status.
        """
        self._checks.append(
            HealthCheck(
                name=name,
                check_fn=check_fn,
                timeout_seconds=timeout_seconds,
                critical=critical,
            )
        )

    def remove_check(self, name: str) -> None:
        """Remove a health check by name."""
        self._checks = [c for c in self._checks if c.name != name]

    async def _run_check(self, check: HealthCheck) -> HealthResult:
        failed = HealthStatus.UNHEALTHY if check.critical else HealthStatus.DEGRADED
        start_time = time.time()

        try:
            outcome = await asyncio.wait_for(check.check_fn(), timeout=check.timeout_seconds)
        except asyncio.TimeoutError:
            return HealthResult(
                name=check.name,
                status=failed,
                message=f"Timeout after {check.timeout_seconds}s",
                latency_ms=check.timeout_seconds * 1000,
            )
        except Exception as e:
            self.logger.warning("health_check_error", check=check.name, error=str(e))
            return HealthResult(
                name=check.name,
                status=failed,
                message=str(e),
                latency_ms=(time.time() - start_time) * 1000,
            )

        latency_ms = (time.time() - start_time) * 1000
        if not isinstance(outcome, CheckOutcome):
            outcome = CheckOutcome(ok=bool(outcome), detail="" if outcome else "Check returned False")

        return HealthResult(
            name=check.name,
            status=HealthStatus.HEALTHY if outcome.ok else failed,
            message=outcome.detail,
            latency_ms=latency_ms,
        )

    async def check(self) -> AggregatedHealth:
        """Run all health checks concurrently and aggregate results."""
        if not self._checks:
            return AggregatedHealth(
                status=HealthStatus.HEALTHY,
                checks=[],
                message="No checks configured",
            )

        results = await asyncio.gather(*[self._run_check(c) for c in self._checks])

        unhealthy = [r.name for r in results if r.status == HealthStatus.UNHEALTHY]
        degraded = [r.name for r in results if r.status == HealthStatus.DEGRADED]

        if unhealthy:
            status = HealthStatus.UNHEALTHY
            message = f"Unhealthy checks: {', '.join(unhealthy)}"
        elif degraded:
            status = HealthStatus.DEGRADED
            message = f"Degraded checks: {', '.join(degraded)}"
        else:
            status = HealthStatus.HEALTHY
            message = "All checks passed"

        self._last_result = AggregatedHealth(status=status, checks=list(results), message=message)
        return self._last_result

    @property
    def last_result(self) -> AggregatedHealth | None:
        """Get the last health check result."""
        return self._last_result
