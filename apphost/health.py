from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from threading import Lock
from typing import Callable

import httpx

from .runtime import HealthFlag


class HealthStatus(str, Enum):
    HEALTHY = "Healthy"
    DEGRADED = "Degraded"
    UNHEALTHY = "Unhealthy"


@dataclass(frozen=True)
class HealthCheckResult:
    status: HealthStatus
    description: str = ""
    latency_ms: float | None = None

    @classmethod
    def healthy(cls, description: str = "", latency_ms: float | None = None) -> HealthCheckResult:
        return cls(HealthStatus.HEALTHY, description, latency_ms)

    @classmethod
    def unhealthy(cls, description: str = "", latency_ms: float | None = None) -> HealthCheckResult:
        return cls(HealthStatus.UNHEALTHY, description, latency_ms)


HealthCheck = Callable[[], HealthCheckResult]


def check_name(resource_name: str) -> str:
    return f"{resource_name}_check"


class HealthCheckRegistry:
    """Named health checks, polled by the host."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._checks: dict[str, HealthCheck] = {}

    def add(self, name: str, check: HealthCheck) -> None:
        with self._lock:
            if name in self._checks:
                raise ValueError(f"Health check '{name}' is already registered.")
            self._checks[name] = check

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._checks)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._checks

    def check(self, name: str) -> HealthCheckResult:
        with self._lock:
            check = self._checks.get(name)
        if check is None:
            raise KeyError(name)
        try:
            return check()
        except Exception as e:
            return HealthCheckResult.unhealthy(f"Error: {type(e).__name__}: {e}")

    def check_all(self) -> dict[str, HealthCheckResult]:
        return {name: self.check(name) for name in self.names()}


def flag_check(flag: HealthFlag) -> HealthCheck:
    def _check() -> HealthCheckResult:
        if flag.is_healthy():
            return HealthCheckResult.healthy()
        return HealthCheckResult.unhealthy()

    return _check


def http_check(
    url_provider: Callable[[], str | None],
    timeout_s: float = 2.0,
    transport: httpx.BaseTransport | None = None,
) -> HealthCheck:
    """Probe an HTTP health endpoint.

    Expected JSON: {"status": "healthy"}. ``url_provider`` is called on every
    check so the probe follows URL changes.
    """

    def _check() -> HealthCheckResult:
        url = url_provider()
        if not url:
            return HealthCheckResult.unhealthy("No endpoint")
        start = time.time()
        try:
            with httpx.Client(timeout=timeout_s, follow_redirects=False, transport=transport) as client:
                resp = client.get(url)
            latency_ms = round((time.time() - start) * 1000.0, 2)
            if resp.status_code != 200:
                return HealthCheckResult.unhealthy(f"HTTP {resp.status_code}", latency_ms)
            try:
                data = resp.json()
            except ValueError:
                return HealthCheckResult.unhealthy("Invalid JSON", latency_ms)
            if isinstance(data, dict) and data.get("status") == "healthy":
                return HealthCheckResult.healthy("Healthy", latency_ms)
            return HealthCheckResult.unhealthy(f"Unhealthy payload: {data!r}", latency_ms)
        except (httpx.ConnectError, httpx.TimeoutException):
            latency_ms = round((time.time() - start) * 1000.0, 2)
            return HealthCheckResult.unhealthy("No response", latency_ms)

    return _check
