from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from threading import Lock
from typing import Any


def utc_now() -> str:
    return datetime.utcnow().strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class Resource:
    name: str
    resource_type: str = "Project"


@dataclass(frozen=True)
class UrlSnapshot:
    url: str
    is_internal: bool = False
    name: str | None = None


@dataclass(frozen=True)
class ResourceSnapshot:
    """Point-in-time view of a resource. Replaced on every update, never mutated."""

    resource_type: str
    state: str | None = None
    urls: tuple[UrlSnapshot, ...] = ()
    properties: tuple[tuple[str, Any], ...] = ()
    health_status: str | None = None
    created_at: str = field(default_factory=utc_now)

    def with_urls(self, urls: list[UrlSnapshot] | tuple[UrlSnapshot, ...]) -> ResourceSnapshot:
        return replace(self, urls=tuple(urls))

    def with_state(self, state: str) -> ResourceSnapshot:
        return replace(self, state=state)

    def with_health_status(self, health_status: str | None) -> ResourceSnapshot:
        return replace(self, health_status=health_status)

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource_type": self.resource_type,
            "state": self.state,
            "urls": [{"name": u.name, "url": u.url, "is_internal": u.is_internal} for u in self.urls],
            "properties": {k: v for k, v in self.properties},
            "health_status": self.health_status,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class ResourceEvent:
    resource_id: str
    resource: Resource
    snapshot: ResourceSnapshot


class HealthFlag:
    """Single-writer, many-reader health flag.

    Written by the task that owns the resource, read by health checks that may
    run on worker threads. Once healthy it stays healthy.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._healthy = False

    def mark_healthy(self) -> None:
        with self._lock:
            self._healthy = True

    def is_healthy(self) -> bool:
        with self._lock:
            return self._healthy
