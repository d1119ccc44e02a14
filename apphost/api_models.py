from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from .health import HealthCheckResult
from .runtime import Resource, ResourceSnapshot


class UrlOut(BaseModel):
    name: str | None = None
    url: str
    is_internal: bool = False


class ResourceOut(BaseModel):
    name: str
    resource_type: str
    state: str | None = Field(None, description="Free-form state label, e.g. Starting, Running")
    health_status: str | None = Field(None, description="Healthy|Degraded|Unhealthy, None until first poll")
    urls: list[UrlOut] = Field(default_factory=list)
    properties: dict[str, Any] = Field(default_factory=dict)
    created_at: str

    @classmethod
    def from_snapshot(cls, resource: Resource, snapshot: ResourceSnapshot) -> ResourceOut:
        data = snapshot.to_dict()
        return cls(name=resource.name, **data)


class HealthCheckOut(BaseModel):
    name: str
    status: str
    description: str = ""
    latency_ms: float | None = None

    @classmethod
    def from_result(cls, name: str, result: HealthCheckResult) -> HealthCheckOut:
        return cls(name=name, status=result.status.value, description=result.description, latency_ms=result.latency_ms)


class EventOut(BaseModel):
    id: int
    ts: str
    level: str
    resource_name: str | None = None
    message: str
