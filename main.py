from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Query

from apphost import db
from apphost.api_models import EventOut, HealthCheckOut, ResourceOut
from apphost.host import AppHost
from apphost.notifications import UnknownResource
from apphost.rewriter import CodespacesConfigError
from apphost.runtime import UrlSnapshot
from apphost.settings import Settings


def build_host(settings: Settings | None = None) -> AppHost:
    """Declare the local topology: two projects and one simulated custom resource."""
    h = AppHost(settings)
    h.add_resource(
        "apiservice",
        urls=[
            UrlSnapshot("http://localhost:5380", name="http"),
            UrlSnapshot("https://localhost:7380", name="https"),
        ],
    )
    h.with_http_health_check("apiservice")
    h.add_resource(
        "webfrontend",
        urls=[
            UrlSnapshot("http://localhost:5080", name="http"),
            UrlSnapshot("https://localhost:7080", name="https"),
        ],
    )
    h.add_simulated_resource("provisioner")
    return h


host = build_host()


@asynccontextmanager
async def lifespan(app: FastAPI):
    await asyncio.to_thread(db.init_db)
    try:
        host.with_codespaces()
    except CodespacesConfigError as e:
        # The rewriter cannot run without its configuration; the rest of the host can.
        await db.log_event_async("ERROR", f"{e} URL rewriting disabled.")
    await host.start()
    try:
        yield
    finally:
        await host.stop()


app = FastAPI(title="Application Host", lifespan=lifespan)


@app.get("/resources", response_model=list[ResourceOut])
def list_resources() -> list[ResourceOut]:
    return [ResourceOut.from_snapshot(r, s) for r, s in host.notifications.list_snapshots()]


@app.get("/resources/{name}", response_model=ResourceOut)
def get_resource(name: str) -> ResourceOut:
    try:
        resource = host.notifications.get_resource(name)
        snapshot = host.notifications.get_snapshot(name)
    except UnknownResource:
        raise HTTPException(status_code=404, detail=f"Unknown resource '{name}'.")
    return ResourceOut.from_snapshot(resource, snapshot)


@app.get("/health", response_model=list[HealthCheckOut])
def health() -> list[HealthCheckOut]:
    return [HealthCheckOut.from_result(name, result) for name, result in host.health.check_all().items()]


@app.get("/health/{check}", response_model=HealthCheckOut)
def health_check(check: str) -> HealthCheckOut:
    try:
        result = host.health.check(check)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown health check '{check}'.")
    return HealthCheckOut.from_result(check, result)


@app.get("/events", response_model=list[EventOut])
def events(limit: int = Query(100, ge=1, le=1000), resource: str | None = None) -> list[EventOut]:
    return [EventOut(**row) for row in db.latest_events(limit, resource_name=resource)]


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000)
