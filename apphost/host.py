from __future__ import annotations

import asyncio
from typing import Coroutine

from . import db
from . import settings as settings_module
from .driver import SimulatedResourceDriver
from .eventing import BeforeStartEvent, Eventing
from .health import HealthCheckRegistry, HealthStatus, check_name, flag_check, http_check
from .notifications import ResourceNotificationService, UnknownResource
from .rewriter import DEFAULT_PORTS, UrlRewriter
from .runtime import HealthFlag, Resource, ResourceSnapshot, UrlSnapshot
from .settings import Settings


def _consume_result(task: asyncio.Task) -> None:
    # failures are logged by AppHost._supervise
    if not task.cancelled():
        task.exception()


class AppHost:
    """Owns the notification channel, health checks and every background task."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or settings_module.settings
        self.notifications = ResourceNotificationService()
        self.eventing = Eventing()
        self.health = HealthCheckRegistry()
        self.drivers: dict[str, SimulatedResourceDriver] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._stopping = asyncio.Event()
        self._started = False
        self._codespaces = False

    # --- resources ---

    def add_resource(
        self,
        name: str,
        resource_type: str = "Project",
        urls: list[UrlSnapshot] | tuple[UrlSnapshot, ...] = (),
        state: str | None = None,
    ) -> Resource:
        resource = Resource(name=name, resource_type=resource_type)
        self.notifications.register(
            resource,
            ResourceSnapshot(resource_type=resource_type, state=state, urls=tuple(urls)),
        )
        return resource

    def add_simulated_resource(self, name: str, delay_s: float | None = None) -> SimulatedResourceDriver:
        delay_s = self.settings.simulated_startup_delay_s if delay_s is None else delay_s
        resource = Resource(name=name, resource_type="Simulated")
        self.notifications.register(
            resource,
            ResourceSnapshot(
                resource_type=resource.resource_type,
                state="Unstarted",
                properties=(("startup_delay_s", delay_s),),
            ),
        )
        flag = HealthFlag()
        driver = SimulatedResourceDriver(self.notifications, resource, flag, delay_s)
        self.drivers[name] = driver
        self.health.add(check_name(name), flag_check(flag))

        async def _on_before_start(event: BeforeStartEvent, stop: asyncio.Event) -> None:
            self.spawn(f"driver:{name}", driver.run())

        self.eventing.subscribe(BeforeStartEvent, _on_before_start)
        return driver

    def with_http_health_check(self, name: str, path: str = "/health", timeout_s: float | None = None) -> None:
        if not path.startswith("/") or "://" in path:
            raise ValueError("path must be a simple absolute path (no scheme).")
        self.notifications.get_resource(name)

        def _url() -> str | None:
            for u in self.notifications.get_snapshot(name).urls:
                if not u.is_internal and u.url.split("://", 1)[0] in DEFAULT_PORTS:
                    return u.url.rstrip("/") + path
            return None

        timeout = self.settings.health_timeout_s if timeout_s is None else timeout_s
        self.health.add(check_name(name), http_check(_url, timeout_s=timeout))

    def with_codespaces(self) -> AppHost:
        if not self.settings.codespaces or self._codespaces:
            return self

        # Validate now so a misconfigured sandbox is reported before anything starts.
        rewriter = UrlRewriter(self.notifications, self.settings)

        async def _on_before_start(event: BeforeStartEvent, stop: asyncio.Event) -> None:
            self.spawn("url-rewriter", rewriter.run(stop))

        self.eventing.subscribe(BeforeStartEvent, _on_before_start)
        self._codespaces = True
        return self

    # --- lifecycle ---

    def spawn(self, name: str, coro: Coroutine) -> asyncio.Task:
        if name in self._tasks:
            coro.close()
            raise ValueError(f"Background task '{name}' already exists.")
        task = asyncio.get_running_loop().create_task(self._supervise(name, coro), name=name)
        self._tasks[name] = task
        task.add_done_callback(_consume_result)
        return task

    def task(self, name: str) -> asyncio.Task | None:
        return self._tasks.get(name)

    async def _supervise(self, name: str, coro: Coroutine) -> None:
        try:
            await coro
        except Exception as e:
            await db.log_event_async("ERROR", f"Background task '{name}' failed: {type(e).__name__}: {e}")
            raise

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        await asyncio.to_thread(db.init_db)
        await db.log_event_async("INFO", "Application host starting")
        await self.eventing.publish(BeforeStartEvent(self), self._stopping)
        if self.settings.health_poll_interval_s > 0 and self.health.names():
            self.spawn("health-monitor", self._health_loop())

    async def stop(self) -> None:
        self._stopping.set()
        self.notifications.close()
        tasks = [t for t in self._tasks.values() if not t.done()]
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await db.log_event_async("INFO", "Application host stopped")

    # --- health ---

    async def _health_loop(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.poll_health()
            except Exception as e:
                await db.log_event_async("ERROR", f"Health poll failed: {type(e).__name__}: {e}")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.settings.health_poll_interval_s)
            except asyncio.TimeoutError:
                pass

    async def poll_health(self) -> None:
        """Run every check and publish health_status on the resources whose status changed."""
        for resource, snapshot in self.notifications.list_snapshots():
            name = check_name(resource.name)
            if name not in self.health:
                continue
            result = await asyncio.to_thread(self.health.check, name)
            status = result.status.value
            prev = snapshot.health_status
            if prev == status:
                continue
            try:
                await self.notifications.publish_update(resource.name, lambda s: s.with_health_status(status))
            except UnknownResource:
                continue
            if prev == HealthStatus.HEALTHY.value:
                await db.log_event_async("WARN", f"Resource became unhealthy: {result.description}", resource_name=resource.name)
            elif status == HealthStatus.HEALTHY.value and prev is not None:
                await db.log_event_async("INFO", "Resource recovered", resource_name=resource.name)
            else:
                await db.log_event_async("INFO", f"Health status: {status}", resource_name=resource.name)
