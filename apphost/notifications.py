from __future__ import annotations

import asyncio
from threading import Lock
from typing import AsyncGenerator, Callable

from .runtime import Resource, ResourceEvent, ResourceSnapshot


class UnknownResource(KeyError):
    pass


class ChannelClosed(Exception):
    pass


_CLOSED = object()


class ResourceNotificationService:
    """Ordered stream of resource snapshots.

    Every watcher gets the current snapshot of each known resource first, then
    each update in publish order. Snapshots are replaced wholesale; publishers
    pass a function that maps the old snapshot to the new one.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._resources: dict[str, tuple[Resource, ResourceSnapshot]] = {}
        self._watchers: list[asyncio.Queue] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def register(self, resource: Resource, snapshot: ResourceSnapshot | None = None) -> ResourceSnapshot:
        snapshot = snapshot or ResourceSnapshot(resource_type=resource.resource_type)
        with self._lock:
            if resource.name in self._resources:
                raise ValueError(f"Resource '{resource.name}' is already registered.")
            self._resources[resource.name] = (resource, snapshot)
            self._broadcast(ResourceEvent(resource.name, resource, snapshot))
        return snapshot

    def get_snapshot(self, resource_id: str) -> ResourceSnapshot:
        with self._lock:
            entry = self._resources.get(resource_id)
        if entry is None:
            raise UnknownResource(resource_id)
        return entry[1]

    def get_resource(self, resource_id: str) -> Resource:
        with self._lock:
            entry = self._resources.get(resource_id)
        if entry is None:
            raise UnknownResource(resource_id)
        return entry[0]

    def list_snapshots(self) -> list[tuple[Resource, ResourceSnapshot]]:
        with self._lock:
            return list(self._resources.values())

    async def publish_update(
        self,
        resource_id: str,
        update: Callable[[ResourceSnapshot], ResourceSnapshot],
    ) -> ResourceSnapshot:
        with self._lock:
            entry = self._resources.get(resource_id)
            if entry is None:
                raise UnknownResource(resource_id)
            resource, old = entry
            new = update(old)
            self._resources[resource_id] = (resource, new)
            self._broadcast(ResourceEvent(resource_id, resource, new))
        return new

    async def watch(self, stop: asyncio.Event | None = None) -> AsyncGenerator[ResourceEvent, None]:
        queue: asyncio.Queue = asyncio.Queue()
        with self._lock:
            if self._closed:
                return
            for resource_id, (resource, snapshot) in self._resources.items():
                queue.put_nowait(ResourceEvent(resource_id, resource, snapshot))
            self._watchers.append(queue)
        try:
            while True:
                item = await self._next(queue, stop)
                if item is _CLOSED:
                    return
                yield item
        finally:
            with self._lock:
                if queue in self._watchers:
                    self._watchers.remove(queue)

    async def wait_for_resource(
        self,
        resource_id: str,
        predicate: Callable[[ResourceSnapshot], bool],
        stop: asyncio.Event | None = None,
    ) -> ResourceSnapshot:
        events = self.watch(stop)
        try:
            async for event in events:
                if event.resource_id == resource_id and predicate(event.snapshot):
                    return event.snapshot
        finally:
            await events.aclose()
        raise ChannelClosed(f"Channel closed before '{resource_id}' reached the expected state.")

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            for queue in self._watchers:
                queue.put_nowait(_CLOSED)

    def _broadcast(self, event: ResourceEvent) -> None:
        # caller holds self._lock
        if self._closed:
            return
        for queue in self._watchers:
            queue.put_nowait(event)

    @staticmethod
    async def _next(queue: asyncio.Queue, stop: asyncio.Event | None) -> object:
        if stop is None:
            return await queue.get()
        if stop.is_set():
            return _CLOSED
        getter = asyncio.ensure_future(queue.get())
        stopper = asyncio.ensure_future(stop.wait())
        try:
            await asyncio.wait({getter, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            getter.cancel()
            stopper.cancel()
        if stop.is_set() or getter.cancelled():
            return _CLOSED
        return getter.result()
