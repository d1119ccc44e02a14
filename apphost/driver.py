from __future__ import annotations

import asyncio
from enum import Enum

from . import db
from .notifications import ResourceNotificationService
from .runtime import HealthFlag, Resource


class ResourceState(str, Enum):
    UNSTARTED = "Unstarted"
    STARTING = "Starting"
    RUNNING = "Running"


class SimulatedResourceDriver:
    """Stand-in for a dependency whose readiness is not known up front.

    Unstarted -> Starting -> (delay) -> Running, then the health flag turns
    healthy. Models a provisioning step (image pull, external API call) whose
    completion the host cannot see into. There is no failure path.
    """

    def __init__(
        self,
        notifications: ResourceNotificationService,
        resource: Resource,
        flag: HealthFlag,
        delay_s: float = 20.0,
    ):
        self.notifications = notifications
        self.resource = resource
        self.flag = flag
        self.delay_s = max(0.0, float(delay_s))
        self._state = ResourceState.UNSTARTED

    @property
    def state(self) -> ResourceState:
        return self._state

    async def run(self) -> None:
        if self._state is not ResourceState.UNSTARTED:
            raise RuntimeError(f"Resource '{self.resource.name}' was already started.")

        await self._transition(ResourceState.STARTING)
        await asyncio.sleep(self.delay_s)
        await self._transition(ResourceState.RUNNING)
        self.flag.mark_healthy()

    async def _transition(self, state: ResourceState) -> None:
        self._state = state
        await self.notifications.publish_update(self.resource.name, lambda s: s.with_state(state.value))
        await db.log_event_async("INFO", f"State changed to {state.value}", resource_name=self.resource.name)
