from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable

if TYPE_CHECKING:
    from .host import AppHost


@dataclass(frozen=True)
class BeforeStartEvent:
    """Raised once, right before the host starts its resources."""

    host: AppHost


Handler = Callable[[Any, asyncio.Event], Awaitable[None]]


class Eventing:
    """Lifecycle event bus. Handlers run in subscription order and errors propagate."""

    def __init__(self) -> None:
        self._handlers: dict[type, list[Handler]] = defaultdict(list)

    def subscribe(self, event_type: type, handler: Handler) -> None:
        self._handlers[event_type].append(handler)

    def handler_count(self, event_type: type) -> int:
        return len(self._handlers.get(event_type, []))

    async def publish(self, event: Any, stop: asyncio.Event) -> None:
        for handler in list(self._handlers.get(type(event), [])):
            await handler(event, stop)
