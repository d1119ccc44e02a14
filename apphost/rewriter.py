from __future__ import annotations

import asyncio

import httpx

from . import db
from .notifications import ResourceNotificationService
from .runtime import ResourceEvent, ResourceSnapshot, UrlSnapshot
from .settings import Settings


DEFAULT_PORTS = {"http": 80, "https": 443}


class CodespacesConfigError(RuntimeError):
    pass


def rewrite_url(url_snapshot: UrlSnapshot, codespace_name: str, domain: str) -> UrlSnapshot | None:
    """Return the forwarded form of a localhost URL, or None if it stays as is.

    Raises httpx.InvalidURL for URLs that cannot be parsed.
    """
    if url_snapshot.is_internal:
        return None
    url = httpx.URL(url_snapshot.url)
    if url.scheme not in DEFAULT_PORTS or url.host != "localhost":
        return None
    port = url.port if url.port is not None else DEFAULT_PORTS[url.scheme]
    path = url.raw_path.split(b"?", 1)[0].decode("ascii") or "/"
    return UrlSnapshot(
        url=f"{url.scheme}://{codespace_name}-{port}.{domain}{path}",
        is_internal=url_snapshot.is_internal,
        name=url_snapshot.name,
    )


def _apply(remapped: dict[UrlSnapshot, UrlSnapshot], urls: tuple[UrlSnapshot, ...]) -> tuple[UrlSnapshot, ...]:
    # positional 1:1 replacement
    return tuple(remapped.get(u, u) for u in urls)


class UrlRewriter:
    """Watches resource snapshots and republishes them with Codespaces-forwarded URLs."""

    def __init__(self, notifications: ResourceNotificationService, settings: Settings):
        if not settings.port_forwarding_domain:
            raise CodespacesConfigError(
                "Codespaces was detected but GITHUB_CODESPACES_PORT_FORWARDING_DOMAIN environment missing."
            )
        if not settings.codespace_name:
            raise CodespacesConfigError("Codespaces was detected but CODESPACE_NAME environment missing.")
        self.notifications = notifications
        self.codespace_name = settings.codespace_name
        self.domain = settings.port_forwarding_domain

    def _remap(self, urls: tuple[UrlSnapshot, ...]) -> tuple[dict[UrlSnapshot, UrlSnapshot], list[str]]:
        remapped: dict[UrlSnapshot, UrlSnapshot] = {}
        warnings: list[str] = []
        for original in urls:
            if original in remapped:
                continue
            try:
                new = rewrite_url(original, self.codespace_name, self.domain)
            except httpx.InvalidURL as e:
                warnings.append(f"Skipping malformed URL {original.url!r}: {e}")
                continue
            if new is not None:
                remapped[original] = new
        return remapped, warnings

    def remap(self, urls: tuple[UrlSnapshot, ...], resource_id: str | None = None) -> dict[UrlSnapshot, UrlSnapshot]:
        """Map each URL that needs forwarding to its replacement."""
        remapped, warnings = self._remap(urls)
        for message in warnings:
            db.log_event("WARN", message, resource_name=resource_id)
        return remapped

    def rewrite(self, snapshot: ResourceSnapshot, resource_id: str | None = None) -> tuple[UrlSnapshot, ...] | None:
        """Return the snapshot's URLs with localhost entries replaced, or None if nothing changed."""
        remapped = self.remap(snapshot.urls, resource_id)
        if not remapped:
            return None
        return _apply(remapped, snapshot.urls)

    async def process_event(self, event: ResourceEvent) -> bool:
        remapped, warnings = self._remap(event.snapshot.urls)
        for message in warnings:
            await db.log_event_async("WARN", message, resource_name=event.resource_id)
        if not remapped:
            return False
        await self.notifications.publish_update(
            event.resource_id,
            lambda s: s.with_urls(_apply(remapped, s.urls)),
        )
        await db.log_event_async("INFO", f"Rewrote {len(remapped)} URL(s) for Codespaces", resource_name=event.resource_id)
        return True

    async def run(self, stop: asyncio.Event | None = None) -> None:
        await db.log_event_async("INFO", f"URL rewriter started for codespace '{self.codespace_name}'")
        async for event in self.notifications.watch(stop):
            try:
                await self.process_event(event)
            except Exception as e:
                await db.log_event_async(
                    "ERROR",
                    f"URL rewrite failed: {type(e).__name__}: {e}",
                    resource_name=event.resource_id,
                )
        await db.log_event_async("INFO", "URL rewriter stopped")
