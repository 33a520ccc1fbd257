"""Discovery of media servers advertised over zeroconf (mDNS/DNS-SD)."""

# pylint: disable=broad-exception-caught

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Callable, Optional, Protocol

from zeroconf import IPVersion, ServiceStateChange
from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf

from lanmedia.config import ClientSettings
from lanmedia.errors import DiscoveryFailure
from lanmedia.models import DiscoveredServer
from lanmedia.utils import build_address

logger = logging.getLogger(__name__)

ServersCallback = Callable[[tuple[DiscoveredServer, ...]], None]


class DiscoveryBackend(Protocol):
    """What ServiceDiscovery needs from the network layer."""

    async def start(
        self,
        service_type: str,
        on_found: Callable[[str], None],
        on_removed: Callable[[str], None],
    ) -> None: ...

    async def stop(self) -> None: ...

    async def resolve(
        self, service_type: str, name: str, timeout: float
    ) -> Optional[tuple[str, int]]: ...


class ZeroconfBackend:
    """Browse and resolve services with python-zeroconf's asyncio API."""

    def __init__(self) -> None:
        self._aiozc: AsyncZeroconf | None = None
        self._browser: AsyncServiceBrowser | None = None

    def _zeroconf(self) -> AsyncZeroconf:
        if self._aiozc is None:
            self._aiozc = AsyncZeroconf(ip_version=IPVersion.All)
        return self._aiozc

    async def start(
        self,
        service_type: str,
        on_found: Callable[[str], None],
        on_removed: Callable[[str], None],
    ) -> None:
        await self.stop()

        # zeroconf passes these by keyword
        def on_service_state_change(
            zeroconf, service_type: str, name: str, state_change: ServiceStateChange
        ) -> None:
            if state_change is ServiceStateChange.Added:
                on_found(name)
            elif state_change is ServiceStateChange.Removed:
                on_removed(name)

        self._browser = AsyncServiceBrowser(
            self._zeroconf().zeroconf,
            [service_type],
            handlers=[on_service_state_change],
        )

    async def stop(self) -> None:
        if self._browser is not None:
            browser, self._browser = self._browser, None
            await browser.async_cancel()

    async def resolve(
        self, service_type: str, name: str, timeout: float
    ) -> Optional[tuple[str, int]]:
        info = AsyncServiceInfo(service_type, name)
        if not await info.async_request(self._zeroconf().zeroconf, int(timeout * 1000)):
            return None
        addresses = info.parsed_addresses(IPVersion.V4Only) or info.parsed_addresses()
        host = addresses[0] if addresses else (info.server or "")
        if not host or not info.port:
            return None
        return host, int(info.port)

    async def close(self) -> None:
        await self.stop()
        if self._aiozc is not None:
            aiozc, self._aiozc = self._aiozc, None
            await aiozc.async_close()


def display_name(service_name: str, service_type: str) -> str:
    """`Living Room._myvideoserver._tcp.local.` -> `Living Room`."""
    suffix = "." + service_type
    if service_name.endswith(suffix):
        return service_name[: -len(suffix)]
    return service_name.rstrip(".")


class ServiceDiscovery:
    """
    Insertion-ordered collection of servers advertising `service_type`.

    Found services are appended unresolved and resolved in the background;
    a failed or timed out resolution drops the entry. Entries are de-duplicated
    by display name, so two distinct servers sharing a name collapse to the
    first one seen. Only this object mutates the collection; observers get
    tuple snapshots.
    """

    def __init__(
        self,
        settings: ClientSettings | None = None,
        backend: DiscoveryBackend | None = None,
    ) -> None:
        self.settings = settings or ClientSettings()
        self.backend = backend if backend is not None else ZeroconfBackend()
        self._servers: list[DiscoveredServer] = []
        self._resolving: dict[str, asyncio.Task] = {}
        self._listeners: list[ServersCallback] = []
        self._active = False

    @property
    def is_browsing(self) -> bool:
        return self._active

    @property
    def servers(self) -> tuple[DiscoveredServer, ...]:
        return tuple(self._servers)

    @property
    def active_server(self) -> DiscoveredServer | None:
        """First usable server; later ones are ignored."""
        for server in self._servers:
            if server.is_usable:
                return server
        return None

    def subscribe(self, callback: ServersCallback) -> Callable[[], None]:
        """Register `callback` for collection changes; returns an unsubscribe function."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.servers
        for callback in list(self._listeners):
            callback(snapshot)

    def _cancel_resolutions(self) -> None:
        for task in self._resolving.values():
            task.cancel()
        self._resolving.clear()

    async def start_browsing(self) -> None:
        """Start (or restart) browsing with an empty result set."""
        if self._active:
            await self.backend.stop()
        self._cancel_resolutions()
        self._servers.clear()
        self._active = True
        self._notify()
        logger.debug("Browsing for %s", self.settings.service_type)
        await self.backend.start(
            self.settings.service_type, self.on_service_found, self.on_service_removed
        )

    async def stop_browsing(self) -> None:
        """Stop browsing; pending resolutions are abandoned."""
        self._active = False
        self._cancel_resolutions()
        await self.backend.stop()

    def on_service_found(self, service_name: str) -> None:
        """Handle a new advertisement."""
        if not self._active:
            return
        name = display_name(service_name, self.settings.service_type)
        if any(server.display_name == name for server in self._servers):
            logger.debug("Ignoring duplicate advertisement for %r", name)
            return
        server = DiscoveredServer(
            id=uuid.uuid4().hex, display_name=name, service_name=service_name
        )
        self._servers.append(server)
        logger.debug("Found %r, resolving", name)
        self._notify()
        self._resolving[service_name] = asyncio.ensure_future(self._resolve(server))

    def on_service_removed(self, service_name: str) -> None:
        """Handle a withdrawn advertisement; matched on the service, not the name."""
        task = self._resolving.pop(service_name, None)
        if task is not None:
            task.cancel()
        before = len(self._servers)
        self._servers = [s for s in self._servers if s.service_name != service_name]
        if len(self._servers) != before:
            logger.debug("Service %r withdrawn", service_name)
            self._notify()

    def _replace(self, server_id: str, updated: DiscoveredServer | None) -> bool:
        for index, server in enumerate(self._servers):
            if server.id == server_id:
                if updated is None:
                    del self._servers[index]
                else:
                    self._servers[index] = updated
                return True
        return False

    async def _resolve(self, server: DiscoveredServer) -> None:
        timeout = self.settings.resolve_timeout
        try:
            try:
                result = await asyncio.wait_for(
                    self.backend.resolve(
                        self.settings.service_type, server.service_name, timeout
                    ),
                    timeout,
                )
            except asyncio.TimeoutError as e:
                raise DiscoveryFailure(f"resolution timed out after {timeout}s") from e
            if result is None:
                raise DiscoveryFailure("service did not resolve")
            host, port = result
            resolved = DiscoveredServer(
                id=server.id,
                display_name=server.display_name,
                service_name=server.service_name,
                resolved_address=build_address(host, port),
            )
        except Exception as e:
            logger.debug("Dropping %r: %s", server.display_name, e)
            if self._replace(server.id, None):
                self._notify()
            return
        finally:
            if self._resolving.get(server.service_name) is asyncio.current_task():
                del self._resolving[server.service_name]

        if self._replace(server.id, resolved):
            logger.debug("Resolved %r to %s", server.display_name, resolved.resolved_address)
            self._notify()
