"""Display-ready catalogue state: discovery + album/media fetches + projections."""

# pylint: disable=too-many-instance-attributes

from __future__ import annotations

import asyncio
import enum
import logging
import random
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional, Sequence

from lanmedia.assets import AssetFetcher, AssetFetchScope
from lanmedia.catalogue import CatalogueClient
from lanmedia.config import ClientSettings
from lanmedia.discovery import ServiceDiscovery
from lanmedia.errors import DecodeFailure, NetworkFailure
from lanmedia.models import AlbumKind, AlbumSummary, DiscoveredServer, MediaItem

logger = logging.getLogger(__name__)

LIBRARY = "library"
MY_ALBUMS = "albums"


class SortOrder(str, enum.Enum):
    """Orderings offered for a media list."""

    CAPTURED_DESC = "capturedAt-desc"
    CAPTURED_ASC = "capturedAt-asc"
    DURATION_DESC = "duration-desc"
    DURATION_ASC = "duration-asc"


class Phase(str, enum.Enum):
    """What the screen should show."""

    IDLE = "idle"
    DISCOVERING = "discovering"
    NO_SERVER_FOUND = "no-server-found"
    LOADING = "loading"
    LOADED = "loaded"
    EMPTY = "empty"
    ERROR = "error"


def project(
    items: Iterable[MediaItem],
    order: SortOrder = SortOrder.CAPTURED_DESC,
    filter_text: str = "",
) -> list[MediaItem]:
    """
    Filter by filename (case-insensitive substring) and sort.

    Pure: the same arguments always give the same sequence. Ties are broken
    by item id, so descending order is the exact reverse of ascending order.

    Args:
        items (Iterable[MediaItem]): Raw media list.
        order (SortOrder): Requested ordering.
        filter_text (str): Text the filename must contain; blank keeps all.

    Returns:
        list[MediaItem]: New ordered list.
    """
    order = SortOrder(order)
    needle = (filter_text or "").strip().casefold()
    selected = [i for i in items if needle in i.filename.casefold()] if needle else list(items)

    if order in (SortOrder.CAPTURED_DESC, SortOrder.CAPTURED_ASC):
        def key(item: MediaItem):
            return (item.sort_date, item.id)
    else:
        def key(item: MediaItem):
            return (item.duration_seconds, item.sort_date, item.id)

    descending = order in (SortOrder.CAPTURED_DESC, SortOrder.DURATION_DESC)
    return sorted(selected, key=key, reverse=descending)


def photo_sequence(
    items: Iterable[MediaItem],
    order: SortOrder = SortOrder.CAPTURED_DESC,
    filter_text: str = "",
) -> list[MediaItem]:
    """Photos of the projected list, in display order, for paging in a viewer."""
    return [i for i in project(items, order, filter_text) if i.is_photo]


def pick_random_video(
    items: Sequence[MediaItem], rng: Optional[random.Random] = None
) -> MediaItem | None:
    """Pick a random video (never a photo); None when the list has no videos."""
    videos = [i for i in items if not i.is_photo]
    if not videos:
        return None
    return (rng or random).choice(videos)


def is_library_album(album: AlbumSummary) -> bool:
    """Server aggregate albums (`ALL VIDEOS`, mixed albums) go to the library section."""
    return album.kind is AlbumKind.MIXED or album.name.strip().upper().startswith("ALL ")


def group_albums(albums: Iterable[AlbumSummary]) -> dict[str, list[AlbumSummary]]:
    """Split albums into the `library` and `albums` sections, keeping server order."""
    groups: dict[str, list[AlbumSummary]] = {LIBRARY: [], MY_ALBUMS: []}
    for album in albums:
        groups[LIBRARY if is_library_album(album) else MY_ALBUMS].append(album)
    return groups


@dataclass(frozen=True)
class CatalogueSnapshot:
    """Read-only view of the album screen."""

    phase: Phase = Phase.IDLE
    server: DiscoveredServer | None = None
    albums: tuple[AlbumSummary, ...] = ()
    error: str | None = None

    @property
    def groups(self) -> dict[str, list[AlbumSummary]]:
        return group_albums(self.albums)


@dataclass(frozen=True)
class MediaSnapshot:
    """Read-only view of one album's media list."""

    album_id: str
    phase: Phase = Phase.LOADING
    items: tuple[MediaItem, ...] = field(default=())
    error: str | None = None

    def project(
        self, order: SortOrder = SortOrder.CAPTURED_DESC, filter_text: str = ""
    ) -> list[MediaItem]:
        return project(self.items, order, filter_text)


SnapshotCallback = Callable[[CatalogueSnapshot], None]


class CatalogueViewState:
    """
    Drives the remote catalogue screen.

    `enter()` starts discovery; the first usable server triggers an album
    fetch. `leave()` stops discovery and cancels every fetch owned by the
    view. Album and media lists are replaced wholesale on success and left
    untouched on failure. Each fetch carries a generation token, so a
    superseded fetch never writes its result.
    """

    def __init__(
        self,
        discovery: ServiceDiscovery,
        client: CatalogueClient,
        settings: ClientSettings | None = None,
    ) -> None:
        self.discovery = discovery
        self.client = client
        self.settings = settings or discovery.settings
        self._snapshot = CatalogueSnapshot()
        self._listeners: list[SnapshotCallback] = []
        self._visit = 0
        self._generation = 0
        self._unsubscribe: Callable[[], None] | None = None
        self._no_server_timer: asyncio.TimerHandle | None = None
        self._album_task: asyncio.Task | None = None
        self._media: dict[str, MediaSnapshot] = {}
        self._media_tasks: dict[str, asyncio.Task] = {}
        self._media_tokens: dict[str, int] = {}
        self._scopes: list[AssetFetchScope] = []

    @property
    def snapshot(self) -> CatalogueSnapshot:
        return self._snapshot

    @property
    def albums(self) -> tuple[AlbumSummary, ...]:
        return self._snapshot.albums

    def media(self, album_id: str) -> MediaSnapshot | None:
        return self._media.get(album_id)

    def subscribe(self, callback: SnapshotCallback) -> Callable[[], None]:
        """Register `callback` for snapshot changes; returns an unsubscribe function."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _publish(self, **changes) -> None:
        fields = {
            "phase": self._snapshot.phase,
            "server": self._snapshot.server,
            "albums": self._snapshot.albums,
            "error": self._snapshot.error,
        }
        fields.update(changes)
        self._snapshot = CatalogueSnapshot(**fields)
        for callback in list(self._listeners):
            callback(self._snapshot)

    async def wait_until(
        self,
        predicate: Callable[[CatalogueSnapshot], bool],
        timeout: float | None = None,
    ) -> CatalogueSnapshot:
        """Wait for the first snapshot (current one included) matching `predicate`."""
        if predicate(self._snapshot):
            return self._snapshot
        future: asyncio.Future = asyncio.get_running_loop().create_future()

        def check(snapshot: CatalogueSnapshot) -> None:
            if not future.done() and predicate(snapshot):
                future.set_result(snapshot)

        unsubscribe = self.subscribe(check)
        try:
            return await asyncio.wait_for(future, timeout)
        finally:
            unsubscribe()

    async def enter(self) -> None:
        """Start (or restart) browsing from a clean `DISCOVERING` state."""
        await self._teardown()
        self._visit += 1
        self._generation += 1
        self._publish(phase=Phase.DISCOVERING, server=None, albums=(), error=None)
        self._unsubscribe = self.discovery.subscribe(self._on_servers)
        self._arm_discovery_timer()
        await self.discovery.start_browsing()

    async def leave(self) -> None:
        """Stop discovery and cancel everything this view started."""
        await self._teardown()
        self._visit += 1
        self._generation += 1
        self._publish(phase=Phase.IDLE, server=None, albums=(), error=None)

    def _arm_discovery_timer(self) -> None:
        if self._no_server_timer is not None:
            self._no_server_timer.cancel()
        self._no_server_timer = asyncio.get_running_loop().call_later(
            self.settings.discovery_timeout, self._on_discovery_timeout, self._visit
        )

    async def _teardown(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._no_server_timer is not None:
            self._no_server_timer.cancel()
            self._no_server_timer = None
        tasks = [t for t in [self._album_task, *self._media_tasks.values()] if t]
        self._album_task = None
        self._media_tasks.clear()
        self._media_tokens.clear()
        self._media.clear()
        for task in tasks:
            task.cancel()
        scopes, self._scopes = self._scopes, []
        for scope in scopes:
            await scope.close()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self.discovery.is_browsing:
            await self.discovery.stop_browsing()

    def _on_discovery_timeout(self, visit: int) -> None:
        self._no_server_timer = None
        if visit == self._visit and self._snapshot.phase is Phase.DISCOVERING:
            logger.info("No server found after %.0fs", self.settings.discovery_timeout)
            self._publish(phase=Phase.NO_SERVER_FOUND)

    def _on_servers(self, servers: tuple[DiscoveredServer, ...]) -> None:
        current = self._snapshot.server
        if current is not None:
            if any(s.id == current.id for s in servers):
                return
            logger.info("Server %r went away", current.display_name)
            self._cancel_fetches()
            self._publish(phase=Phase.DISCOVERING, server=None, albums=(), error=None)
            self._arm_discovery_timer()

        server = next((s for s in servers if s.is_usable), None)
        if server is None:
            return
        if self._no_server_timer is not None:
            self._no_server_timer.cancel()
            self._no_server_timer = None
        logger.info("Using server %r at %s", server.display_name, server.resolved_address)
        self._publish(server=server)
        self.refresh()

    def _cancel_fetches(self) -> None:
        self._generation += 1
        for task in [self._album_task, *self._media_tasks.values()]:
            if task is not None:
                task.cancel()
        self._album_task = None
        self._media_tasks.clear()
        self._media_tokens.clear()
        self._media.clear()
        scopes, self._scopes = self._scopes, []
        for scope in scopes:
            scope.cancel_all()

    def refresh(self) -> asyncio.Task | None:
        """
        (Re-)fetch the album list, superseding a fetch still in flight.

        Returns:
            asyncio.Task | None: The fetch task, or None without a server.
        """
        server = self._snapshot.server
        if server is None or not server.resolved_address:
            return None
        if self._album_task is not None and not self._album_task.done():
            logger.debug("Superseding album fetch in flight")
            self._album_task.cancel()
        self._generation += 1
        self._publish(phase=Phase.LOADING, error=None)
        self._album_task = asyncio.ensure_future(
            self._load_albums(self._generation, server.resolved_address)
        )
        return self._album_task

    async def _load_albums(self, generation: int, address: str) -> None:
        try:
            albums = await self.client.fetch_albums(address)
        except (NetworkFailure, DecodeFailure) as e:
            if generation == self._generation:
                logger.warning("Album fetch failed: %s", e)
                self._publish(phase=Phase.ERROR, error=str(e))
            return
        if generation != self._generation:
            logger.debug("Discarding superseded album list")
            return
        self._publish(
            phase=Phase.LOADED if albums else Phase.EMPTY,
            albums=tuple(albums),
            error=None,
        )

    def load_media(self, album_id: str) -> asyncio.Task | None:
        """
        Fetch (or refresh) one album's media list, superseding any fetch in flight.

        Returns:
            asyncio.Task | None: The fetch task, or None without a server.
        """
        server = self._snapshot.server
        if server is None or not server.resolved_address:
            return None
        running = self._media_tasks.get(album_id)
        if running is not None and not running.done():
            running.cancel()
        token = self._media_tokens.get(album_id, 0) + 1
        self._media_tokens[album_id] = token
        previous = self._media.get(album_id) or MediaSnapshot(album_id=album_id)
        self._media[album_id] = MediaSnapshot(
            album_id=album_id, phase=Phase.LOADING, items=previous.items
        )
        task = asyncio.ensure_future(
            self._load_media(album_id, token, server.resolved_address)
        )
        self._media_tasks[album_id] = task
        return task

    async def _load_media(self, album_id: str, token: int, address: str) -> None:
        try:
            items = await self.client.fetch_media(address, album_id)
        except (NetworkFailure, DecodeFailure) as e:
            if self._media_tokens.get(album_id) == token:
                logger.warning("Media fetch for album %s failed: %s", album_id, e)
                previous = self._media[album_id]
                self._media[album_id] = MediaSnapshot(
                    album_id=album_id, phase=Phase.ERROR, items=previous.items, error=str(e)
                )
            return
        if self._media_tokens.get(album_id) != token:
            logger.debug("Discarding superseded media list for album %s", album_id)
            return
        self._media[album_id] = MediaSnapshot(
            album_id=album_id,
            phase=Phase.LOADED if items else Phase.EMPTY,
            items=tuple(items),
        )

    def open_asset_scope(self, fetcher: AssetFetcher) -> AssetFetchScope:
        """
        Create an asset fetch scope bound to the current server.

        The scope is closed by `leave()`; close it earlier when the owning
        element goes away.

        Raises:
            RuntimeError: If no server is in use.
        """
        server = self._snapshot.server
        if server is None or not server.resolved_address:
            raise RuntimeError("no server in use")
        scope = AssetFetchScope(fetcher, server.resolved_address)
        self._scopes = [s for s in self._scopes if not s.closed]
        self._scopes.append(scope)
        return scope
