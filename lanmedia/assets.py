"""Retrieval of thumbnails and media streams with a bounded retry loop."""

# pylint: disable=too-many-branches

from __future__ import annotations

import asyncio
import io
import logging
from contextlib import asynccontextmanager
from types import MappingProxyType
from typing import AsyncIterator, Callable, Mapping, Optional
from urllib.parse import quote

from aiohttp import ClientResponse, ClientSession, ClientTimeout, client_exceptions
from PIL import Image, UnidentifiedImageError

from lanmedia.config import USER_AGENT, ClientSettings
from lanmedia.errors import GenerationTimeout, NetworkFailure
from lanmedia.models import (
    AssetFetchState,
    AssetKind,
    Failed,
    Pending,
    Ready,
    Retrying,
)

logger = logging.getLogger(__name__)

StateCallback = Callable[[AssetFetchState], None]

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store",
    "Pragma": "no-cache",
    "User-Agent": USER_AGENT,
}

# Streams may idle for a long time while the server seeks; cap reads, not totals.
STREAM_TIMEOUT = ClientTimeout(total=None, connect=30, sock_connect=30, sock_read=300)

GENERATING = "still generating"
GENERATION_TIMEOUT_MESSAGE = "timed out waiting for server-side generation"


def asset_url(server_address: str, kind: AssetKind, asset_id: str) -> str:
    """Return `<address>/thumbnail/<id>` or `<address>/video/<id>`."""
    return f"{server_address.rstrip('/')}/{kind.value}/{quote(str(asset_id), safe='')}"


def _ignore_state(_state: AssetFetchState) -> None:
    return None


def decode_image(body: bytes, content_type: str = "") -> AssetFetchState:
    """Decode image bytes into a Ready state, or Failed when Pillow cannot read them."""
    try:
        with Image.open(io.BytesIO(body)) as image:
            image.load()
            width, height = image.size
    except (UnidentifiedImageError, OSError) as e:
        return Failed(f"undecodable image data: {e}", "DecodeFailure")
    return Ready(body=body, content_type=content_type, width=width, height=height)


class AssetFetcher:
    """
    Fetch binary assets from an endpoint that may still be generating them.

    Every request bypasses caches. A 202 reply waits `accepted_backoff`
    seconds, any other failure waits `error_backoff` seconds, and a stale
    connection is retried once immediately. No more than `max_attempts`
    requests are issued for one fetch.
    """

    def __init__(self, session: ClientSession, settings: ClientSettings | None = None) -> None:
        self.session = session
        self.settings = settings or ClientSettings()

    async def _request(
        self,
        url: str,
        on_state: StateCallback,
        timeout: ClientTimeout,
        keep_open: bool = False,
    ) -> ClientResponse | tuple[str, bytes]:
        """
        Run the retry loop until a 2xx (non-202) response arrives.

        Returns the open response when `keep_open` is set, otherwise the
        `(content_type, body)` pair read from it.

        Raises:
            GenerationTimeout: The last attempt still got 202.
            NetworkFailure: The last attempt failed for any other reason.
        """
        max_attempts = max(1, self.settings.max_attempts)
        stale_retry_used = False
        attempt = 0

        while True:
            attempt += 1
            delay = self.settings.error_backoff
            generating = False
            try:
                response = await self.session.get(
                    url, headers=NO_CACHE_HEADERS, timeout=timeout
                )
                status = response.status
                if status == 202:
                    response.release()
                    generating = True
                    reason = GENERATING
                    delay = self.settings.accepted_backoff
                elif 200 <= status < 300:
                    if keep_open:
                        return response
                    async with response:
                        body = await response.read()
                        return response.headers.get("Content-Type", ""), body
                else:
                    response.release()
                    reason = f"HTTP {status}"
            except client_exceptions.ServerDisconnectedError as e:
                reason = f"connection lost: {e}"
                if not stale_retry_used:
                    stale_retry_used = True
                    delay = 0
            except client_exceptions.ClientError as e:
                reason = f"{type(e).__name__}: {e}"
            except asyncio.TimeoutError:
                reason = "request timed out"

            if attempt >= max_attempts:
                if generating:
                    raise GenerationTimeout(GENERATION_TIMEOUT_MESSAGE)
                raise NetworkFailure(f"gave up after {attempt} attempt(s): {reason}")

            logger.debug("GET %s attempt %d: %s, retry in %.1fs", url, attempt, reason, delay)
            on_state(Retrying(attempt=attempt, reason=reason))
            if delay > 0:
                await asyncio.sleep(delay)

    async def fetch(
        self,
        server_address: str,
        asset_id: str,
        kind: AssetKind = AssetKind.THUMBNAIL,
        on_state: Optional[StateCallback] = None,
    ) -> AssetFetchState:
        """
        Fetch one asset into memory.

        Thumbnails (and media served as `image/*`, i.e. photos) are decoded
        with Pillow; other media bodies are returned as raw bytes.

        Args:
            server_address (str): Base address of the server.
            asset_id (str): Opaque asset id.
            kind (AssetKind): Thumbnail or full media.
            on_state (Optional[Callable]): Receives every state transition.

        Returns:
            AssetFetchState: The terminal state, `Ready` or `Failed`.
        """
        publish = on_state or _ignore_state
        url = asset_url(server_address, kind, asset_id)
        timeout = (
            ClientTimeout(total=self.settings.thumbnail_timeout)
            if kind is AssetKind.THUMBNAIL
            else STREAM_TIMEOUT
        )
        publish(Pending())

        state: AssetFetchState
        try:
            content_type, body = await self._request(url, publish, timeout)
        except GenerationTimeout as e:
            state = Failed(str(e), "GenerationTimeout")
        except NetworkFailure as e:
            state = Failed(str(e), "NetworkFailure")
        else:
            if kind is AssetKind.THUMBNAIL or content_type.lower().startswith("image/"):
                state = decode_image(body, content_type)
            else:
                state = Ready(body=body, content_type=content_type)

        if isinstance(state, Failed):
            logger.warning("Giving up on %s: %s", url, state.message)
        publish(state)
        return state

    @asynccontextmanager
    async def stream(
        self,
        server_address: str,
        asset_id: str,
        on_state: Optional[StateCallback] = None,
    ) -> AsyncIterator[ClientResponse]:
        """
        Open a media stream once the server can serve it.

        Yields the live response; read it with `response.content`.

        Raises:
            GenerationTimeout: The server never finished generating the asset.
            NetworkFailure: The retry budget ran out.
        """
        url = asset_url(server_address, AssetKind.MEDIA, asset_id)
        response = await self._request(
            url, on_state or _ignore_state, STREAM_TIMEOUT, keep_open=True
        )
        async with response:
            yield response


class AssetFetchScope:
    """
    Owns the asset fetches started on behalf of one view.

    Each asset fetch runs as its own task so a slow or failing asset
    never holds up its siblings. `close()` cancels every task, including
    ones sleeping in a backoff, and no state is published afterwards.
    """

    def __init__(self, fetcher: AssetFetcher, server_address: str) -> None:
        self.fetcher = fetcher
        self.server_address = server_address
        self._tasks: dict[tuple[AssetKind, str], asyncio.Task] = {}
        self._tokens: dict[tuple[AssetKind, str], object] = {}
        self._states: dict[tuple[AssetKind, str], AssetFetchState] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def states(self) -> Mapping[tuple[AssetKind, str], AssetFetchState]:
        """Read-only snapshot of the latest state per `(kind, asset_id)`."""
        return MappingProxyType(dict(self._states))

    def state(self, asset_id: str, kind: AssetKind = AssetKind.THUMBNAIL) -> AssetFetchState | None:
        return self._states.get((kind, asset_id))

    def request(
        self,
        asset_id: str,
        kind: AssetKind = AssetKind.THUMBNAIL,
        on_state: Optional[StateCallback] = None,
    ) -> asyncio.Task:
        """
        Start fetching an asset, or return the fetch already in flight for it.

        A finished fetch is never re-run implicitly; requesting the same
        asset again after it finished starts a fresh fetch.

        Raises:
            RuntimeError: If the scope was closed.
        """
        if self._closed:
            raise RuntimeError("asset fetch scope is closed")
        key = (kind, asset_id)
        running = self._tasks.get(key)
        if running is not None and not running.done():
            return running

        token = object()
        self._tokens[key] = token

        def publish(state: AssetFetchState) -> None:
            if self._closed or self._tokens.get(key) is not token:
                return
            self._states[key] = state
            if on_state is not None:
                on_state(state)

        task = asyncio.ensure_future(
            self.fetcher.fetch(self.server_address, asset_id, kind, on_state=publish)
        )
        self._tasks[key] = task
        task.add_done_callback(lambda t, k=key: self._forget(k, t))
        return task

    def _forget(self, key: tuple[AssetKind, str], task: asyncio.Task) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]

    def cancel(self, asset_id: str, kind: AssetKind = AssetKind.THUMBNAIL) -> None:
        """Cancel one fetch, e.g. when its cell scrolls away."""
        key = (kind, asset_id)
        self._tokens.pop(key, None)
        self._states.pop(key, None)
        task = self._tasks.pop(key, None)
        if task is not None:
            task.cancel()

    def cancel_all(self) -> list[asyncio.Task]:
        """Close the scope and cancel its fetches without waiting; returns the tasks."""
        self._closed = True
        tasks = list(self._tasks.values())
        self._tasks.clear()
        self._tokens.clear()
        for task in tasks:
            task.cancel()
        return tasks

    async def close(self) -> None:
        """Cancel every fetch of this scope and wait for them to unwind."""
        tasks = self.cancel_all()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def __aenter__(self) -> "AssetFetchScope":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
