"""Fakes shared by the test suite."""

from __future__ import annotations

import asyncio
import contextlib
import io
from typing import Any, Callable

from aiohttp import web
from PIL import Image

SERVICE_TYPE = "_myvideoserver._tcp.local."


def png_bytes(width: int = 4, height: int = 3) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), (200, 30, 30)).save(buf, "PNG")
    return buf.getvalue()


def service(name: str) -> str:
    return f"{name}.{SERVICE_TYPE}"


async def settle(seconds: float = 0.02) -> None:
    """Let background tasks run."""
    await asyncio.sleep(seconds)


async def wait_for_condition(check: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not check():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


class FakeMediaServer:
    """Scriptable stand-in for the LAN media server."""

    def __init__(self) -> None:
        self.address = ""
        self.albums: Any = []
        self.album_status = 200
        self.album_raw: bytes | None = None
        self.media: dict[str, Any] = {}
        # asset id -> [(status, body, content_type)], the last entry repeats
        self.thumbnails: dict[str, list[tuple[int, bytes, str]]] = {}
        self.videos: dict[str, tuple[bytes, str]] = {}
        # asset id -> bytes sent before the stream stalls until `release` is set
        self.stalled: dict[str, int] = {}
        self.release = asyncio.Event()
        self.requests: list[str] = []
        self.headers: list[dict[str, str]] = []

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/albums", self.handle_albums)
        app.router.add_get("/albums/{album_id}/videos", self.handle_media)
        app.router.add_get("/thumbnail/{asset_id}", self.handle_thumbnail)
        app.router.add_get("/video/{asset_id}", self.handle_video)
        return app

    def count(self, path: str) -> int:
        return sum(1 for p in self.requests if p == path)

    def _log(self, request: web.Request) -> None:
        self.requests.append(request.path)
        self.headers.append(dict(request.headers))

    async def handle_albums(self, request: web.Request) -> web.Response:
        self._log(request)
        if self.album_status != 200:
            return web.Response(status=self.album_status, text="boom")
        if self.album_raw is not None:
            return web.Response(body=self.album_raw, content_type="application/json")
        return web.json_response(self.albums)

    async def handle_media(self, request: web.Request) -> web.Response:
        self._log(request)
        album_id = request.match_info["album_id"]
        if album_id not in self.media:
            return web.Response(status=404)
        return web.json_response(self.media[album_id])

    async def handle_thumbnail(self, request: web.Request) -> web.Response:
        self._log(request)
        script = self.thumbnails.get(request.match_info["asset_id"], [])
        if not script:
            return web.Response(status=404)
        status, body, content_type = script.pop(0) if len(script) > 1 else script[0]
        return web.Response(status=status, body=body, content_type=content_type)

    async def handle_video(self, request: web.Request) -> web.StreamResponse:
        self._log(request)
        entry = self.videos.get(request.match_info["asset_id"])
        if entry is None:
            return web.Response(status=404)
        body, content_type = entry
        prefix = self.stalled.get(request.match_info["asset_id"])
        if prefix is not None:
            response = web.StreamResponse()
            response.content_type = content_type
            response.content_length = len(body)
            await response.prepare(request)
            await response.write(body[:prefix])
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self.release.wait(), 5)
            return response
        return web.Response(body=body, content_type=content_type)


class FakeBackend:
    """Discovery backend driven by the test instead of multicast DNS."""

    def __init__(self, addresses: dict[str, Any] | None = None) -> None:
        # service name -> (host, port), None (unresolvable) or "hang"
        self.addresses = addresses or {}
        self.starts = 0
        self.stops = 0
        self.resolving: list[str] = []
        self._on_found: Callable[[str], None] | None = None
        self._on_removed: Callable[[str], None] | None = None

    async def start(self, service_type, on_found, on_removed) -> None:
        self.starts += 1
        self._on_found = on_found
        self._on_removed = on_removed

    async def stop(self) -> None:
        self.stops += 1

    async def resolve(self, service_type, name, timeout):
        self.resolving.append(name)
        result = self.addresses.get(name)
        if result == "hang":
            await asyncio.sleep(3600)
        if isinstance(result, Exception):
            raise result
        return result

    def announce(self, name: str) -> None:
        assert self._on_found is not None
        self._on_found(name)

    def withdraw(self, name: str) -> None:
        assert self._on_removed is not None
        self._on_removed(name)


class ScriptedCatalogue:
    """Catalogue client returning scripted results: a list, an exception or (delay, result)."""

    def __init__(self, albums: list[Any] | None = None) -> None:
        self.album_results: list[Any] = albums if albums is not None else [[]]
        self.media_results: dict[str, list[Any]] = {}
        self.calls: list[tuple[str, ...]] = []

    @staticmethod
    async def _play(script: list[Any]) -> list:
        result = script.pop(0) if len(script) > 1 else script[0]
        delay, value = result if isinstance(result, tuple) else (0, result)
        if delay:
            await asyncio.sleep(delay)
        if isinstance(value, Exception):
            raise value
        return list(value)

    async def fetch_albums(self, server_address: str) -> list:
        self.calls.append(("albums", server_address))
        return await self._play(self.album_results)

    async def fetch_media(self, server_address: str, album_id: str) -> list:
        self.calls.append(("media", server_address, album_id))
        return await self._play(self.media_results[album_id])


class FakeResponse:
    def __init__(self, status: int, body: bytes = b"", content_type: str = "") -> None:
        self.status = status
        self._body = body
        self.headers = {"Content-Type": content_type}
        self.released = False

    def release(self) -> None:
        self.released = True

    async def read(self) -> bytes:
        return self._body

    async def __aenter__(self) -> "FakeResponse":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.release()


class ScriptedSession:
    """Session whose `get` replays responses or raises scripted exceptions."""

    def __init__(self, script: list[Any]) -> None:
        self.script = script
        self.urls: list[str] = []

    async def get(self, url: str, **kwargs):
        self.urls.append(url)
        outcome = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome
