"""Client for the media server's album/media catalogue."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, TypeVar
from urllib.parse import quote

from aiohttp import ClientSession, ClientTimeout, client_exceptions

from lanmedia.config import USER_AGENT, ClientSettings
from lanmedia.errors import DecodeFailure, NetworkFailure
from lanmedia.models import AlbumKind, AlbumSummary, MediaItem, MediaKind

logger = logging.getLogger(__name__)

T = TypeVar("T")

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store",
    "Pragma": "no-cache",
    "Accept": "application/json",
    "User-Agent": USER_AGENT,
}


def parse_timestamp(raw: Any) -> datetime | None:
    """
    Parse an ISO-8601 timestamp, returning None instead of raising.

    Naive timestamps are taken as UTC; a trailing `Z` is accepted.
    """
    if not isinstance(raw, str) or not raw.strip():
        return None
    text = raw.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        value = datetime.fromisoformat(text)
    except ValueError:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _as_float(raw: Any) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0.0
    return value if value >= 0 else 0.0


def _as_int(raw: Any) -> int:
    try:
        return max(int(raw), 0)
    except (TypeError, ValueError):
        return 0


def decode_album(entry: Any) -> AlbumSummary | None:
    """Decode one `/albums` entry; None when it has no usable id."""
    if not isinstance(entry, dict) or entry.get("id") in (None, ""):
        return None
    return AlbumSummary(
        id=str(entry["id"]),
        name=str(entry.get("name") or ""),
        media_count=_as_int(entry.get("videoCount")),
        kind=AlbumKind.parse(entry.get("type")),
    )


def decode_media_item(entry: Any) -> MediaItem | None:
    """
    Decode one `/albums/<id>/videos` entry.

    Bad timestamps are nulled out so they never fail the whole batch;
    entries without an id are rejected (None).
    """
    if not isinstance(entry, dict) or entry.get("id") in (None, ""):
        return None
    return MediaItem(
        id=str(entry["id"]),
        filename=str(entry.get("filename") or ""),
        duration_seconds=_as_float(entry.get("duration")),
        imported_at=parse_timestamp(entry.get("importDate")),
        captured_at=parse_timestamp(entry.get("creationDate")),
        media_kind=MediaKind.parse(entry.get("mediaType")),
    )


def decode_list(
    document: Any, decode: Callable[[Any], T | None], what: str
) -> list[T]:
    """
    Decode a JSON array item by item.

    Args:
        document (Any): Parsed JSON document.
        decode (Callable): Per-item decoder returning None for unusable items.
        what (str): Label used in log and error messages.

    Returns:
        list: Decoded items, in server order.

    Raises:
        DecodeFailure: If the document is not an array.
    """
    if not isinstance(document, list):
        raise DecodeFailure(f"Expected a JSON array of {what}, got {type(document).__name__}")
    out: list[T] = []
    for index, entry in enumerate(document):
        item = decode(entry)
        if item is None:
            logger.debug("Skipping malformed %s entry #%d: %r", what, index, entry)
            continue
        out.append(item)
    return out


class CatalogueClient:
    """
    Fetches the album and media catalogue from a resolved server address.

    The client holds no catalogue state; cancelling the calling task
    abandons the request without side effects.
    """

    def __init__(self, session: ClientSession, settings: ClientSettings | None = None) -> None:
        self.session = session
        self.settings = settings or ClientSettings()

    async def _get_json(self, url: str) -> Any:
        timeout = ClientTimeout(total=self.settings.catalogue_timeout)
        try:
            async with self.session.get(
                url, headers=NO_CACHE_HEADERS, timeout=timeout
            ) as response:
                if not 200 <= response.status < 300:
                    raise NetworkFailure(
                        f"HTTP {response.status} at {url}", status=response.status
                    )
                payload = await response.read()
        except client_exceptions.ClientError as e:
            raise NetworkFailure(f"Request to {url} failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise NetworkFailure(f"Request to {url} timed out") from e

        try:
            return json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise DecodeFailure(f"Malformed JSON from {url}: {e}") from e

    async def fetch_albums(self, server_address: str) -> list[AlbumSummary]:
        """
        Fetch the album list.

        Args:
            server_address (str): Base address, e.g. `http://192.168.1.5:8080`.

        Returns:
            list[AlbumSummary]: Every album the server reports.

        Raises:
            NetworkFailure: Connection error, timeout or non-2xx status.
            DecodeFailure: The body is not a JSON array.
        """
        url = f"{server_address.rstrip('/')}/albums"
        albums = decode_list(await self._get_json(url), decode_album, "album")
        logger.debug("Fetched %d album(s) from %s", len(albums), url)
        return albums

    async def fetch_media(self, server_address: str, album_id: str) -> list[MediaItem]:
        """
        Fetch the media list of one album.

        Same all-or-nothing contract as `fetch_albums`; individual entries
        with unparsable dates are kept with those dates set to None.
        """
        url = f"{server_address.rstrip('/')}/albums/{quote(str(album_id), safe='')}/videos"
        items = decode_list(await self._get_json(url), decode_media_item, "media")
        logger.debug("Fetched %d media item(s) from %s", len(items), url)
        return items
