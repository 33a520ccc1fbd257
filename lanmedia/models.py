"""Data models for the remote media catalogue."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Union

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class AlbumKind(str, enum.Enum):
    """Kind of media an album holds, as reported by the server."""

    VIDEO = "video"
    PHOTO = "photo"
    MIXED = "mixed"
    UNSPECIFIED = "unspecified"

    @classmethod
    def parse(cls, raw: object) -> "AlbumKind":
        """Map the optional wire `type` field to a kind; unknown values are unspecified."""
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            return cls.UNSPECIFIED


class MediaKind(str, enum.Enum):
    """Kind of a single media item."""

    VIDEO = "video"
    PHOTO = "photo"

    @classmethod
    def parse(cls, raw: object) -> "MediaKind":
        # older records carry no mediaType; those are videos
        if isinstance(raw, str) and raw.strip().lower() == "photo":
            return cls.PHOTO
        return cls.VIDEO


class AssetKind(str, enum.Enum):
    """Binary asset endpoints exposed by the server."""

    THUMBNAIL = "thumbnail"
    MEDIA = "video"


@dataclass(frozen=True)
class DiscoveredServer:
    """One advertised server; usable once its address is resolved."""

    id: str
    display_name: str
    service_name: str
    resolved_address: str | None = None

    @property
    def is_usable(self) -> bool:
        return bool(self.id) and bool(self.resolved_address)


@dataclass(frozen=True)
class AlbumSummary:
    """Album row from one `/albums` fetch."""

    id: str
    name: str
    media_count: int
    kind: AlbumKind = AlbumKind.UNSPECIFIED


@dataclass(frozen=True)
class MediaItem:
    """Media row from one `/albums/<id>/videos` fetch."""

    id: str
    filename: str
    duration_seconds: float
    imported_at: datetime | None
    captured_at: datetime | None = None
    media_kind: MediaKind = MediaKind.VIDEO

    @property
    def is_photo(self) -> bool:
        return self.media_kind is MediaKind.PHOTO

    @property
    def sort_date(self) -> datetime:
        """Capture date when known, else import date; undated items sort oldest."""
        return self.captured_at or self.imported_at or _EPOCH


@dataclass(frozen=True)
class Pending:
    """Fetch requested, first response not yet received."""


@dataclass(frozen=True)
class Retrying:
    """Attempt `attempt` did not produce the asset; waiting to try again."""

    attempt: int
    reason: str


@dataclass(frozen=True)
class Ready:
    """Asset retrieved."""

    body: bytes
    content_type: str = ""
    width: int | None = None
    height: int | None = None


@dataclass(frozen=True)
class Failed:
    """Asset could not be retrieved within the retry budget."""

    message: str
    error: str = "NetworkFailure"


AssetFetchState = Union[Pending, Retrying, Ready, Failed]
