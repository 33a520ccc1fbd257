"""Client for discovering and browsing a media server on the local network."""

from lanmedia.assets import AssetFetcher, AssetFetchScope, asset_url
from lanmedia.catalogue import CatalogueClient
from lanmedia.config import ClientSettings
from lanmedia.discovery import ServiceDiscovery, ZeroconfBackend
from lanmedia.errors import (
    DecodeFailure,
    DiscoveryFailure,
    GenerationTimeout,
    LanMediaError,
    NetworkFailure,
)
from lanmedia.models import (
    AlbumKind,
    AlbumSummary,
    AssetKind,
    DiscoveredServer,
    Failed,
    MediaItem,
    MediaKind,
    Pending,
    Ready,
    Retrying,
)
from lanmedia.view_state import CatalogueViewState, Phase, SortOrder, project

__all__ = [
    "AlbumKind",
    "AlbumSummary",
    "AssetFetchScope",
    "AssetFetcher",
    "AssetKind",
    "CatalogueClient",
    "CatalogueViewState",
    "ClientSettings",
    "DecodeFailure",
    "DiscoveredServer",
    "DiscoveryFailure",
    "Failed",
    "GenerationTimeout",
    "LanMediaError",
    "MediaItem",
    "MediaKind",
    "NetworkFailure",
    "Pending",
    "Phase",
    "Ready",
    "Retrying",
    "ServiceDiscovery",
    "SortOrder",
    "ZeroconfBackend",
    "asset_url",
    "project",
]
