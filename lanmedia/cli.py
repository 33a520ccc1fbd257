"""Command line interface for browsing a LAN media server."""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from typing import Optional, Sequence

from aiohttp import ClientSession

from lanmedia.assets import AssetFetcher, asset_url
from lanmedia.catalogue import CatalogueClient
from lanmedia.config import ClientSettings, configure_logging
from lanmedia.discovery import ServiceDiscovery, ZeroconfBackend
from lanmedia.downloader import save_album
from lanmedia.errors import DecodeFailure, NetworkFailure
from lanmedia.models import AlbumSummary, AssetKind, Failed, MediaItem, Retrying
from lanmedia.utils import (
    default_album_folder,
    format_duration,
    image_extension,
    normalize_address,
)
from lanmedia.view_state import (
    LIBRARY,
    MY_ALBUMS,
    CatalogueViewState,
    Phase,
    SortOrder,
    group_albums,
    project,
)

SETTLED = (Phase.LOADED, Phase.EMPTY, Phase.ERROR, Phase.NO_SERVER_FOUND)


def _print_albums(albums: Sequence[AlbumSummary]) -> None:
    groups = group_albums(albums)
    for title, key in (("Library", LIBRARY), ("My albums", MY_ALBUMS)):
        if not groups[key]:
            continue
        print(f"[{title}]")
        for album in groups[key]:
            print(f"  {album.id}\t{album.name}\t({album.media_count}, {album.kind.value})")


def _print_media(items: Sequence[MediaItem]) -> None:
    for item in items:
        when = item.sort_date.isoformat() if item.captured_at or item.imported_at else "-"
        length = "photo" if item.is_photo else format_duration(item.duration_seconds)
        print(f"  {item.id}\t{item.filename}\t{length}\t{when}")


async def _discover_address(settings: ClientSettings) -> Optional[str]:
    """Browse until the first server resolves or the discovery timeout passes."""
    backend = ZeroconfBackend()
    discovery = ServiceDiscovery(settings, backend)
    found: asyncio.Future = asyncio.get_running_loop().create_future()

    def on_servers(_servers) -> None:
        server = discovery.active_server
        if server is not None and not found.done():
            found.set_result(server)

    discovery.subscribe(on_servers)
    try:
        await discovery.start_browsing()
        server = await asyncio.wait_for(found, settings.discovery_timeout)
    except asyncio.TimeoutError:
        return None
    finally:
        await discovery.stop_browsing()
        await backend.close()
    print(f"[*] Using server {server.display_name} at {server.resolved_address}")
    return server.resolved_address


async def _server_address(args: argparse.Namespace, settings: ClientSettings) -> str:
    if args.server:
        return normalize_address(args.server)
    address = await _discover_address(settings)
    if address is None:
        raise LookupError("No server found on the local network.")
    return address


async def cmd_discover(args: argparse.Namespace, settings: ClientSettings) -> int:
    """List every server that resolves within the discovery timeout."""
    backend = ZeroconfBackend()
    discovery = ServiceDiscovery(settings, backend)
    try:
        await discovery.start_browsing()
        await asyncio.sleep(settings.discovery_timeout)
    finally:
        await discovery.stop_browsing()
        await backend.close()
    servers = [s for s in discovery.servers if s.is_usable]
    if not servers:
        print("[!] No server found.")
        return 1
    for server in servers:
        print(f"{server.display_name}\t{server.resolved_address}")
    return 0


async def cmd_albums(args: argparse.Namespace, settings: ClientSettings) -> int:
    """Show the album list of the first server found (or `--server`)."""
    async with ClientSession() as session:
        client = CatalogueClient(session, settings)
        if args.server:
            albums = await client.fetch_albums(normalize_address(args.server))
            if not albums:
                print("[*] The server has no albums.")
            _print_albums(albums)
            return 0

        backend = ZeroconfBackend()
        view = CatalogueViewState(ServiceDiscovery(settings, backend), client, settings)
        try:
            await view.enter()
            snapshot = await view.wait_until(lambda s: s.phase in SETTLED)
        finally:
            await view.leave()
            await backend.close()

    if snapshot.phase is Phase.NO_SERVER_FOUND:
        print("[!] No server found on the local network.")
        return 1
    if snapshot.phase is Phase.ERROR:
        print(f"[!] Failed to fetch albums: {snapshot.error}")
        return 1
    if snapshot.phase is Phase.EMPTY:
        print("[*] The server has no albums.")
        return 0
    _print_albums(snapshot.albums)
    return 0


async def cmd_media(args: argparse.Namespace, settings: ClientSettings) -> int:
    """List one album's media, sorted and filtered."""
    address = await _server_address(args, settings)
    async with ClientSession() as session:
        items = await CatalogueClient(session, settings).fetch_media(address, args.album_id)
    if not items:
        print("[*] No media in this album.")
        return 0
    _print_media(project(items, SortOrder(args.sort), args.filter or ""))
    return 0


async def cmd_thumbnail(args: argparse.Namespace, settings: ClientSettings) -> int:
    """Fetch one thumbnail, waiting for the server to generate it."""
    address = await _server_address(args, settings)

    def on_state(state) -> None:
        if isinstance(state, Retrying):
            print(f"[~] attempt {state.attempt}: {state.reason}")

    async with ClientSession() as session:
        state = await AssetFetcher(session, settings).fetch(
            address, args.asset_id, AssetKind.THUMBNAIL, on_state=on_state
        )
    if isinstance(state, Failed):
        print(f"[!] {state.message}")
        return 1
    output = args.output or f"{args.asset_id}{image_extension(state.content_type)}"
    with open(output, "wb") as f:
        f.write(state.body)
    print(f"[^] Saved {state.width}x{state.height} thumbnail to {output}")
    return 0


async def cmd_url(args: argparse.Namespace, settings: ClientSettings) -> int:
    """Print the URL of an asset for an external player."""
    address = await _server_address(args, settings)
    kind = AssetKind.THUMBNAIL if args.thumbnail else AssetKind.MEDIA
    print(asset_url(address, kind, args.asset_id))
    return 0


async def cmd_download(args: argparse.Namespace, settings: ClientSettings) -> int:
    """Save every item of an album into a local folder."""
    address = await _server_address(args, settings)
    async with ClientSession() as session:
        client = CatalogueClient(session, settings)
        albums = {a.id: a for a in await client.fetch_albums(address)}
        album = albums.get(args.album_id)
        items = await client.fetch_media(address, args.album_id)
        folder = args.folder or default_album_folder(album.name if album else args.album_id)
        print(f"[*] Saving {len(items)} file(s) to {folder}")
        saved, failed, errors = await save_album(
            AssetFetcher(session, settings), address, items, folder
        )

    print(
        f"\n[^] Saved: {len(saved)} file{'s' if len(saved) != 1 else ''}, "
        f"Failed: {len(failed)} file{'s' if len(failed) != 1 else ''}."
    )
    for error in errors:
        print(error)
    return 1 if failed else 0


COMMANDS = {
    "discover": cmd_discover,
    "albums": cmd_albums,
    "media": cmd_media,
    "thumbnail": cmd_thumbnail,
    "url": cmd_url,
    "download": cmd_download,
}


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="lanmedia",
        description="Browse and fetch media from a media server on the local network.",
    )
    parser.add_argument(
        "--server",
        help="Server base address, e.g. http://192.168.1.5:8080 (skips discovery)",
    )
    parser.add_argument(
        "--discovery-timeout",
        type=float,
        help="Seconds to browse for a server (default: LANMEDIA_DISCOVERY_TIMEOUT or 10)",
    )
    parser.add_argument(
        "--max-attempts",
        type=int,
        help="Requests per asset before giving up (default: LANMEDIA_MAX_ATTEMPTS or 30)",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("discover", help="List servers on the local network")
    sub.add_parser("albums", help="List albums")

    media = sub.add_parser("media", help="List the media of one album")
    media.add_argument("album_id")
    media.add_argument(
        "--sort",
        choices=[o.value for o in SortOrder],
        default=SortOrder.CAPTURED_DESC.value,
    )
    media.add_argument("--filter", help="Only filenames containing this text")

    thumbnail = sub.add_parser("thumbnail", help="Fetch one thumbnail")
    thumbnail.add_argument("asset_id")
    thumbnail.add_argument(
        "-o", "--output", help="Output file (default: <id> with the image type extension)"
    )

    url = sub.add_parser("url", help="Print a stream URL for an external player")
    url.add_argument("asset_id")
    url.add_argument("--thumbnail", action="store_true", help="Thumbnail URL instead")

    download = sub.add_parser("download", help="Save an album to a local folder")
    download.add_argument("album_id")
    download.add_argument(
        "--folder", help=f"Target folder (default: {os.path.join('downloads', '<album>')})"
    )
    return parser


async def run(argv: Optional[Sequence[str]] = None) -> int:
    """Parse `argv` and run the selected command."""
    args = build_parser().parse_args(argv)
    settings = ClientSettings.from_env().with_overrides(
        discovery_timeout=args.discovery_timeout,
        max_attempts=args.max_attempts,
    )
    if args.debug:
        settings = settings.with_overrides(debug=True)
    configure_logging(settings.debug)

    try:
        return await COMMANDS[args.command](args, settings)
    except ValueError as ve:
        print(f"[!] Error: {ve}")
    except LookupError as le:
        print(f"[!] {le}")
    except (NetworkFailure, DecodeFailure) as e:
        print(f"[!] {e}")
    return 1


def main() -> None:
    """Console entry point."""
    try:
        sys.exit(asyncio.run(run()))
    except KeyboardInterrupt:
        print("\n[!] Exiting...")
        sys.exit(0)
