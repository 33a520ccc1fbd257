"""Save remote media to a local folder."""

# pylint: disable=broad-exception-caught

import asyncio
import os
import re
from typing import Mapping, Sequence

from aiohttp import ClientResponse
from tqdm import tqdm

from lanmedia.assets import AssetFetcher
from lanmedia.models import MediaItem
from lanmedia.utils import create_download_folder, dedupe_path, get_filename


def _media_save_path(
    target_dir: str,
    item: MediaItem,
    headers: Mapping[str, str],
) -> tuple[str, int]:
    """Compute a unique destination path and reported size for a response."""
    base = get_filename(item.id, item.filename, headers)
    file_path = dedupe_path(os.path.join(target_dir, base))
    try:
        file_size = int(headers.get("Content-Length", 0) or 0)
    except ValueError:
        file_size = 0
    return file_path, file_size


async def _stream_response_to_file(
    response: ClientResponse, file_path: str, file_size: int
) -> None:
    """Stream response content to disk with a progress bar."""
    with open(file_path, "wb") as file, tqdm(
        desc=os.path.basename(file_path),
        total=file_size or None,
        unit="B",
        unit_scale=True,
        unit_divisor=1024,
        leave=False,
        position=1,
    ) as progress_bar:
        while chunk := await response.content.read(64 * 1024):
            file.write(chunk)
            progress_bar.update(len(chunk))


def already_saved(folder: str, item: MediaItem) -> bool:
    """True when `item` (or a ` (n)` de-duplicated copy of it) exists in `folder`."""
    base = get_filename(item.id, item.filename, {})
    if os.path.exists(os.path.join(folder, base)):
        return True
    root, ext = os.path.splitext(base)
    try:
        names = os.listdir(folder)
    except FileNotFoundError:
        return False
    pattern = re.compile(re.escape(root) + r" \(\d+\)" + re.escape(ext) + r"$")
    return any(pattern.match(n) for n in names)


def _remove_partial(file_path: str | None) -> None:
    if file_path and os.path.exists(file_path):
        os.remove(file_path)


async def save_media(
    fetcher: AssetFetcher, server_address: str, item: MediaItem, folder: str
) -> tuple[bool, str | None]:
    """
    Stream one media item into `folder`.

    A file left behind by a failed or cancelled stream is removed, so a later
    run does not mistake it for a finished download.

    Args:
        fetcher (AssetFetcher): Fetcher whose retry policy opens the stream.
        server_address (str): Base address of the server.
        item (MediaItem): Catalogue entry to save.
        folder (str): Existing destination folder.

    Returns:
        tuple[bool, str | None]: (success, error message).
    """
    file_path = None
    try:
        async with fetcher.stream(server_address, item.id) as response:
            file_path, file_size = _media_save_path(folder, item, response.headers)
            await _stream_response_to_file(response, file_path, file_size)
        return True, None
    except Exception as e:
        _remove_partial(file_path)
        return False, f"[!] Failed to save '{item.filename or item.id}': {e}"
    except BaseException:
        _remove_partial(file_path)
        raise


async def save_album(
    fetcher: AssetFetcher,
    server_address: str,
    items: Sequence[MediaItem],
    folder: str,
    max_concurrent: int | None = None,
) -> tuple[list[str], list[str], list[str]]:
    """
    Save every item of an album, skipping files already present.

    Returns:
        tuple[list[str], list[str], list[str]]:
            - ids saved
            - ids that failed
            - error messages
    """
    folder = await create_download_folder(folder)
    pending = [item for item in items if not already_saved(folder, item)]
    if len(pending) != len(items):
        tqdm.write(f"[*] Skipping {len(items) - len(pending)} existing file(s)")

    limit = max_concurrent or fetcher.settings.max_concurrent_downloads
    semaphore = asyncio.Semaphore(max(1, limit))
    progress_bar = tqdm(total=len(pending), desc="Files", unit="file", leave=False, position=0)

    async def save_one(item: MediaItem) -> tuple[bool, str | None]:
        async with semaphore:
            result = await save_media(fetcher, server_address, item, folder)
        progress_bar.update(1)
        return result

    try:
        results = await asyncio.gather(*(save_one(item) for item in pending))
    finally:
        progress_bar.close()

    saved, failed, errors = [], [], []
    for item, (ok, err) in zip(pending, results):
        if ok:
            saved.append(item.id)
        else:
            failed.append(item.id)
            if err:
                errors.append(err)
    return saved, failed, errors
