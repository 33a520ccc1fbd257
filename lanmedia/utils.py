"""Common helpers: addresses, filenames and human readable formatting."""

import mimetypes
import os
import re
import urllib.parse
from typing import Mapping, Optional

import validators

DEFAULT_PARENT_FOLDER = "downloads"


def normalize_address(address: str) -> str:
    """
    Validate and normalize a server base address.

    Args:
        address (str): Base URL such as `http://192.168.1.5:8080/`.

    Returns:
        str: The address without trailing slash.

    Raises:
        ValueError: If the address is empty or not an http(s) URL.
    """
    address = (address or "").strip()
    if not address:
        raise ValueError("Server address cannot be empty!")
    if not address.startswith(("http://", "https://")):
        raise ValueError(f"Server address must start with http:// or https://: {address}")
    if not validators.url(address, simple_host=True):
        raise ValueError(f"Invalid server address: {address}")
    return address.rstrip("/")


def build_address(host: str, port: int) -> str:
    """
    Combine a resolved host and port into `http://<host>:<port>`.

    IPv6 literals are bracketed and a zone id (`fe80::1%en0`) is written
    as `%25en0`.
    """
    host = host.rstrip(".")
    if ":" in host and not host.startswith("["):
        host = "[" + host.replace("%", "%25", 1) + "]"
    return f"http://{host}:{port}"


async def create_download_folder(base_path: str, *args: str) -> str:
    """
    Create a download folder at the specified base path (async-friendly wrapper).

    Args:
        base_path (str): Base path where the folder should be created.
        *args (str): Optional subfolder components to nest under base_path.

    Returns:
        str: The path to the created (or existing) folder.
    """
    path = os.path.join(base_path, *args) if args else base_path
    os.makedirs(path, exist_ok=True)
    return path


def default_album_folder(album_name: Optional[str] = None) -> str:
    """Return `./downloads/<album>` (or `./downloads` without a name)."""
    cwd = os.getcwd()
    if album_name:
        return os.path.join(cwd, DEFAULT_PARENT_FOLDER, sanitize(album_name))
    return os.path.join(cwd, DEFAULT_PARENT_FOLDER)


def sanitize(name: Optional[str]) -> str:
    """
    Sanitize a string to be safe for folder/file names by replacing invalid
    characters with underscores. If input is None or empty, returns "album".

    Args:
        name (Optional[str]): The input string to sanitize.

    Returns:
        str: A sanitized string safe to use as filename or folder name.
    """
    return re.sub(r'[\\/*?:"<>|]', "_", name) if name else "album"


def extract_filename(cd: Optional[str]) -> Optional[str]:
    """
    Extract a filename from a Content-Disposition header.

    Supports RFC 5987 (filename*) and fallback filename= forms.
    Returns None if no filename is found.
    """
    if not cd:
        return None

    m = re.search(r"filename\*\s*=\s*([^']*)'[^']*'([^;]+)", cd, flags=re.I)
    if m:
        return urllib.parse.unquote(m.group(2)).strip().strip('"')

    m = re.search(r'filename\s*=\s*"([^"]+)"', cd, flags=re.I)
    if m:
        return m.group(1).strip()

    m = re.search(r"filename\s*=\s*([^;]+)", cd, flags=re.I)
    if m:
        return m.group(1).strip().strip('"')

    return None


def dedupe_path(path: str) -> str:
    """
    Generate a non-conflicting file path by appending ' (1)', ' (2)', etc.
    before the file extension if the path already exists.
    """
    if not os.path.exists(path):
        return path
    root, ext = os.path.splitext(path)
    i = 1
    while True:
        candidate = f"{root} ({i}){ext}"
        if not os.path.exists(candidate):
            return candidate
        i += 1


def get_filename(
    asset_id: str, suggested_name: Optional[str], headers: Mapping[str, str]
) -> str:
    """
    Determine the filename to use for saving a media stream.

    Prefers the catalogue filename, then the Content-Disposition header,
    then the asset id. A missing extension is taken from the header name.

    Args:
        asset_id (str): Opaque asset id, used as last resort.
        suggested_name (Optional[str]): Filename from the catalogue.
        headers (Mapping[str, str]): HTTP response headers.

    Returns:
        str: A sanitized filename.
    """
    cd = headers.get("Content-Disposition") or headers.get("content-disposition")
    pretty = extract_filename(cd)
    ext = os.path.splitext(pretty)[1] if pretty else ""

    if suggested_name:
        base = sanitize(os.path.basename(suggested_name))
    elif pretty:
        base = sanitize(pretty)
    else:
        base = sanitize(asset_id)

    if not os.path.splitext(base)[1] and ext:
        base += ext
    return base


IMAGE_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
    "image/heic": ".heic",
}


def image_extension(content_type: Optional[str], default: str = ".jpg") -> str:
    """Return the file extension for an image `Content-Type`."""
    mime = (content_type or "").split(";")[0].strip().lower()
    if mime in IMAGE_EXTENSIONS:
        return IMAGE_EXTENSIONS[mime]
    if mime.startswith("image/"):
        return mimetypes.guess_extension(mime) or default
    return default


def format_duration(total_seconds: float) -> str:
    """Return `m:ss`, or `h:mm:ss` from one hour on."""
    seconds_int = int(max(total_seconds, 0))
    hours, rest = divmod(seconds_int, 3600)
    minutes, seconds = divmod(rest, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"
