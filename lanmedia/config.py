"""Client settings and logging setup."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from typing import Mapping

DEFAULT_SERVICE_TYPE = "_myvideoserver._tcp.local."
USER_AGENT = "lanmedia/1.0"

_TRUTHY = {"1", "true", "yes", "on"}


def _env_float(env: Mapping[str, str], key: str, default: float) -> float:
    try:
        return float(env.get(key, "") or default)
    except ValueError:
        return default


def _env_int(env: Mapping[str, str], key: str, default: int) -> int:
    try:
        return int(env.get(key, "") or default)
    except ValueError:
        return default


@dataclass(frozen=True)
class ClientSettings:
    """
    Tunables shared by discovery, catalogue and asset fetching.

    Built once by the caller and handed to every component that needs it.

    Attributes:
        service_type (str): Zeroconf service type the media server advertises.
        resolve_timeout (float): Seconds to wait for one service resolution.
        discovery_timeout (float): Seconds of browsing without a usable
            server before the view reports that none was found.
        catalogue_timeout (float): Total timeout for catalogue requests.
        thumbnail_timeout (float): Total timeout for one asset request.
        max_attempts (int): Upper bound on requests issued for one asset.
        accepted_backoff (float): Delay after a 202 "still generating" reply.
        error_backoff (float): Delay after an error status or transport failure.
        max_concurrent_downloads (int): Parallel streams when saving an album.
        debug (bool): Enable debug logging.
    """

    service_type: str = DEFAULT_SERVICE_TYPE
    resolve_timeout: float = 5.0
    discovery_timeout: float = 10.0
    catalogue_timeout: float = 30.0
    thumbnail_timeout: float = 15.0
    max_attempts: int = 30
    accepted_backoff: float = 2.0
    error_backoff: float = 3.0
    max_concurrent_downloads: int = 12
    debug: bool = False

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "ClientSettings":
        """Read settings from `LANMEDIA_*` environment variables."""
        env = os.environ if env is None else env
        defaults = cls()
        return cls(
            service_type=env.get("LANMEDIA_SERVICE_TYPE", "").strip()
            or defaults.service_type,
            resolve_timeout=_env_float(
                env, "LANMEDIA_RESOLVE_TIMEOUT", defaults.resolve_timeout
            ),
            discovery_timeout=_env_float(
                env, "LANMEDIA_DISCOVERY_TIMEOUT", defaults.discovery_timeout
            ),
            catalogue_timeout=_env_float(
                env, "LANMEDIA_CATALOGUE_TIMEOUT", defaults.catalogue_timeout
            ),
            thumbnail_timeout=_env_float(
                env, "LANMEDIA_THUMBNAIL_TIMEOUT", defaults.thumbnail_timeout
            ),
            max_attempts=max(
                1, _env_int(env, "LANMEDIA_MAX_ATTEMPTS", defaults.max_attempts)
            ),
            accepted_backoff=_env_float(
                env, "LANMEDIA_ACCEPTED_BACKOFF", defaults.accepted_backoff
            ),
            error_backoff=_env_float(
                env, "LANMEDIA_ERROR_BACKOFF", defaults.error_backoff
            ),
            max_concurrent_downloads=max(
                1,
                _env_int(
                    env, "LANMEDIA_CONCURRENCY", defaults.max_concurrent_downloads
                ),
            ),
            debug=env.get("LANMEDIA_DEBUG", "").lower() in _TRUTHY,
        )

    def with_overrides(self, **changes) -> "ClientSettings":
        """Return a copy with the given fields replaced; `None` values are ignored."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


def configure_logging(debug: bool = False) -> None:
    """Configure root logging for command line use."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="[%(levelname).1s] %(name)s: %(message)s",
    )
    # zeroconf is chatty at debug level
    logging.getLogger("zeroconf").setLevel(logging.WARNING)
