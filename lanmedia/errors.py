"""Errors raised by the lanmedia client."""


class LanMediaError(Exception):
    """Base class for all client errors."""


class DiscoveryFailure(LanMediaError):
    """A discovered service could not be resolved to an address."""


class NetworkFailure(LanMediaError):
    """Connection error, timeout or unexpected HTTP status."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class DecodeFailure(LanMediaError):
    """The server answered with a document or body that cannot be decoded."""


class GenerationTimeout(LanMediaError):
    """The server kept reporting an asset as still being generated."""
