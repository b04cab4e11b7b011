"""
Error types shared by the gateway, the download manager and the playback session.
"""

from typing import Optional


class GatewayError(Exception):
    """Base exception for all application-specific errors."""


class InputError(GatewayError):
    """A required parameter is missing or blank. No upstream call was made."""


class EmptyQuery(InputError):
    """Raised when a search is requested with a blank query."""


class MissingSource(InputError):
    """Raised when a stream is requested without a source URL."""


class UpstreamError(GatewayError):
    """The upstream provider failed or returned malformed data."""

    def __init__(self, message: str, detail: str = ""):
        super().__init__(message)
        self.detail = detail


class ProviderError(UpstreamError):
    """Raised when the provider's search call fails."""


class ResolutionFailed(UpstreamError):
    """Raised when the provider cannot produce audio for a source URL."""


class PartialDeliveryError(GatewayError):
    """
    Raised when a stream fails after response headers were already sent.
    The status code can no longer change, so the connection is dropped.
    """


class DownloadFailed(GatewayError):
    """Raised when a download ends with a non-OK status or a transport error."""

    def __init__(self, message: str, status: Optional[int] = None, detail: str = ""):
        super().__init__(message)
        self.status = status
        self.detail = detail


class TransportError(GatewayError):
    """Raised by an audio transport that cannot load or control a source."""
