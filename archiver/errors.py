"""Exception types raised by the archival pipeline."""

from __future__ import annotations

from typing import Optional


class ArchiverError(Exception):
    """Base class for every pipeline error."""


class ChapterKeyError(ArchiverError, ValueError):
    """Raised when a chapter token holds no usable chapter number."""


class DiscoveryError(ArchiverError):
    """Raised when a chapter list or an image list cannot be obtained."""


# --- Fetching --------------------------------------------------------------
class FetchError(ArchiverError):
    def __init__(self, message: str, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.url = url


class HttpStatusError(FetchError):
    def __init__(self, status_code: int, url: str) -> None:
        super().__init__(f"unexpected HTTP status {status_code} for {url}", url)
        self.status_code = status_code


class HtmlResponseError(FetchError):
    """The server answered with an HTML page where binary content was expected."""


class ContentTypeError(FetchError):
    def __init__(self, content_type: str, url: str) -> None:
        super().__init__(f"unexpected Content-Type {content_type!r} for {url}", url)
        self.content_type = content_type


class ExhaustedRetriesError(FetchError):
    def __init__(self, url: str, attempts: int, last_error: Optional[BaseException]) -> None:
        super().__init__(
            f"giving up on {url} after {attempts} attempts: {last_error}", url
        )
        self.attempts = attempts
        self.last_error = last_error


class FetchCancelled(FetchError):
    """The fetch was abandoned because the run is shutting down."""


# --- Images ----------------------------------------------------------------
class ImageError(ArchiverError):
    pass


class UnknownFormatError(ImageError):
    pass


class HtmlPayloadError(ImageError):
    """Bytes look like an HTML error page rather than an image."""


class ImageDecodeError(ImageError):
    pass


# --- Filesystem ------------------------------------------------------------
class ArchiveError(ArchiverError):
    pass


class ScratchDirectoryError(ArchiverError):
    pass


__all__ = [
    "ArchiverError",
    "ChapterKeyError",
    "DiscoveryError",
    "FetchError",
    "HttpStatusError",
    "HtmlResponseError",
    "ContentTypeError",
    "ExhaustedRetriesError",
    "FetchCancelled",
    "ImageError",
    "UnknownFormatError",
    "HtmlPayloadError",
    "ImageDecodeError",
    "ArchiveError",
    "ScratchDirectoryError",
]
