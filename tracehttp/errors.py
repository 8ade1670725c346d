"""Exception hierarchy shared by the tracing client."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .trace import TraceTimestamps


class TraceHTTPError(Exception):
    """Base class for every error raised by tracehttp."""


class URLParseError(TraceHTTPError, ValueError):
    """Raised when a target or proxy URL cannot be used; nothing is sent."""


class EncodingError(TraceHTTPError, ValueError):
    """Raised when a structured request body cannot be JSON-encoded."""


class FileAccessError(TraceHTTPError, OSError):
    """Raised when an attachment cannot be read or a response cannot be saved."""


class DecodeError(TraceHTTPError, ValueError):
    """Raised when a response body cannot be decoded."""


class TransportError(TraceHTTPError):
    """Raised when the network call fails.

    ``phase`` names the first lifecycle step that never completed
    (``dns``, ``connect``, ``tls``, ``server`` or ``transfer``) and ``timestamps`` holds
    whatever the call recorded before failing.
    """

    def __init__(
        self,
        message: str,
        *,
        phase: str = "transfer",
        timestamps: Optional["TraceTimestamps"] = None,
    ) -> None:
        super().__init__(message)
        self.phase = phase
        self.timestamps = timestamps


__all__ = [
    "TraceHTTPError",
    "URLParseError",
    "EncodingError",
    "FileAccessError",
    "DecodeError",
    "TransportError",
]
