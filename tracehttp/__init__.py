"""tracehttp: an HTTP client that records a per-phase latency breakdown of every call."""

from __future__ import annotations

# Semantic version for package consumers; set before submodules import it.
__version__ = "0.1.0"

from .client import TraceClient, trace_requests  # noqa: E402
from .config import ClientSettings  # noqa: E402
from .cookies import CookieStore  # noqa: E402
from .errors import (  # noqa: E402
    DecodeError,
    EncodingError,
    FileAccessError,
    TraceHTTPError,
    TransportError,
    URLParseError,
)
from .options import BasicAuth, FormData, Files, Header, JsonBody, Params, RawBody  # noqa: E402
from .response import TracedResponse  # noqa: E402
from .trace import TraceStat, TraceTimestamps  # noqa: E402

__all__ = [
    "__version__",
    "BasicAuth",
    "ClientSettings",
    "CookieStore",
    "DecodeError",
    "EncodingError",
    "FileAccessError",
    "Files",
    "FormData",
    "Header",
    "JsonBody",
    "Params",
    "RawBody",
    "TraceClient",
    "TraceHTTPError",
    "TraceStat",
    "TraceTimestamps",
    "TracedResponse",
    "TransportError",
    "URLParseError",
    "trace_requests",
]
