"""Phase-instrumented transport built on ``requests`` and ``urllib3``.

The connection classes below record DNS, connect, connection hand-off and
first-byte instants into the :class:`~tracehttp.trace.TraceTimestamps`
of the call currently in flight. The active record lives in a context
variable that :func:`traced_send` sets for the duration of one call, so
calls running on different threads never share timing state.
"""

from __future__ import annotations

import http.client
import logging
import socket
import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from socket import timeout as SocketTimeout
from typing import Any, Optional, Union

import requests
from requests import PreparedRequest
from requests.adapters import HTTPAdapter
from requests.cookies import RequestsCookieJar
from requests.exceptions import RequestException
from urllib3.connection import HTTPConnection, HTTPSConnection
from urllib3.connectionpool import HTTPConnectionPool, HTTPSConnectionPool
from urllib3.exceptions import ConnectTimeoutError, HTTPError, NameResolutionError, NewConnectionError
from urllib3.util.connection import allowed_gai_family

from .errors import TransportError
from .trace import Clock, TraceStat, TraceTimestamps, derive_stat

LOGGER = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
# Smallest socket timeout applied once a call deadline is nearly spent.
MIN_SOCKET_TIMEOUT = 0.001

_ACTIVE_TRACE: ContextVar[Optional[TraceTimestamps]] = ContextVar("tracehttp_active_trace", default=None)


@contextmanager
def tracing(timestamps: TraceTimestamps) -> Iterator[TraceTimestamps]:
    """Route connection events in this context to ``timestamps``."""

    token = _ACTIVE_TRACE.set(timestamps)
    try:
        yield timestamps
    finally:
        _ACTIVE_TRACE.reset(token)


def active_trace() -> Optional[TraceTimestamps]:
    return _ACTIVE_TRACE.get()


class TracingHTTPResponse(http.client.HTTPResponse):
    """Marks the first response byte once the status line can be read.

    Peeking the buffered stream sees decrypted application data only, so
    TLS session tickets arriving right after the handshake do not count.
    """

    def begin(self) -> None:
        trace = active_trace()
        if trace is not None and trace.first_byte is None and self.headers is None:
            if self.fp.peek(1):
                trace.mark("first_byte")
        super().begin()


class _TracingConnectionMixin:
    """Hooks shared by the plain and TLS connection classes."""

    response_class = TracingHTTPResponse

    host: str
    port: int
    timeout: Any
    sock: Any
    source_address: Any
    socket_options: Any
    _dns_host: str

    def _new_conn(self) -> socket.socket:
        trace = active_trace()
        if trace is None:
            return super()._new_conn()  # type: ignore[misc]

        timeout = trace.remaining(self.timeout)
        trace.mark("dns_start")
        try:
            addresses = socket.getaddrinfo(self._dns_host, self.port, allowed_gai_family(), socket.SOCK_STREAM)
        except socket.gaierror as exc:
            raise NameResolutionError(self.host, self, exc) from exc  # type: ignore[arg-type]
        trace.mark("dns_done")

        trace.connect_started()
        try:
            sock = self._open_socket(addresses, timeout)
        except SocketTimeout as exc:
            self._connect_failed(trace, exc)
            raise ConnectTimeoutError(
                self, f"Connection to {self.host} timed out. (connect timeout={timeout})"
            ) from exc
        except OSError as exc:
            self._connect_failed(trace, exc)
            raise NewConnectionError(self, f"Failed to establish a new connection: {exc}") from exc  # type: ignore[arg-type]
        trace.mark("connect_done")
        return sock

    def _open_socket(self, addresses: list[tuple[Any, ...]], timeout: Any) -> socket.socket:
        error: Optional[OSError] = None
        for family, socktype, proto, _canonname, sockaddr in addresses:
            sock = None
            try:
                sock = socket.socket(family, socktype, proto)
                for option in self.socket_options or ():
                    sock.setsockopt(*option)
                if timeout is None or isinstance(timeout, (int, float)):
                    sock.settimeout(timeout)
                if self.source_address:
                    sock.bind(self.source_address)
                sock.connect(sockaddr)
                return sock
            except OSError as exc:
                error = exc
                if sock is not None:
                    sock.close()
        if error is not None:
            raise error
        raise OSError("getaddrinfo returned an empty list")

    def _connect_failed(self, trace: TraceTimestamps, exc: OSError) -> None:
        if not trace.fail_fast:
            return
        message = f"unable to connect to host {self.host}:{self.port}: {exc}"
        LOGGER.critical(message)
        raise SystemExit(message)

    def connect(self) -> None:
        super().connect()  # type: ignore[misc]
        trace = active_trace()
        if trace is not None:
            trace.mark("got_conn")

    def putrequest(self, *args: Any, **kwargs: Any) -> None:
        trace = active_trace()
        # An open socket here means the pool handed over an existing connection.
        if trace is not None and self.sock is not None:
            trace.connect_started()
            trace.mark("got_conn")
        super().putrequest(*args, **kwargs)  # type: ignore[misc]

    def getresponse(self) -> Any:
        trace = active_trace()
        if trace is not None:
            # urllib3 reapplies ``self.timeout`` to the socket before reading.
            left = trace.remaining(self.timeout)
            if isinstance(left, (int, float)):
                self.timeout = max(left, MIN_SOCKET_TIMEOUT)
        return super().getresponse()  # type: ignore[misc]


class TracingHTTPConnection(_TracingConnectionMixin, HTTPConnection):
    pass


class TracingHTTPSConnection(_TracingConnectionMixin, HTTPSConnection):
    pass


class TracingHTTPConnectionPool(HTTPConnectionPool):
    ConnectionCls = TracingHTTPConnection


class TracingHTTPSConnectionPool(HTTPSConnectionPool):
    ConnectionCls = TracingHTTPSConnection


POOL_CLASSES: Mapping[str, type] = {
    "http": TracingHTTPConnectionPool,
    "https": TracingHTTPSConnectionPool,
}


class TracingAdapter(HTTPAdapter):
    """``HTTPAdapter`` whose pools open :class:`TracingHTTPConnection` objects."""

    def init_poolmanager(self, *args: Any, **kwargs: Any) -> None:
        super().init_poolmanager(*args, **kwargs)
        self.poolmanager.pool_classes_by_scheme = dict(POOL_CLASSES)

    def proxy_manager_for(self, proxy: str, **proxy_kwargs: Any) -> Any:
        manager = super().proxy_manager_for(proxy, **proxy_kwargs)
        if not proxy.lower().startswith("socks"):
            manager.pool_classes_by_scheme = dict(POOL_CLASSES)
        return manager


def create_session(adapter: Optional[HTTPAdapter] = None) -> requests.Session:
    """Session mounting a tracing adapter for both schemes."""

    session = requests.Session()
    # Proxies come only from explicit configuration.
    session.trust_env = False
    adapter = adapter or TracingAdapter()
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


@dataclass
class TracedExchange:
    """Everything one instrumented call produced."""

    response: requests.Response
    body: bytes
    stat: TraceStat
    timestamps: TraceTimestamps
    completed: float


def attach_cookies(prepared: PreparedRequest, jar: RequestsCookieJar) -> None:
    """Replace any ``Cookie`` header with one built from ``jar``."""

    prepared.headers.pop("Cookie", None)
    # A copy keeps redirect handling from merging into the live jar mid-iteration.
    prepared.prepare_cookies(jar.copy())


def _drain(response: requests.Response, timestamps: TraceTimestamps, chunk_size: int) -> bytes:
    chunks: list[bytes] = []
    while True:
        if timestamps.expired():
            raise TransportError(
                f"{response.request.method} {response.url} exceeded its deadline during transfer",
                phase="transfer",
                timestamps=timestamps,
            )
        chunk = response.raw.read(chunk_size, decode_content=False)
        if not chunk:
            break
        chunks.append(chunk)
    return b"".join(chunks)


def traced_send(
    session: requests.Session,
    prepared: PreparedRequest,
    *,
    cookies: Optional[RequestsCookieJar] = None,
    timeout: Optional[float] = None,
    proxies: Optional[Mapping[str, str]] = None,
    verify: Union[bool, str] = True,
    fail_fast: bool = False,
    clock: Clock = time.perf_counter,
    chunk_size: int = CHUNK_SIZE,
) -> TracedExchange:
    """Send ``prepared`` and return the response with its phase breakdown.

    The body is read off the wire here, undecoded, so content transfer is
    part of the measured call. Network failures surface as
    :class:`TransportError` naming the phase that did not complete.
    """

    if cookies is not None:
        attach_cookies(prepared, cookies)
    LOGGER.debug("%s %s request headers: %s", prepared.method, prepared.url, dict(prepared.headers))
    timestamps = TraceTimestamps.start(timeout=timeout, fail_fast=fail_fast, clock=clock)
    with tracing(timestamps):
        try:
            response = session.send(
                prepared,
                stream=True,
                timeout=timeout,
                proxies=dict(proxies or {}),
                verify=verify,
                allow_redirects=True,
            )
            drained = False
            try:
                body = _drain(response, timestamps, chunk_size)
                completion = clock()
                drained = True
            finally:
                if drained:
                    # A fully read body leaves the connection reusable.
                    response.raw.release_conn()
                else:
                    response.close()
        except (RequestException, HTTPError, OSError) as exc:
            phase = timestamps.pending_phase()
            LOGGER.warning(
                "%s %s failed during %s: %s",
                prepared.method,
                prepared.url,
                phase,
                exc,
                extra={"phase": phase, "url": prepared.url},
            )
            raise TransportError(
                f"{prepared.method} {prepared.url} failed during {phase}: {exc}",
                phase=phase,
                timestamps=timestamps,
            ) from exc

    stat = derive_stat(response.status_code, timestamps, completion)
    LOGGER.info(
        "%s %s -> %s in %.3fs",
        prepared.method,
        prepared.url,
        response.status_code,
        stat.total,
        extra={"status": response.status_code, "url": prepared.url},
    )
    return TracedExchange(response=response, body=body, stat=stat, timestamps=timestamps, completed=completion)


__all__ = [
    "CHUNK_SIZE",
    "POOL_CLASSES",
    "TracedExchange",
    "TracingAdapter",
    "TracingHTTPResponse",
    "TracingHTTPConnection",
    "TracingHTTPConnectionPool",
    "TracingHTTPSConnection",
    "TracingHTTPSConnectionPool",
    "active_trace",
    "attach_cookies",
    "create_session",
    "traced_send",
    "tracing",
]
