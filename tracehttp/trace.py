"""Per-call phase timestamps and the latency breakdown derived from them."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Optional

LOGGER = logging.getLogger(__name__)

Clock = Callable[[], float]

# Lifecycle slots in the order the transport reaches them.
PHASE_SLOTS: tuple[str, ...] = (
    "dns_start",
    "dns_done",
    "connect_done",
    "got_conn",
    "first_byte",
)

STAT_COLUMNS: tuple[str, ...] = (
    "status",
    "dns_lookup",
    "tcp_connection",
    "tls_handshake",
    "server_processing",
    "content_transfer",
    "total",
)

_NS_PER_US = 1_000
_NS_PER_MS = 1_000_000
_NS_PER_S = 1_000_000_000


def _fraction(value: int, unit: int) -> str:
    whole, remainder = divmod(value, unit)
    if not remainder:
        return str(whole)
    width = len(str(unit)) - 1
    digits = f"{remainder:0{width}d}".rstrip("0")
    return f"{whole}.{digits}"


def format_duration(seconds: float) -> str:
    """Render an elapsed time in compact unit notation.

    ``0`` becomes ``"0s"``; sub-second values pick the largest unit that
    keeps a whole part (``ns``, ``µs``, ``ms``); longer values are written
    as ``1h2m3.5s``.
    """

    nanos = int(round(seconds * _NS_PER_S))
    if nanos == 0:
        return "0s"
    sign = "-" if nanos < 0 else ""
    nanos = abs(nanos)
    if nanos < _NS_PER_US:
        return f"{sign}{nanos}ns"
    if nanos < _NS_PER_MS:
        return f"{sign}{_fraction(nanos, _NS_PER_US)}µs"
    if nanos < _NS_PER_S:
        return f"{sign}{_fraction(nanos, _NS_PER_MS)}ms"

    hours, nanos = divmod(nanos, 3600 * _NS_PER_S)
    minutes, nanos = divmod(nanos, 60 * _NS_PER_S)
    text = f"{_fraction(nanos, _NS_PER_S)}s"
    if hours or minutes:
        text = f"{minutes}m{text}"
    if hours:
        text = f"{hours}h{text}"
    return sign + text


@dataclass
class TraceTimestamps:
    """Instants recorded while a single call is in flight.

    Each slot is written at most once; later events for the same slot (for
    example on a redirect hop) are ignored. A fresh record is created for
    every call and never shared between calls.
    """

    dns_start: Optional[float] = None
    dns_done: Optional[float] = None
    connect_done: Optional[float] = None
    got_conn: Optional[float] = None
    first_byte: Optional[float] = None
    deadline: Optional[float] = None
    fail_fast: bool = False
    clock: Clock = field(default=time.perf_counter, repr=False, compare=False)

    @classmethod
    def start(
        cls,
        *,
        timeout: Optional[float] = None,
        fail_fast: bool = False,
        clock: Clock = time.perf_counter,
    ) -> "TraceTimestamps":
        deadline = clock() + timeout if timeout else None
        return cls(deadline=deadline, fail_fast=fail_fast, clock=clock)

    def mark(self, slot: str) -> float:
        if slot not in PHASE_SLOTS:
            raise ValueError(f"Unknown trace slot: {slot}")
        current = getattr(self, slot)
        if current is not None:
            return current
        now = self.clock()
        setattr(self, slot, now)
        LOGGER.debug("trace %s at %.6f", slot, now)
        return now

    def connect_started(self) -> None:
        # Reused or pre-resolved connections skip DNS entirely.
        if self.dns_done is None:
            self.mark("dns_done")

    def remaining(self, fallback: Optional[float] = None) -> Optional[float]:
        """Return the time left before the call deadline, bounded by ``fallback``."""

        if self.deadline is None:
            return fallback
        left = max(0.0, self.deadline - self.clock())
        if isinstance(fallback, (int, float)):
            return min(left, float(fallback))
        return left

    def expired(self) -> bool:
        return self.deadline is not None and self.clock() >= self.deadline

    def pending_phase(self) -> str:
        if self.dns_done is None:
            return "dns"
        if self.connect_done is None:
            return "connect"
        if self.got_conn is None:
            return "tls"
        if self.first_byte is None:
            return "server"
        return "transfer"

    def filled(self, completion: float) -> "TraceTimestamps":
        """Return a copy with every unset slot back-filled from the next one.

        The first response byte defaults to ``completion`` and DNS start to
        DNS done, so skipped phases contribute zero.
        """

        first_byte = self.first_byte if self.first_byte is not None else completion
        got_conn = self.got_conn if self.got_conn is not None else first_byte
        connect_done = self.connect_done if self.connect_done is not None else got_conn
        dns_done = self.dns_done if self.dns_done is not None else connect_done
        dns_start = self.dns_start if self.dns_start is not None else dns_done
        return replace(
            self,
            dns_start=dns_start,
            dns_done=dns_done,
            connect_done=connect_done,
            got_conn=got_conn,
            first_byte=first_byte,
        )


@dataclass(frozen=True)
class TraceStat:
    """Six-phase latency breakdown, in seconds, for one completed call."""

    status: int
    dns_lookup: float
    tcp_connection: float
    tls_handshake: float
    server_processing: float
    content_transfer: float
    total: float

    def as_dict(self) -> dict[str, object]:
        return {
            "status": self.status,
            "dns_lookup": format_duration(self.dns_lookup),
            "tcp_connection": format_duration(self.tcp_connection),
            "tls_handshake": format_duration(self.tls_handshake),
            "server_processing": format_duration(self.server_processing),
            "content_transfer": format_duration(self.content_transfer),
            "total": format_duration(self.total),
        }

    @staticmethod
    def columns() -> tuple[str, ...]:
        return STAT_COLUMNS


def derive_stat(status: int, timestamps: TraceTimestamps, completion: float) -> TraceStat:
    stamps = timestamps.filled(completion)
    return TraceStat(
        status=status,
        dns_lookup=stamps.dns_done - stamps.dns_start,
        tcp_connection=stamps.connect_done - stamps.dns_done,
        tls_handshake=stamps.got_conn - stamps.connect_done,
        server_processing=stamps.first_byte - stamps.got_conn,
        content_transfer=completion - stamps.first_byte,
        total=completion - stamps.dns_start,
    )


__all__ = [
    "PHASE_SLOTS",
    "STAT_COLUMNS",
    "TraceStat",
    "TraceTimestamps",
    "derive_stat",
    "format_duration",
]
