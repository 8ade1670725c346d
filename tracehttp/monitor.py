"""Fixed-count polling of configured targets, one trace row per call.

Targets come from a JSON document shaped ``{server: {app: settings}}``
where each ``settings`` object carries at least a ``url``. Each cycle
calls every target once on a fresh client and appends one row per target.
"""

from __future__ import annotations

import csv
import json
import logging
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, TextIO

from .client import TraceClient, trace_requests
from .errors import TraceHTTPError
from .options import FormData, Header, JsonBody, Params
from .trace import STAT_COLUMNS

LOGGER = logging.getLogger(__name__)

METHODS = {"get", "post", "post_json"}
ROW_COLUMNS: tuple[str, ...] = ("server", "app", *STAT_COLUMNS, "error")

DEFAULT_COUNT = 100
DEFAULT_INTERVAL = 60.0

ClientFactory = Callable[[], TraceClient]

# Held for a whole cycle so two cycles never interleave.
_CYCLE_LOCK = threading.Lock()


@dataclass(frozen=True)
class Target:
    server: str
    app: str
    url: str
    method: str = "post_json"
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Any = None
    settings: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.method not in METHODS:
            raise ValueError(f"Target {self.server}/{self.app}: method must be one of {sorted(METHODS)}")

    def options(self) -> list[object]:
        options: list[object] = []
        if self.headers:
            options.append(Header(dict(self.headers)))
        if self.method == "post_json":
            # Without an explicit body the target posts its own settings.
            options.append(JsonBody(self.body if self.body is not None else dict(self.settings)))
        elif isinstance(self.body, Mapping):
            values = {str(key): str(value) for key, value in self.body.items()}
            options.append(FormData(values) if self.method == "post" else Params(values))
        return options


def load_targets(path: Path | str) -> list[Target]:
    """Read targets from a JSON settings file; entries without a url are skipped."""

    source = Path(path)
    document = json.loads(source.read_text(encoding="utf-8"))
    if not isinstance(document, Mapping):
        raise ValueError(f"{source} must contain a JSON object of servers")

    targets: list[Target] = []
    for server, apps in document.items():
        if not isinstance(apps, Mapping):
            LOGGER.warning("Server %s has no application table; skipping", server)
            continue
        for app, settings in apps.items():
            if not isinstance(settings, Mapping) or not settings.get("url"):
                LOGGER.warning("Server %s application %s is missing a url; skipping", server, app)
                continue
            targets.append(
                Target(
                    server=str(server),
                    app=str(app),
                    url=str(settings["url"]),
                    method=str(settings.get("method", "post_json")).lower().replace("-", "_"),
                    headers=dict(settings.get("headers") or {}),
                    body=settings.get("body"),
                    settings=dict(settings),
                )
            )
    LOGGER.debug("Loaded %d target(s) from %s", len(targets), source)
    return targets


class CsvRowWriter:
    """Append rows to a CSV file, writing the header once."""

    def __init__(self, path: Path | str, columns: Sequence[str] = ROW_COLUMNS) -> None:
        self.path = Path(path)
        self.columns = tuple(columns)
        self._handle: Optional[TextIO] = None
        self._writer: Optional[csv.DictWriter] = None

    def __enter__(self) -> "CsvRowWriter":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _open(self) -> csv.DictWriter:
        if self._writer is None:
            needs_header = not self.path.exists() or self.path.stat().st_size == 0
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._handle = open(self.path, "a", newline="", encoding="utf-8")
            self._writer = csv.DictWriter(self._handle, fieldnames=self.columns, extrasaction="ignore")
            if needs_header:
                self._writer.writeheader()
        return self._writer

    def append(self, row: Mapping[str, object]) -> None:
        self._open().writerow(row)
        if self._handle is not None:
            self._handle.flush()

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
        self._handle = None
        self._writer = None


def poll_target(target: Target, client_factory: ClientFactory = trace_requests) -> dict[str, object]:
    row: dict[str, object] = {"server": target.server, "app": target.app}
    try:
        with client_factory() as client:
            response = client.request(target.method, target.url, *target.options())
    except TraceHTTPError as exc:
        LOGGER.warning("Call to %s/%s failed: %s", target.server, target.app, exc)
        row.update({column: "" for column in STAT_COLUMNS})
        row.update(status=0, error=str(exc))
        return row
    row.update(response.trace.as_dict())
    row["error"] = ""
    return row


def run_cycle(
    targets: Sequence[Target],
    writer: CsvRowWriter,
    *,
    client_factory: ClientFactory = trace_requests,
) -> list[dict[str, object]]:
    with _CYCLE_LOCK:
        LOGGER.info("Polling cycle started for %d target(s)", len(targets))
        rows = []
        for target in targets:
            row = poll_target(target, client_factory)
            writer.append(row)
            rows.append(row)
        LOGGER.info("Polling cycle finished")
    return rows


def run_schedule(
    targets: Sequence[Target],
    writer: CsvRowWriter,
    *,
    count: int = DEFAULT_COUNT,
    interval: float = DEFAULT_INTERVAL,
    sleep_func: Callable[[float], None] = time.sleep,
    client_factory: ClientFactory = trace_requests,
) -> int:
    """Run exactly ``count`` cycles, waiting ``interval`` seconds before each."""

    if count <= 0:
        raise ValueError("count must be positive")
    if interval < 0:
        raise ValueError("interval must not be negative")
    try:
        for index in range(1, count + 1):
            sleep_func(interval)
            LOGGER.info("Cycle %d/%d", index, count)
            run_cycle(targets, writer, client_factory=client_factory)
    finally:
        writer.close()
    return count


__all__ = [
    "CsvRowWriter",
    "ROW_COLUMNS",
    "Target",
    "load_targets",
    "poll_target",
    "run_cycle",
    "run_schedule",
]
