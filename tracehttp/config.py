"""Configuration helpers and .env loading for tracehttp."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Iterable, Mapping, Optional

from dotenv import load_dotenv

from . import __version__

LOGGER = logging.getLogger(__name__)

ENV_PREFIX = "TRACEHTTP_"

DEFAULT_ENV_FILES: tuple[Path, ...] = (
    Path(".env"),
    Path("config/.env"),
)

DEFAULT_USER_AGENT = f"tracehttp/{__version__}"

_TRUE_VALUES = {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def load_environment(*, extra_files: Iterable[Path] | None = None) -> dict[str, str]:
    """Load .env files once per process and return the ``TRACEHTTP_*`` variables.

    Values already present in the environment always win over file values.
    """

    candidates = [*DEFAULT_ENV_FILES, *(extra_files or ())]
    for path in candidates:
        try:
            if path.exists() and load_dotenv(path, override=False):
                LOGGER.debug("Loaded settings from %s", path)
        except OSError as exc:
            LOGGER.warning("Unable to read %s: %s", path, exc)

    return {name: value for name, value in os.environ.items() if name.startswith(ENV_PREFIX)}


def _flag(value: Optional[str], default: bool) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in _TRUE_VALUES


def _seconds(name: str, value: Optional[str]) -> Optional[float]:
    if value is None or not value.strip():
        return None
    try:
        seconds = float(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable '{name}' must be a number of seconds, got {value!r}") from exc
    if seconds <= 0:
        raise ValueError(f"Environment variable '{name}' must be positive, got {value!r}")
    return seconds


@dataclass(frozen=True)
class ClientSettings:
    """Knobs applied to every call a client makes.

    ``timeout`` bounds the whole call, not a single phase. A ``proxy``
    routes both schemes through it with certificate checks disabled.
    ``ca_bundle`` points certificate checks at a custom CA file.
    """

    timeout: Optional[float] = None
    proxy: Optional[str] = None
    keep_alive: bool = False
    fail_fast: bool = False
    user_agent: str = DEFAULT_USER_AGENT
    ca_bundle: Optional[str] = None

    def __post_init__(self) -> None:
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be positive")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ClientSettings":
        env = os.environ if environ is None else environ
        return cls(
            timeout=_seconds("TRACEHTTP_TIMEOUT", env.get("TRACEHTTP_TIMEOUT")),
            proxy=env.get("TRACEHTTP_PROXY") or None,
            keep_alive=_flag(env.get("TRACEHTTP_KEEP_ALIVE"), False),
            fail_fast=_flag(env.get("TRACEHTTP_FAIL_FAST"), False),
            user_agent=env.get("TRACEHTTP_USER_AGENT") or DEFAULT_USER_AGENT,
            ca_bundle=env.get("TRACEHTTP_CA_BUNDLE") or None,
        )


__all__ = [
    "ClientSettings",
    "DEFAULT_ENV_FILES",
    "DEFAULT_USER_AGENT",
    "ENV_PREFIX",
    "load_environment",
]
