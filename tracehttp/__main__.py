"""Allow ``python -m tracehttp`` to invoke the CLI."""

from __future__ import annotations

from .cli import main

if __name__ == "__main__":  # pragma: no cover - CLI bootstrap
    raise SystemExit(main())
