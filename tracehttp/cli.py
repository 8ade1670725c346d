"""Command-line interface for tracehttp."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Iterable, Optional

from . import __version__
from .client import TraceClient
from .config import ClientSettings, load_environment
from .errors import TraceHTTPError
from .logging_utils import configure_logging
from .monitor import DEFAULT_COUNT, DEFAULT_INTERVAL, CsvRowWriter, load_targets, run_schedule
from .options import BasicAuth, Files, FormData, Header, Params, RawBody
from .trace import TraceStat

METHOD_BY_COMMAND = {"get": "get", "post": "post", "post-json": "post_json"}


def _pair(value: str) -> tuple[str, str]:
    key, sep, item = value.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"Expected KEY=VALUE, got {value!r}")
    return key, item


def _auth(value: str) -> BasicAuth:
    username, sep, password = value.partition(":")
    if not sep or not username:
        raise argparse.ArgumentTypeError("Credentials must look like USER:PASSWORD")
    return BasicAuth(username, password)


def _positive(value: str) -> float:
    number = float(value)
    if number <= 0:
        raise argparse.ArgumentTypeError("Value must be positive")
    return number


def _common_arguments() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--timeout", type=_positive, help="Whole-call timeout in seconds")
    common.add_argument("--proxy", help="Route requests through this proxy (disables certificate checks)")
    common.add_argument("--ca-bundle", help="CA certificate file used to verify HTTPS servers")
    common.add_argument("--keep-alive", action="store_true", help="Allow connection reuse between calls")
    common.add_argument("--fail-fast", action="store_true", help="Exit the process when a TCP connect fails")
    common.add_argument("--log-json", action="store_true", help="Emit structured JSON logs to the log file")
    common.add_argument("--log-file", type=Path, help="Write logs to the specified path")
    verbosity = common.add_mutually_exclusive_group()
    verbosity.add_argument("--verbose", action="store_true", help="Enable debug logging")
    verbosity.add_argument("--quiet", action="store_true", help="Reduce logging output")
    return common


def _request_arguments() -> argparse.ArgumentParser:
    request = argparse.ArgumentParser(add_help=False)
    request.add_argument("url", help="Target URL")
    request.add_argument("--header", action="append", type=_pair, default=[], help="Request header KEY=VALUE")
    request.add_argument("--param", action="append", type=_pair, default=[], help="Query parameter KEY=VALUE")
    request.add_argument("--auth", type=_auth, help="Basic auth credentials USER:PASSWORD")
    request.add_argument("--save", type=Path, help="Save the response body to this path")
    return request


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tracehttp",
        description="Issue HTTP requests and report DNS, connect, TLS, server and transfer timings.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    common = _common_arguments()
    request = _request_arguments()
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("get", parents=[common, request], help="Send a GET request")

    post = commands.add_parser("post", parents=[common, request], help="Send a form or multipart POST")
    post.add_argument("--data", action="append", type=_pair, default=[], help="Form field KEY=VALUE")
    post.add_argument("--file", action="append", type=_pair, default=[], help="Attachment FIELD=PATH")

    post_json = commands.add_parser("post-json", parents=[common, request], help="Send a JSON POST")
    post_json.add_argument("--body", help="JSON text sent verbatim as the body")

    monitor = commands.add_parser("monitor", parents=[common], help="Poll targets from a settings file")
    monitor.add_argument("--targets", type=Path, default=Path("request.json"), help="JSON targets file")
    monitor.add_argument("--count", type=int, default=DEFAULT_COUNT, help="Number of polling cycles")
    monitor.add_argument("--interval", type=float, default=DEFAULT_INTERVAL, help="Seconds before each cycle")
    monitor.add_argument("--output", type=Path, default=Path("data.csv"), help="CSV file receiving one row per call")
    return parser


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    return build_parser().parse_args(list(argv) if argv is not None else None)


def configure_cli_logging(args: argparse.Namespace) -> None:
    level = logging.INFO
    if args.verbose:
        level = logging.DEBUG
    elif args.quiet:
        level = logging.WARNING
    configure_logging(level=level, json_logs=args.log_json, logfile=args.log_file)


def build_settings(args: argparse.Namespace, base: Optional[ClientSettings] = None) -> ClientSettings:
    settings = base or ClientSettings.from_env()
    return replace(
        settings,
        timeout=args.timeout if args.timeout is not None else settings.timeout,
        proxy=args.proxy or settings.proxy,
        keep_alive=args.keep_alive or settings.keep_alive,
        fail_fast=args.fail_fast or settings.fail_fast,
        ca_bundle=args.ca_bundle or settings.ca_bundle,
    )


def build_options(args: argparse.Namespace) -> list[object]:
    options: list[object] = []
    if args.header:
        options.append(Header(dict(args.header)))
    if args.param:
        options.append(Params(dict(args.param)))
    if getattr(args, "data", None):
        options.append(FormData(dict(args.data)))
    if getattr(args, "file", None):
        options.append(Files(dict(args.file)))
    if getattr(args, "body", None) is not None:
        options.append(RawBody(args.body))
    if args.auth is not None:
        options.append(args.auth)
    return options


def render_stat(stat: TraceStat) -> str:
    return json.dumps(stat.as_dict(), indent=2, ensure_ascii=False)


def _run_monitor(args: argparse.Namespace, settings: ClientSettings, logger: logging.Logger) -> int:
    try:
        targets = load_targets(args.targets)
    except (OSError, ValueError) as exc:
        logger.error("Unable to load targets from %s: %s", args.targets, exc)
        return 1
    if not targets:
        logger.error("No usable targets in %s", args.targets)
        return 1
    try:
        run_schedule(
            targets,
            CsvRowWriter(args.output),
            count=args.count,
            interval=args.interval,
            client_factory=lambda: TraceClient(settings),
        )
    except ValueError as exc:
        logger.error("Invalid schedule: %s", exc)
        return 1
    logger.info("Wrote %d cycle(s) of results to %s", args.count, args.output)
    return 0


def main(argv: Optional[Iterable[str]] = None) -> int:
    load_environment()
    args = parse_args(argv)

    configure_cli_logging(args)
    logger = logging.getLogger("tracehttp.cli")

    try:
        settings = build_settings(args)
    except ValueError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 1

    if args.command == "monitor":
        return _run_monitor(args, settings, logger)

    try:
        with TraceClient(settings) as client:
            response = client.request(METHOD_BY_COMMAND[args.command], args.url, *build_options(args))
            if args.save:
                response.save_file(args.save)
    except TraceHTTPError as exc:
        logger.error("Request failed: %s", exc)
        return 1

    print(render_stat(response.trace))
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main())
