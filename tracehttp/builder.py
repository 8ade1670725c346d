"""Assemble ``requests`` prepared requests from a classified build plan."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping, Sequence
from typing import Any, Optional
from urllib.parse import urlencode, urlsplit

from requests import PreparedRequest
from requests.exceptions import InvalidHeader, InvalidSchema, InvalidURL, MissingSchema
from requests.structures import CaseInsensitiveDict
from urllib3.filepost import encode_multipart_formdata

from .errors import EncodingError, FileAccessError, URLParseError
from .options import BuildPlan, JsonBody, RawBody

LOGGER = logging.getLogger(__name__)

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
JSON_CONTENT_TYPE = "application/json"
ATTACHMENT_CONTENT_TYPE = "application/octet-stream"
SUPPORTED_SCHEMES = {"http", "https"}


def encode_json(value: Any) -> bytes:
    """Serialize ``value`` compactly as UTF-8 JSON."""

    try:
        text = json.dumps(value, separators=(",", ":"), ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise EncodingError(f"Unable to JSON-encode request body: {exc}") from exc
    return text.encode("utf-8")


def encode_multipart(
    files: Sequence[tuple[str, str]],
    form: Sequence[tuple[str, str]],
) -> tuple[bytes, str]:
    """Build a multipart body: one part per attachment, then one per form field.

    Returns the encoded body and the ``Content-Type`` carrying its boundary.
    """

    fields: list[tuple[str, Any]] = []
    for name, path in files:
        try:
            with open(path, "rb") as handle:
                data = handle.read()
        except OSError as exc:
            raise FileAccessError(f"Unable to read attachment {path!r} for field {name!r}: {exc}") from exc
        fields.append((name, (os.path.basename(path), data, ATTACHMENT_CONTENT_TYPE)))
    fields.extend(form)
    body, content_type = encode_multipart_formdata(fields)
    LOGGER.debug("Encoded multipart body with %d parts (%d bytes)", len(fields), len(body))
    return body, content_type


def _start(
    method: str,
    url: str,
    plan: BuildPlan,
    default_headers: Optional[Mapping[str, str]],
    content_type: Optional[str] = None,
) -> PreparedRequest:
    prepared = PreparedRequest()
    prepared.prepare_method(method)
    try:
        prepared.prepare_url(url, plan.params)
    except (InvalidURL, MissingSchema, InvalidSchema) as exc:
        raise URLParseError(f"Invalid URL {url!r}: {exc}") from exc
    scheme = urlsplit(prepared.url).scheme.lower()
    if scheme not in SUPPORTED_SCHEMES:
        raise URLParseError(f"Unsupported URL scheme {scheme!r} in {url!r}")

    headers: CaseInsensitiveDict = CaseInsensitiveDict(default_headers or {})
    if content_type:
        headers["Content-Type"] = content_type
    headers.update(plan.headers)
    try:
        prepared.prepare_headers(headers)
    except InvalidHeader as exc:
        raise EncodingError(f"Invalid request header: {exc}") from exc
    # The transport rebuilds this from the jar right before sending.
    prepared.headers.pop("Cookie", None)
    return prepared


def _set_body(prepared: PreparedRequest, body: Optional[bytes]) -> None:
    prepared.body = body
    prepared.prepare_content_length(body)


def _finish(prepared: PreparedRequest, plan: BuildPlan) -> PreparedRequest:
    # Without an explicit pair, credentials embedded in the URL still apply.
    auth = (plan.auth.username, plan.auth.password) if plan.auth is not None else None
    prepared.prepare_auth(auth)
    return prepared


def build_get(
    url: str,
    plan: BuildPlan,
    default_headers: Optional[Mapping[str, str]] = None,
) -> PreparedRequest:
    prepared = _start("GET", url, plan, default_headers)
    return _finish(prepared, plan)


def build_post_form(
    url: str,
    plan: BuildPlan,
    default_headers: Optional[Mapping[str, str]] = None,
) -> PreparedRequest:
    """POST with a URL-encoded form body, or multipart when files are attached."""

    prepared = _start("POST", url, plan, default_headers, FORM_CONTENT_TYPE)
    if plan.files:
        body, content_type = encode_multipart(plan.files, plan.form)
        prepared.headers["Content-Type"] = content_type
    else:
        body = urlencode(plan.form).encode("ascii")
    _set_body(prepared, body)
    return _finish(prepared, plan)


def build_post_json(
    url: str,
    plan: BuildPlan,
    default_headers: Optional[Mapping[str, str]] = None,
) -> PreparedRequest:
    prepared = _start("POST", url, plan, default_headers, JSON_CONTENT_TYPE)
    body: Optional[bytes] = None
    if isinstance(plan.body, RawBody):
        data = plan.body.data
        body = data.encode("utf-8") if isinstance(data, str) else bytes(data)
    elif isinstance(plan.body, JsonBody):
        body = encode_json(plan.body.value)
    _set_body(prepared, body)
    return _finish(prepared, plan)


def reset_body(prepared: PreparedRequest) -> None:
    """Drop body state so nothing stale follows the request object around."""

    prepared.body = None
    prepared.headers.pop("Content-Length", None)
    prepared.headers.pop("Transfer-Encoding", None)


__all__ = [
    "ATTACHMENT_CONTENT_TYPE",
    "FORM_CONTENT_TYPE",
    "JSON_CONTENT_TYPE",
    "build_get",
    "build_post_form",
    "build_post_json",
    "encode_json",
    "encode_multipart",
    "reset_body",
]
