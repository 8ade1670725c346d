from __future__ import annotations

import base64
import math

import pytest

from tracehttp.builder import (
    FORM_CONTENT_TYPE,
    JSON_CONTENT_TYPE,
    build_get,
    build_post_form,
    build_post_json,
    encode_json,
    reset_body,
)
from tracehttp.errors import EncodingError, FileAccessError, URLParseError
from tracehttp.options import (
    BasicAuth,
    Files,
    FormData,
    Header,
    JsonBody,
    Params,
    RawBody,
    classify,
)


def test_get_merges_query_parameters_into_existing_query() -> None:
    prepared = build_get("https://x/y?a=1", classify([Params({"b": "2"})]))

    assert prepared.method == "GET"
    assert prepared.url == "https://x/y?a=1&b=2"
    assert prepared.body is None


def test_get_keeps_existing_value_for_repeated_key() -> None:
    prepared = build_get("https://x/y?a=1", classify([Params({"a": "2"})]))

    assert prepared.url == "https://x/y?a=1&a=2"


def test_get_applies_basic_auth_and_headers() -> None:
    prepared = build_get(
        "http://example.test/",
        classify([BasicAuth("user", "secret"), Header({"X-Trace": "on"})]),
        {"User-Agent": "tests"},
    )

    expected = base64.b64encode(b"user:secret").decode("ascii")
    assert prepared.headers["Authorization"] == f"Basic {expected}"
    assert prepared.headers["X-Trace"] == "on"
    assert prepared.headers["User-Agent"] == "tests"


def test_caller_header_overrides_default() -> None:
    prepared = build_get(
        "http://example.test/",
        classify([Header({"user-agent": "custom"})]),
        {"User-Agent": "default"},
    )

    assert prepared.headers["User-Agent"] == "custom"


def test_cookie_header_is_left_to_the_jar() -> None:
    prepared = build_get("http://example.test/", classify([Header({"Cookie": "a=b"})]))

    assert "Cookie" not in prepared.headers


@pytest.mark.parametrize("url", ["example.test/path", "http://", "ftp://example.test/file"])
def test_unusable_urls_raise_url_parse_error(url: str) -> None:
    with pytest.raises(URLParseError):
        build_get(url, classify([]))


def test_invalid_header_value_raises_encoding_error() -> None:
    with pytest.raises(EncodingError):
        build_get("http://example.test/", classify([Header({"X-Bad": "line\r\nbreak"})]))


def test_post_form_is_url_encoded() -> None:
    prepared = build_post_form(
        "http://example.test/submit",
        classify([FormData({"name": "demo"}), FormData({"name": "again", "q": "a b"})]),
    )

    assert prepared.method == "POST"
    assert prepared.headers["Content-Type"] == FORM_CONTENT_TYPE
    assert prepared.body == b"name=demo&name=again&q=a+b"
    assert prepared.headers["Content-Length"] == str(len(prepared.body))


def test_post_with_file_switches_to_multipart(tmp_path) -> None:
    attachment = tmp_path / "report.csv"
    attachment.write_bytes(b"col\n1\n")

    prepared = build_post_form(
        "http://example.test/upload",
        classify([Files({"upload": str(attachment)}), FormData({"name": "demo"})]),
    )

    content_type = prepared.headers["Content-Type"]
    assert content_type.startswith("multipart/form-data; boundary=")
    boundary = content_type.split("boundary=", 1)[1].encode("ascii")
    body = prepared.body
    assert body.count(b"--" + boundary + b"\r\n") == 2
    assert body.endswith(b"--" + boundary + b"--\r\n")
    assert b'name="upload"; filename="report.csv"' in body
    assert b'name="name"' in body
    assert b"col\n1\n" in body
    assert prepared.headers["Content-Length"] == str(len(body))


def test_missing_attachment_raises_file_access_error(tmp_path) -> None:
    with pytest.raises(FileAccessError):
        build_post_form(
            "http://example.test/upload",
            classify([Files({"upload": str(tmp_path / "missing.csv")})]),
        )


def test_post_json_encodes_structured_value_compactly() -> None:
    prepared = build_post_json("http://example.test/api", classify([JsonBody({"id": 7})]))

    assert prepared.body == b'{"id":7}'
    assert prepared.headers["Content-Type"] == JSON_CONTENT_TYPE
    assert prepared.headers["Content-Length"] == "8"


def test_post_json_sends_raw_body_verbatim() -> None:
    prepared = build_post_json("http://example.test/api", classify([RawBody('{ "id" : 7 }')]))

    assert prepared.body == b'{ "id" : 7 }'


def test_post_json_without_body_sends_nothing() -> None:
    prepared = build_post_json("http://example.test/api", classify([]))

    assert prepared.body is None
    assert prepared.headers["Content-Type"] == JSON_CONTENT_TYPE
    assert prepared.headers["Content-Length"] == "0"


@pytest.mark.parametrize("value", [{"when": object()}, {"ratio": math.nan}])
def test_unserializable_json_raises_encoding_error(value) -> None:
    with pytest.raises(EncodingError):
        encode_json(value)


def test_encode_json_keeps_non_ascii_text() -> None:
    assert encode_json({"name": "café"}) == '{"name":"café"}'.encode("utf-8")


def test_reset_body_clears_body_state() -> None:
    prepared = build_post_json("http://example.test/api", classify([JsonBody({"id": 7})]))

    reset_body(prepared)

    assert prepared.body is None
    assert "Content-Length" not in prepared.headers
