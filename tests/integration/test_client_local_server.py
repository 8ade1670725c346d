"""End-to-end calls against a local recording HTTP server."""

from __future__ import annotations

import socket
from urllib.parse import urlsplit

import pytest

from tracehttp import (
    Files,
    FormData,
    Header,
    JsonBody,
    Params,
    TraceClient,
    TransportError,
    trace_requests,
)
from tracehttp.builder import build_get
from tracehttp.options import classify
from tracehttp.trace import PHASE_SLOTS
from tracehttp.transport import create_session, traced_send

pytestmark = pytest.mark.integration

GZIP_TEXT = b"compressed hello from the test server"


def _phases(stat) -> tuple[float, ...]:
    return (
        stat.dns_lookup,
        stat.tcp_connection,
        stat.tls_handshake,
        stat.server_processing,
        stat.content_transfer,
    )


def _unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def test_get_records_phase_breakdown(http_server, base_url) -> None:
    with trace_requests() as client:
        response = client.get(f"{base_url}/echo?a=1", Params({"b": "2"}))

    (recorded,) = http_server.recorded
    assert recorded["path"] == "/echo?a=1&b=2"
    assert recorded["headers"]["Connection"] == "close"
    assert response.status_code == 200
    assert response.json()["path"] == "/echo?a=1&b=2"

    stat = response.trace
    assert stat.status == 200
    assert all(phase >= 0.0 for phase in _phases(stat))
    assert sum(_phases(stat)) == pytest.approx(stat.total, abs=1e-9)
    assert stat.total > 0.0
    assert set(stat.as_dict()) >= {"dns_lookup", "server_processing", "total"}


def test_cookies_round_trip_through_jar(http_server, base_url) -> None:
    with TraceClient() as client:
        client.set_cookie("session", "abc")
        first = client.get(f"{base_url}/echo")
        assert client.cookie_store.pending == []
        client.get(f"{base_url}/set-cookie")
        third = client.get(f"{base_url}/echo")

    assert first.json()["cookie"] == "session=abc"
    sent = third.json()["cookie"]
    assert "session=abc" in sent
    assert "token=xyz" in sent
    assert {cookie.name for cookie in third.cookies()} == {"session", "token"}


def test_gzip_response_is_decoded(base_url) -> None:
    with TraceClient() as client:
        response = client.get(f"{base_url}/gzip", Header({"Accept-Encoding": "gzip"}))

    assert response.content() == GZIP_TEXT
    assert response.text() == GZIP_TEXT.decode("utf-8")


def test_multipart_upload_reaches_server(http_server, base_url, tmp_path) -> None:
    attachment = tmp_path / "report.csv"
    attachment.write_bytes(b"id,total\n1,9\n")

    with TraceClient() as client:
        response = client.post(
            f"{base_url}/upload",
            Files({"upload": str(attachment)}),
            FormData({"name": "demo"}),
        )

    (recorded,) = http_server.recorded
    body = recorded["body"]
    assert recorded["headers"]["Content-Type"].startswith("multipart/form-data; boundary=")
    assert int(recorded["headers"]["Content-Length"]) == len(body)
    assert b'filename="report.csv"' in body
    assert b"id,total\n1,9\n" in body
    assert b"demo" in body
    assert response.json()["length"] == len(body)


def test_json_body_is_byte_exact(http_server, base_url) -> None:
    with TraceClient() as client:
        client.post_json(f"{base_url}/items", JsonBody({"id": 7}))

    (recorded,) = http_server.recorded
    assert recorded["body"] == b'{"id":7}'
    assert recorded["headers"]["Content-Type"] == "application/json"


def test_redirect_is_followed(http_server, base_url) -> None:
    with TraceClient() as client:
        response = client.get(f"{base_url}/redirect")

    assert [entry["path"] for entry in http_server.recorded] == ["/redirect", "/echo"]
    assert response.status_code == 200
    assert urlsplit(response.url).path == "/echo"
    assert response.trace.status == 200


def test_keep_alive_reuses_connection(http_server, base_url) -> None:
    with TraceClient(keep_alive=True) as client:
        client.get(f"{base_url}/echo")
        second = client.get(f"{base_url}/echo")

    first_peer, second_peer = (entry["client"] for entry in http_server.recorded)
    assert first_peer == second_peer
    assert "Connection" not in http_server.recorded[1]["headers"]
    assert second.trace.dns_lookup == 0.0


def test_refused_connection_reports_connect_phase() -> None:
    port = _unused_port()

    with TraceClient() as client, pytest.raises(TransportError) as excinfo:
        client.get(f"http://127.0.0.1:{port}/")

    assert excinfo.value.phase == "connect"
    assert excinfo.value.timestamps.dns_done is not None


def test_fail_fast_exits_on_connect_failure() -> None:
    port = _unused_port()

    with TraceClient(fail_fast=True) as client, pytest.raises(SystemExit):
        client.get(f"http://127.0.0.1:{port}/")


def test_dns_failure_reports_dns_phase(base_url, monkeypatch) -> None:
    port = urlsplit(base_url).port

    def unresolvable(*args, **kwargs):
        raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")

    monkeypatch.setattr(socket, "getaddrinfo", unresolvable)

    with TraceClient() as client, pytest.raises(TransportError) as excinfo:
        client.get(f"http://service.invalid:{port}/")

    assert excinfo.value.phase == "dns"


def test_timeout_bounds_whole_call(base_url) -> None:
    with TraceClient(timeout=0.3) as client, pytest.raises(TransportError) as excinfo:
        client.get(f"{base_url}/slow")

    assert excinfo.value.phase == "server"


def _raw_slots(exchange) -> list[float]:
    slots = [getattr(exchange.timestamps, name) for name in PHASE_SLOTS]
    assert None not in slots
    return slots


def test_raw_slots_follow_connection_lifecycle(base_url) -> None:
    exchange = traced_send(create_session(), build_get(f"{base_url}/echo", classify([])))

    slots = _raw_slots(exchange)
    assert slots == sorted(slots)
    assert slots[-1] <= exchange.completed


def test_https_raw_slots_follow_connection_lifecycle(tls_server, tls_url) -> None:
    exchange = traced_send(
        create_session(),
        build_get(f"{tls_url}/echo", classify([])),
        verify=str(tls_server.ca_file),
    )

    slots = _raw_slots(exchange)
    assert slots == sorted(slots)
    assert slots[-1] <= exchange.completed
    stamps = exchange.timestamps
    assert stamps.got_conn > stamps.connect_done


def test_https_server_delay_is_not_counted_as_transfer(tls_server, tls_url) -> None:
    client = TraceClient(ca_bundle=str(tls_server.ca_file))

    response = client.get(f"{tls_url}/slow")

    stat = response.trace
    assert response.status_code == 200
    assert response.content() == b"late"
    assert stat.tls_handshake > 0
    assert stat.server_processing >= 0.9
    assert stat.content_transfer < 0.5
    assert sum(_phases(stat)) == pytest.approx(stat.total, abs=1e-6)
