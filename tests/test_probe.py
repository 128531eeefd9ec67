from __future__ import annotations

import io
import socket
import threading
import time
import urllib.error

import pytest

from tools.waitctl.config import WaitctlConfig
from tools.waitctl.probe import (
    EndpointProber,
    ProbeRequest,
    ProbeResponse,
    is_one_of_status_codes,
    is_status_ok,
    matches_all_of,
    matches_body,
)
from tools.waitctl.wait import ConditionFailure, PollCancelled, Poller, PollPolicy, TransportExhausted

FAST = PollPolicy(interval=0.01, timeout=2.0)


def _free_port() -> int:
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def test_unresolvable_domain_goes_through_ingress(http_server, poller: Poller) -> None:
    cfg = WaitctlConfig(resolvable_domain=False, ingress_endpoint=http_server.address)
    prober = EndpointProber(cfg, poller, FAST)

    resp = prober.do(ProbeRequest("http://hello.example.test/path"))

    assert resp.status == 200
    assert http_server.seen == [("hello.example.test", "/path")]
    assert resp.url == "http://hello.example.test/path"
    assert resp.text == "hello from hello.example.test"


def test_resolvable_domain_is_contacted_directly(http_server, poller: Poller) -> None:
    cfg = WaitctlConfig(resolvable_domain=True, ingress_endpoint="203.0.113.1:1")
    prober = EndpointProber(cfg, poller, FAST)

    resp = prober.do(ProbeRequest(f"http://{http_server.address}/direct"))

    assert resp.status == 200
    assert http_server.seen == [(http_server.address, "/direct")]


def test_error_status_is_a_response(http_server, poller: Poller) -> None:
    cfg = WaitctlConfig(resolvable_domain=True)
    resp = EndpointProber(cfg, poller, FAST).do(ProbeRequest(f"http://{http_server.address}/missing"))

    assert resp.status == 404
    assert resp.body == b"not here"


def test_do_surfaces_transport_errors(poller: Poller) -> None:
    cfg = WaitctlConfig(resolvable_domain=True)
    prober = EndpointProber(cfg, poller, FAST)

    with pytest.raises(urllib.error.URLError):
        prober.do(ProbeRequest(f"http://127.0.0.1:{_free_port()}/"))


def test_poll_retries_until_predicate_matches(http_server, poller: Poller, metrics_out: io.StringIO) -> None:
    http_server.unavailable_for = 2
    cfg = WaitctlConfig(resolvable_domain=False, ingress_endpoint=http_server.address)

    resp = EndpointProber(cfg, poller, FAST).poll(
        ProbeRequest("http://hello.local/warming"),
        matches_all_of(is_status_ok, matches_body("hello")),
    )

    assert resp.status == 200
    assert len(http_server.seen) == 3
    lines = metrics_out.getvalue().splitlines()
    assert len(lines) == 1
    assert lines[0].startswith("metric probe/hello.local/probe ")


def test_predicate_error_is_terminal(http_server, poller: Poller) -> None:
    cfg = WaitctlConfig(resolvable_domain=True)

    def predicate(resp: ProbeResponse) -> bool:
        raise AssertionError(f"unexpected status {resp.status}")

    with pytest.raises(ConditionFailure):
        EndpointProber(cfg, poller, FAST).poll(
            ProbeRequest(f"http://{http_server.address}/missing"), predicate
        )

    assert len(http_server.seen) == 1


def test_transport_errors_exhaust(poller: Poller) -> None:
    cfg = WaitctlConfig(resolvable_domain=True)
    prober = EndpointProber(cfg, poller, FAST, transport_retries=2)

    with pytest.raises(TransportExhausted) as excinfo:
        prober.poll(ProbeRequest(f"http://127.0.0.1:{_free_port()}/"), is_status_ok)

    assert excinfo.value.attempts == 3


def test_status_predicates() -> None:
    resp = ProbeResponse(url="http://x/", status=503, headers={}, body=b"busy")
    assert not is_status_ok(resp)
    assert is_one_of_status_codes(200, 503)(resp)
    assert matches_body("bus")(resp)
    assert not matches_all_of(matches_body("busy"), is_status_ok)(resp)


def test_poll_cancelled_between_attempts(http_server, poller: Poller, metrics_out: io.StringIO) -> None:
    cfg = WaitctlConfig(resolvable_domain=True)
    prober = EndpointProber(cfg, poller, PollPolicy(interval=5.0, timeout=30.0))
    cancel = threading.Event()
    timer = threading.Timer(0.1, cancel.set)
    timer.start()

    started = time.monotonic()
    try:
        with pytest.raises(PollCancelled):
            prober.poll(
                ProbeRequest(f"http://{http_server.address}/missing"), is_status_ok, cancel=cancel
            )
    finally:
        timer.cancel()

    assert time.monotonic() - started < 2.0
    assert len(http_server.seen) == 1
    assert metrics_out.getvalue() == ""
