from __future__ import annotations

import http.client
import threading
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, field
from typing import Callable, Mapping

from .config import WaitctlConfig
from .metrics import metric_name
from .wait import Poller, PollPolicy, TransportExhausted

TRANSPORT_ERRORS = (urllib.error.URLError, http.client.HTTPException, OSError)

DEFAULT_TRANSPORT_RETRIES = 5


@dataclass(frozen=True)
class ProbeRequest:
    url: str
    method: str = "GET"
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes | None = None


@dataclass(frozen=True)
class ProbeResponse:
    url: str
    status: int
    headers: Mapping[str, str]
    body: bytes

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


ResponsePredicate = Callable[[ProbeResponse], bool]


class EndpointProber:
    """HTTP client that polls an endpoint until its response matches.

    When the serving domain is not resolvable from where the tests run, every
    request is sent to the ingress endpoint instead, with the logical host in
    the Host header. Predicates never see the difference.
    """

    def __init__(
        self,
        config: WaitctlConfig,
        poller: Poller,
        policy: PollPolicy | None = None,
        transport_retries: int = DEFAULT_TRANSPORT_RETRIES,
        request_timeout: float = 10.0,
    ) -> None:
        self.config = config
        self.poller = poller
        self.policy = policy or config.poll_policy()
        self.transport_retries = transport_retries
        self.request_timeout = request_timeout
        # Empty ProxyHandler: environment proxies must not reroute probes.
        self._opener = urllib.request.build_opener(urllib.request.ProxyHandler({}))

    def resolve(self, request: ProbeRequest) -> urllib.request.Request:
        parts = urllib.parse.urlsplit(request.url)
        headers = dict(request.headers)

        if self.config.resolvable_domain:
            url = request.url
        else:
            url = urllib.parse.urlunsplit(parts._replace(netloc=self.config.ingress_endpoint))
            headers["Host"] = parts.netloc

        return urllib.request.Request(url, data=request.body, headers=headers, method=request.method)

    def do(self, request: ProbeRequest) -> ProbeResponse:
        req = self.resolve(request)
        try:
            with self._opener.open(req, timeout=self.request_timeout) as resp:
                return ProbeResponse(
                    url=request.url,
                    status=resp.status,
                    headers=dict(resp.headers.items()),
                    body=resp.read(),
                )
        except urllib.error.HTTPError as e:
            # Error statuses are still responses for the predicate to judge.
            try:
                body = e.read()
            finally:
                e.close()
            return ProbeResponse(
                url=request.url,
                status=e.code,
                headers=dict(e.headers.items()) if e.headers else {},
                body=body,
            )

    def poll(
        self,
        request: ProbeRequest,
        predicate: ResponsePredicate,
        label: str = "probe",
        cancel: threading.Event | None = None,
    ) -> ProbeResponse:
        host = urllib.parse.urlsplit(request.url).netloc
        started = time.monotonic()
        failures = 0
        last: list[ProbeResponse] = []

        def cond() -> bool:
            nonlocal failures
            try:
                resp = self.do(request)
            except TRANSPORT_ERRORS as e:
                failures += 1
                self.poller.logger.debug(
                    "%s %s: transport error %d/%d: %s",
                    request.method,
                    request.url,
                    failures,
                    self.transport_retries,
                    e,
                )
                if failures > self.transport_retries:
                    raise TransportExhausted(
                        metric_name("probe", host, label), time.monotonic() - started, failures, e
                    ) from e
                return False

            failures = 0
            last[:] = [resp]
            self.poller.logger.debug("%s %s -> %d", request.method, request.url, resp.status)
            return bool(predicate(resp))

        self.poller.poll(label, self.policy, cond, caller="probe", resource=host, cancel=cancel)
        return last[0]


# ------------------------------------------------------------
# Response predicates
# ------------------------------------------------------------


def is_status_ok(resp: ProbeResponse) -> bool:
    return resp.status == 200


def is_one_of_status_codes(*codes: int) -> ResponsePredicate:
    def predicate(resp: ProbeResponse) -> bool:
        return resp.status in codes

    return predicate


def matches_body(expected: str) -> ResponsePredicate:
    def predicate(resp: ProbeResponse) -> bool:
        return expected in resp.text

    return predicate


def matches_all_of(*predicates: ResponsePredicate) -> ResponsePredicate:
    def predicate(resp: ProbeResponse) -> bool:
        return all(p(resp) for p in predicates)

    return predicate
