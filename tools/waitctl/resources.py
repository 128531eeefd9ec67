from __future__ import annotations

import threading
from typing import Any, Callable

from .kube import NotFoundError, ResourceClient
from .wait import Poller, PollPolicy

Predicate = Callable[[Any], bool]

TERMINAL_WAITING_REASONS = ("ImagePullBackOff", "ErrImagePull", "CrashLoopBackOff")


class TerminalStateError(RuntimeError):
    pass


class ResourceWaiter:
    """Polls a named object through a fetch client until a predicate holds.

    NotFound is treated as "not created yet" and retried until the policy
    times out. Any other fetch error, or an exception from the predicate,
    ends the wait.
    """

    def __init__(self, poller: Poller, policy: PollPolicy | None = None) -> None:
        self.poller = poller
        self.policy = policy or PollPolicy()

    def _condition(self, client: ResourceClient, name: str, predicate: Predicate) -> Callable[[], bool]:
        def cond() -> bool:
            try:
                obj = client.get(name)
            except NotFoundError:
                self.poller.logger.debug("%s not found yet", name)
                return False
            return bool(predicate(obj))

        return cond

    def wait_for_state(
        self,
        client: ResourceClient,
        name: str,
        predicate: Predicate,
        label: str,
        cancel: threading.Event | None = None,
    ) -> None:
        self.poller.poll(
            label,
            self.policy,
            self._condition(client, name, predicate),
            caller="wait_for_state",
            resource=name,
            cancel=cancel,
        )

    def check_state(
        self,
        client: ResourceClient,
        name: str,
        predicate: Predicate,
        label: str,
        cancel: threading.Event | None = None,
    ) -> None:
        self.poller.check(
            label,
            self._condition(client, name, predicate),
            caller="check_state",
            resource=name,
            cancel=cancel,
        )

    def wait_for_deletion(
        self,
        client: ResourceClient,
        name: str,
        label: str = "deleted",
        cancel: threading.Event | None = None,
    ) -> None:
        def gone() -> bool:
            try:
                client.get(name)
            except NotFoundError:
                return True
            return False

        self.poller.poll(
            label,
            self.policy,
            gone,
            caller="wait_for_deletion",
            resource=name,
            cancel=cancel,
        )


# ------------------------------------------------------------
# Predicates over Kubernetes-shaped objects
# ------------------------------------------------------------


def condition_is_true(condition_type: str) -> Predicate:
    def predicate(obj: dict) -> bool:
        conditions = obj.get("status", {}).get("conditions", []) or []
        return any(
            c.get("type") == condition_type and c.get("status") == "True" for c in conditions
        )

    return predicate


is_ready = condition_is_true("Ready")


def deployment_available(obj: dict) -> bool:
    status = obj.get("status", {}) or {}
    desired = status.get("replicas", 0) or 0
    available = status.get("availableReplicas", 0) or 0
    return desired > 0 and available == desired


def fail_on_waiting_reason(predicate: Predicate) -> Predicate:
    """Wrap a pod predicate so image-pull and crash-loop states end the wait."""

    def wrapped(obj: dict) -> bool:
        pod_name = obj.get("metadata", {}).get("name", "<unknown>")
        for cs in obj.get("status", {}).get("containerStatuses", []) or []:
            waiting = (cs.get("state", {}) or {}).get("waiting")
            if not waiting:
                continue
            reason = waiting.get("reason")
            if reason in TERMINAL_WAITING_REASONS:
                message = waiting.get("message", "")
                raise TerminalStateError(f"pod {pod_name} reason={reason} {message}".strip())
        return predicate(obj)

    return wrapped
