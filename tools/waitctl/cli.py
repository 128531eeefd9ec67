from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from pathlib import Path
from typing import List, Optional

import typer

from tools.waitctl.config import ConfigError, WaitctlConfig, load_config
from tools.waitctl.interrupt import InterruptRegistry
from tools.waitctl.kube import CommandError, KubectlClient
from tools.waitctl.log import get_logger
from tools.waitctl.metrics import MetricRecorder
from tools.waitctl.probe import (
    EndpointProber,
    ProbeRequest,
    is_one_of_status_codes,
    matches_all_of,
    matches_body,
)
from tools.waitctl.resources import (
    ResourceWaiter,
    TerminalStateError,
    condition_is_true,
    fail_on_waiting_reason,
)
from tools.waitctl.wait import Poller, PollError

app = typer.Typer(no_args_is_help=True)


@dataclass
class State:
    config: WaitctlConfig
    poller: Poller
    registry: InterruptRegistry
    cancel: threading.Event


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", help="YAML config file."),
    docker_repo: Optional[str] = typer.Option(None, "--docker-repo"),
    resolvable_domain: Optional[bool] = typer.Option(
        None, "--resolvable-domain/--no-resolvable-domain"
    ),
    ingress: Optional[str] = typer.Option(None, "--ingress", help="host:port of the ingress."),
    verbose: Optional[bool] = typer.Option(None, "--verbose/--quiet"),
    emit_metrics: Optional[bool] = typer.Option(None, "--emit-metrics/--no-emit-metrics"),
) -> None:
    try:
        cfg = load_config(
            config,
            docker_repo=docker_repo,
            resolvable_domain=resolvable_domain,
            ingress_endpoint=ingress,
            verbose=verbose,
            emit_metrics=emit_metrics,
        )
    except ConfigError as e:
        print(f"ERROR: {e}")
        raise typer.Exit(code=1)

    logger = get_logger("waitctl", verbose=cfg.verbose)
    registry = InterruptRegistry(logger)
    registry.init()
    ctx.call_on_close(registry.shutdown)

    cancel = threading.Event()
    registry.register(cancel.set)

    poller = Poller(MetricRecorder(enabled=cfg.emit_metrics, logger=logger), logger)
    ctx.obj = State(config=cfg, poller=poller, registry=registry, cancel=cancel)


def _with_timeout(cfg: WaitctlConfig, timeout: Optional[float]) -> WaitctlConfig:
    if timeout is None:
        return cfg
    return replace(cfg, poll_timeout=timeout)


@app.command()
def wait(
    ctx: typer.Context,
    kind: str,
    name: str,
    condition: str = typer.Option("Ready", "--condition"),
    namespace: Optional[str] = typer.Option(None, "--namespace", "-n"),
    timeout: Optional[float] = typer.Option(None, "--timeout"),
    fail_on_pod_errors: bool = typer.Option(False, "--fail-on-pod-errors"),
) -> None:
    state: State = ctx.obj
    cfg = _with_timeout(state.config, timeout)
    client = KubectlClient(kind, namespace or cfg.namespace)

    predicate = condition_is_true(condition)
    if fail_on_pod_errors:
        predicate = fail_on_waiting_reason(predicate)

    waiter = ResourceWaiter(state.poller, cfg.poll_policy())
    try:
        waiter.wait_for_state(client, name, predicate, condition, cancel=state.cancel)
    except (PollError, CommandError, TerminalStateError, ValueError) as e:
        print(f"ERROR: {e}")
        raise typer.Exit(code=1)

    print(f"OK {kind}/{name}: {condition}")


@app.command()
def probe(
    ctx: typer.Context,
    url: str,
    status: List[int] = typer.Option([200], "--status"),
    body_contains: Optional[str] = typer.Option(None, "--body-contains"),
    timeout: Optional[float] = typer.Option(None, "--timeout"),
) -> None:
    state: State = ctx.obj
    cfg = _with_timeout(state.config, timeout)

    predicates = [is_one_of_status_codes(*status)]
    if body_contains is not None:
        predicates.append(matches_body(body_contains))

    try:
        prober = EndpointProber(cfg, state.poller, cfg.poll_policy())
        resp = prober.poll(ProbeRequest(url), matches_all_of(*predicates), cancel=state.cancel)
    except (PollError, ValueError) as e:
        print(f"ERROR: {e}")
        raise typer.Exit(code=1)

    print(f"OK {url}: HTTP {resp.status}")


@app.command()
def delete(
    ctx: typer.Context,
    kind: str,
    names: List[str],
    namespace: Optional[str] = typer.Option(None, "--namespace", "-n"),
    wait_gone: bool = typer.Option(True, "--wait/--no-wait"),
) -> None:
    state: State = ctx.obj
    client = KubectlClient(kind, namespace or state.config.namespace)
    waiter = ResourceWaiter(state.poller, state.config.poll_policy())

    try:
        client.delete(names)
        if wait_gone:
            for name in names:
                waiter.wait_for_deletion(client, name, cancel=state.cancel)
    except (PollError, CommandError, ValueError) as e:
        print(f"ERROR: {e}")
        raise typer.Exit(code=1)

    print(f"OK deleted {kind}: {', '.join(names)}")


if __name__ == "__main__":
    app()
