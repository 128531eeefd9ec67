from __future__ import annotations

import json
import subprocess
from dataclasses import dataclass
from typing import Any, Protocol, Sequence


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    stdout: str
    stderr: str


class CommandError(RuntimeError):
    def __init__(self, command: Sequence[str], result: CommandResult) -> None:
        self.command = list(command)
        self.result = result
        super().__init__(self._build_message())

    def _build_message(self) -> str:
        cmd = " ".join(self.command)
        details = self.result.stderr.strip() or self.result.stdout.strip() or "unknown error"
        return f"Command failed: {cmd}\n{details}"


class NotFoundError(CommandError):
    pass


class ResourceClient(Protocol):
    def get(self, name: str) -> Any: ...

    def create(self, manifest: dict) -> Any: ...

    def delete(self, names: Sequence[str]) -> None: ...


def run_command(command: Sequence[str], input: str | None = None) -> CommandResult:
    proc = subprocess.run(
        list(command),
        check=False,
        text=True,
        capture_output=True,
        input=input,
    )
    return CommandResult(
        returncode=proc.returncode,
        stdout=proc.stdout or "",
        stderr=proc.stderr or "",
    )


def run_or_raise(command: Sequence[str], input: str | None = None) -> CommandResult:
    result = run_command(command, input=input)
    if result.returncode != 0:
        if "(NotFound)" in result.stderr:
            raise NotFoundError(command, result)
        raise CommandError(command, result)
    return result


class KubectlClient:
    """Fetch collaborator for one kind of object, backed by ``kubectl``."""

    def __init__(self, kind: str, namespace: str | None = None, kubectl: str = "kubectl") -> None:
        self.kind = kind
        self.namespace = namespace
        self.kubectl = kubectl

    def _base(self) -> list[str]:
        cmd = [self.kubectl]
        if self.namespace:
            cmd += ["-n", self.namespace]
        return cmd

    def get(self, name: str) -> dict:
        result = run_or_raise(self._base() + ["get", self.kind, name, "-o", "json"])
        return json.loads(result.stdout)

    def create(self, manifest: dict) -> dict:
        result = run_or_raise(
            self._base() + ["create", "-f", "-", "-o", "json"],
            input=json.dumps(manifest),
        )
        return json.loads(result.stdout)

    def delete(self, names: Sequence[str]) -> None:
        if not names:
            return
        run_or_raise(self._base() + ["delete", self.kind, *names, "--ignore-not-found", "--wait=false"])
