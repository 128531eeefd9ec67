from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

import yaml

from .wait import PollPolicy

CONFIG_ENV = "WAITCTL_CONFIG"


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class WaitctlConfig:
    docker_repo: str = ""
    resolvable_domain: bool = False
    ingress_endpoint: str = "127.0.0.1:8080"
    namespace: str = "default"
    verbose: bool = False
    emit_metrics: bool = False
    poll_interval: float = 1.0
    poll_timeout: float = 300.0

    def poll_policy(self) -> PollPolicy:
        return PollPolicy(interval=self.poll_interval, timeout=self.poll_timeout)

    def image(self, name: str) -> str:
        if not self.docker_repo:
            return name
        return f"{self.docker_repo.rstrip('/')}/{name}"


def repo_root() -> Path:
    return Path(__file__).resolve().parents[2]


def config_path() -> Path:
    env = os.environ.get(CONFIG_ENV)
    if env:
        return Path(env)
    return repo_root() / "waitctl.yaml"


def _read_yaml(path: Path) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected a mapping at the top level")
    return {str(k).replace("-", "_"): v for k, v in data.items()}


def _coerce(name: str, expected: type, value: Any) -> Any:
    if expected is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in ("true", "false", "yes", "no", "1", "0"):
            return value.lower() in ("true", "yes", "1")
        raise ConfigError(f"{name}: expected a boolean, got {value!r}")
    if expected is float:
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise ConfigError(f"{name}: expected a number, got {value!r}")
        try:
            return float(value)
        except ValueError as e:
            raise ConfigError(f"{name}: expected a number, got {value!r}") from e
    if not isinstance(value, str):
        raise ConfigError(f"{name}: expected a string, got {value!r}")
    return value


def load_config(path: Path | None = None, **overrides: Any) -> WaitctlConfig:
    """Build the frozen config snapshot: defaults, then the YAML file, then overrides.

    ``path`` falls back to :func:`config_path`; a missing default file is not an
    error but a missing explicit path is. Overrides set to ``None`` are ignored
    so CLI options that were not given keep the file's value.
    """
    explicit = path is not None
    path = path or config_path()

    values: dict[str, Any] = {}
    if path.exists():
        values.update(_read_yaml(path))
    elif explicit:
        raise ConfigError(f"config file not found: {path}")

    values.update({k: v for k, v in overrides.items() if v is not None})

    types = {f.name: f.type for f in fields(WaitctlConfig)}
    unknown = sorted(set(values) - set(types))
    if unknown:
        raise ConfigError(f"unknown config keys: {', '.join(unknown)}")

    expected = {"bool": bool, "float": float, "str": str}
    coerced = {k: _coerce(k, expected[types[k]], v) for k, v in values.items()}

    cfg = replace(WaitctlConfig(), **coerced)
    try:
        cfg.poll_policy()
    except ValueError as e:
        raise ConfigError(str(e)) from e
    return cfg
