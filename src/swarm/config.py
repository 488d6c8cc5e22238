from __future__ import annotations

import json
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from swarm.errors import ConfigError

WorkerMode = Literal["process", "thread"]
InterruptMode = Literal["terminate", "wait"]
BackendKind = Literal["template", "command", "claude", "codex"]

WORKER_MODES = ("process", "thread")
INTERRUPT_MODES = ("terminate", "wait")
BACKEND_KINDS = ("template", "command", "claude", "codex")
DEFAULT_ROLES = ["architect", "developer", "tester", "documenter"]


@dataclass(slots=True)
class SessionConfig:
    workspace_dir: str = "workspace"
    session_prefix: str = "swarm"


@dataclass(slots=True)
class ExecutionConfig:
    max_parallel_agents: int = 3
    poll_interval_seconds: float = 1.0
    worker_mode: WorkerMode = "process"
    on_interrupt: InterruptMode = "terminate"
    start_method: str = ""


@dataclass(slots=True)
class BackendConfig:
    kind: BackendKind = "template"
    binary: str = ""
    timeout_seconds: float = 300.0
    scripts_dir: str = "agents"


@dataclass(slots=True)
class AgentsConfig:
    model: str = ""
    roles: list[str] = field(default_factory=lambda: list(DEFAULT_ROLES))


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    console: bool = True


@dataclass(slots=True)
class SwarmConfig:
    session: SessionConfig = field(default_factory=SessionConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    backend: BackendConfig = field(default_factory=BackendConfig)
    agents: AgentsConfig = field(default_factory=AgentsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def default(cls) -> SwarmConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> SwarmConfig:
        try:
            config = cls(
                session=SessionConfig(**data.get("session", {})),
                execution=ExecutionConfig(**data.get("execution", {})),
                backend=BackendConfig(**data.get("backend", {})),
                agents=AgentsConfig(**data.get("agents", {})),
                logging=LoggingConfig(**data.get("logging", {})),
            )
        except TypeError as exc:
            raise ConfigError(f"Unknown configuration key: {exc}") from exc
        config.validate()
        return config

    def to_dict(self) -> dict:
        return {
            "session": {
                "workspace_dir": self.session.workspace_dir,
                "session_prefix": self.session.session_prefix,
            },
            "execution": {
                "max_parallel_agents": self.execution.max_parallel_agents,
                "poll_interval_seconds": self.execution.poll_interval_seconds,
                "worker_mode": self.execution.worker_mode,
                "on_interrupt": self.execution.on_interrupt,
                "start_method": self.execution.start_method,
            },
            "backend": {
                "kind": self.backend.kind,
                "binary": self.backend.binary,
                "timeout_seconds": self.backend.timeout_seconds,
                "scripts_dir": self.backend.scripts_dir,
            },
            "agents": {
                "model": self.agents.model,
                "roles": list(self.agents.roles),
            },
            "logging": {
                "level": self.logging.level,
                "console": self.logging.console,
            },
        }

    def validate(self) -> None:
        if int(self.execution.max_parallel_agents) < 1:
            raise ConfigError(
                "execution.max_parallel_agents must be a positive integer, "
                f"got {self.execution.max_parallel_agents!r}"
            )
        if float(self.execution.poll_interval_seconds) <= 0:
            raise ConfigError("execution.poll_interval_seconds must be greater than zero.")
        if self.execution.worker_mode not in WORKER_MODES:
            raise ConfigError(f"Unsupported worker mode: {self.execution.worker_mode}")
        if self.execution.on_interrupt not in INTERRUPT_MODES:
            raise ConfigError(f"Unsupported interrupt mode: {self.execution.on_interrupt}")
        if self.backend.kind not in BACKEND_KINDS:
            raise ConfigError(f"Unsupported backend kind: {self.backend.kind}")

    def apply_agents_config(self, payload: dict[str, Any]) -> None:
        """Overlay the `execution_settings` block of an agents config document."""

        settings = payload.get("execution_settings")
        if not isinstance(settings, dict):
            return
        if "max_parallel_agents" in settings:
            try:
                self.execution.max_parallel_agents = int(settings["max_parallel_agents"])
            except (TypeError, ValueError) as exc:
                raise ConfigError(
                    "execution_settings.max_parallel_agents must be an integer."
                ) from exc
        if "poll_interval_seconds" in settings:
            try:
                self.execution.poll_interval_seconds = float(settings["poll_interval_seconds"])
            except (TypeError, ValueError) as exc:
                raise ConfigError(
                    "execution_settings.poll_interval_seconds must be a number."
                ) from exc
        self.validate()


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        rendered = f"{value:.3f}".rstrip("0")
        return rendered + "0" if rendered.endswith(".") else rendered
    if isinstance(value, list):
        return "[" + ", ".join(_toml_value(item) for item in value) + "]"
    return json.dumps(str(value), ensure_ascii=False)


def dumps_toml(config: SwarmConfig) -> str:
    data = config.to_dict()
    lines: list[str] = []
    for section in ("session", "execution", "backend", "agents", "logging"):
        lines.append(f"[{section}]")
        for key, value in data[section].items():
            lines.append(f"{key} = {_toml_value(value)}")
        lines.append("")
    return "\n".join(lines).strip() + "\n"


def load_config(path: Path) -> SwarmConfig:
    if not path.exists():
        return SwarmConfig.default()
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc
    return SwarmConfig.from_dict(data)


def save_config(path: Path, config: SwarmConfig) -> None:
    path.write_text(dumps_toml(config), encoding="utf-8")


def load_agents_config(path: Path) -> dict[str, Any]:
    if not path.is_file():
        raise ConfigError(f"Agents config file not found: {path}")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON in agents config: {path}") from exc
    if not isinstance(payload, dict):
        raise ConfigError(f"Agents config must be a JSON object: {path}")
    return payload
