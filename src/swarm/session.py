from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

TASK_LOGGER = "swarm.tasks"
FILE_FORMAT = "[%(asctime)s] [%(name)s] [%(levelname)s] %(message)s"
CONSOLE_FORMAT = "[%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


@dataclass(frozen=True, slots=True)
class SessionLayout:
    """Directory layout of one swarm session under the workspace root."""

    session_id: str
    root: Path

    @property
    def artifacts_dir(self) -> Path:
        return self.root / "artifacts"

    @property
    def agents_dir(self) -> Path:
        return self.root / "agents"

    @property
    def results_dir(self) -> Path:
        return self.root / "results"

    @property
    def state_dir(self) -> Path:
        return self.root / "state"

    @property
    def logs_dir(self) -> Path:
        return self.root / "logs"

    @property
    def plan_file(self) -> Path:
        return self.root / "task_plan.json"

    def create(self) -> SessionLayout:
        for path in (
            self.artifacts_dir,
            self.agents_dir,
            self.results_dir,
            self.state_dir,
            self.logs_dir,
        ):
            path.mkdir(parents=True, exist_ok=True)
        return self


def new_session_id(prefix: str = "swarm", now: datetime | None = None) -> str:
    moment = now or datetime.now()
    return f"{prefix}_{moment.strftime('%Y%m%d_%H%M%S')}"


def create_session(
    workspace_root: Path,
    *,
    prefix: str = "swarm",
    session_id: str | None = None,
) -> SessionLayout:
    base_id = session_id or new_session_id(prefix)
    candidate = base_id
    suffix = 2
    while (workspace_root / candidate).exists():
        candidate = f"{base_id}_{suffix}"
        suffix += 1
    return SessionLayout(session_id=candidate, root=workspace_root / candidate).create()


def open_session(workspace_root: Path, session_id: str) -> SessionLayout:
    layout = SessionLayout(session_id=session_id, root=workspace_root / session_id)
    if not layout.state_dir.is_dir():
        raise FileNotFoundError(f"No session state found at {layout.root}")
    return layout


def latest_session(workspace_root: Path, *, prefix: str = "swarm") -> SessionLayout | None:
    if not workspace_root.is_dir():
        return None
    candidates = sorted(
        (
            path
            for path in workspace_root.iterdir()
            if path.is_dir() and path.name.startswith(f"{prefix}_") and (path / "state").is_dir()
        ),
        key=lambda path: path.stat().st_mtime,
    )
    if not candidates:
        return None
    return SessionLayout(session_id=candidates[-1].name, root=candidates[-1])


class _OnlyLogger(logging.Filter):
    def __init__(self, name: str) -> None:
        super().__init__()
        self.prefix = name

    def filter(self, record: logging.LogRecord) -> bool:
        return record.name == self.prefix or record.name.startswith(f"{self.prefix}.")


def configure_logging(
    layout: SessionLayout,
    *,
    level: str = "INFO",
    console: bool = True,
) -> list[logging.Handler]:
    """Attach session handlers to the `swarm` logger and return them.

    `logs/main.log` gets every record, `logs/tasks.log` only task lifecycle
    records. Pass the returned handlers to `reset_logging` when the session ends.
    """

    root = logging.getLogger("swarm")
    resolved = logging.getLevelName(level.upper())
    root.setLevel(resolved if isinstance(resolved, int) else logging.INFO)

    layout.logs_dir.mkdir(parents=True, exist_ok=True)
    file_formatter = logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT)
    main_handler = logging.FileHandler(layout.logs_dir / "main.log", encoding="utf-8")
    main_handler.setFormatter(file_formatter)
    task_handler = logging.FileHandler(layout.logs_dir / "tasks.log", encoding="utf-8")
    task_handler.setFormatter(file_formatter)
    task_handler.addFilter(_OnlyLogger(TASK_LOGGER))
    handlers: list[logging.Handler] = [main_handler, task_handler]

    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        handlers.append(console_handler)

    for handler in handlers:
        root.addHandler(handler)
    return handlers


def reset_logging(handlers: list[logging.Handler]) -> None:
    root = logging.getLogger("swarm")
    for handler in handlers:
        root.removeHandler(handler)
        handler.close()
