"""Worker lifecycle and the job result side channel."""

from __future__ import annotations

import json
import logging
import multiprocessing
import os
import signal
import tempfile
import threading
import time
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from multiprocessing.context import BaseContext
from pathlib import Path
from typing import Any, Literal
from urllib.parse import quote, unquote

from swarm.bodies.base import TaskBody, TaskContext
from swarm.errors import StateCorruptionError

logger = logging.getLogger(__name__)

SUCCESS = "SUCCESS"
FAILED = "FAILED"
RESULT_PREFIX = "job_"
RESULT_SUFFIX = ".result"


def _utcnow_iso() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat()


@dataclass(slots=True)
class JobResult:
    task_id: str
    agent_id: str
    status: str
    duration: float
    inputs: list[str] = field(default_factory=list)
    outputs: list[str] = field(default_factory=list)
    pid: int | None = None
    error: str | None = None
    finished_at: str = field(default_factory=_utcnow_iso)

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCESS

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> JobResult:
        status = str(payload["status"])
        if status not in {SUCCESS, FAILED}:
            raise ValueError(f"Unknown job status: {status}")
        return cls(
            task_id=str(payload["task_id"]),
            agent_id=str(payload.get("agent_id", "")),
            status=status,
            duration=float(payload.get("duration", 0.0)),
            inputs=list(payload.get("inputs", [])),
            outputs=list(payload.get("outputs", [])),
            pid=payload.get("pid"),
            error=payload.get("error"),
            finished_at=str(payload.get("finished_at") or _utcnow_iso()),
        )


class ResultChannel:
    """One result file per task, created at most once.

    The file is written under a temporary name and hard-linked into place, so
    it appears complete or not at all, and a second write for the same task
    fails instead of replacing the first.
    """

    def __init__(self, results_dir: Path) -> None:
        self.results_dir = results_dir
        self.results_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, task_id: str) -> Path:
        return self.results_dir / f"{RESULT_PREFIX}{quote(task_id, safe='')}{RESULT_SUFFIX}"

    def write(self, result: JobResult) -> Path:
        target = self.path_for(result.task_id)
        fd, temp_name = tempfile.mkstemp(prefix=".job-", suffix=".tmp", dir=self.results_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(result.to_dict(), handle, ensure_ascii=False, indent=2)
                handle.flush()
                os.fsync(handle.fileno())
            os.link(temp_name, target)
        finally:
            os.unlink(temp_name)
        return target

    def read(self, task_id: str) -> JobResult | None:
        path = self.path_for(task_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            return JobResult.from_dict(json.loads(raw))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            raise StateCorruptionError(f"Unreadable job result for {task_id}: {path}") from exc

    def consume(self, task_id: str) -> JobResult | None:
        result = self.read(task_id)
        if result is not None:
            self.discard(task_id)
        return result

    def discard(self, task_id: str) -> None:
        try:
            self.path_for(task_id).unlink()
        except FileNotFoundError:
            pass

    def result_ids(self) -> list[str]:
        ids: list[str] = []
        for path in sorted(self.results_dir.glob(f"{RESULT_PREFIX}*{RESULT_SUFFIX}")):
            ids.append(unquote(path.name[len(RESULT_PREFIX) : -len(RESULT_SUFFIX)]))
        return ids


def run_task_body(body: TaskBody, context: TaskContext, results_dir: Path) -> None:
    """Worker entry point: run the body once and publish exactly one result."""

    started = time.monotonic()
    status = SUCCESS
    error: str | None = None
    try:
        context.write()
        body.run(context)
    except Exception as exc:
        status = FAILED
        error = f"{type(exc).__name__}: {exc}"
    result = JobResult(
        task_id=context.task_id,
        agent_id=context.agent_id,
        status=status,
        duration=round(time.monotonic() - started, 3),
        inputs=list(context.inputs),
        outputs=list(context.outputs),
        pid=os.getpid(),
        error=error,
    )
    ResultChannel(results_dir).write(result)


def _process_main(body: TaskBody, context: TaskContext, results_dir: Path) -> None:
    # Interruption is handled by the scheduler, not by each child. A forked child
    # inherits the scheduler's handlers, so SIGTERM must kill it again.
    signal.signal(signal.SIGINT, signal.SIG_IGN)
    signal.signal(signal.SIGTERM, signal.SIG_DFL)
    run_task_body(body, context, results_dir)


class Worker:
    """Runs one task body in a child process or a daemon thread."""

    def __init__(
        self,
        body: TaskBody,
        context: TaskContext,
        channel: ResultChannel,
        *,
        mode: Literal["process", "thread"] = "process",
        mp_context: BaseContext | None = None,
    ) -> None:
        self.body = body
        self.context = context
        self.channel = channel
        self.mode = mode
        args = (body, context, channel.results_dir)
        name = f"swarm-{context.task_id}"
        if mode == "process":
            ctx = mp_context or multiprocessing.get_context()
            self._handle: Any = ctx.Process(target=_process_main, args=args, name=name)
        elif mode == "thread":
            self._handle = threading.Thread(
                target=run_task_body, args=args, name=name, daemon=True
            )
        else:
            raise ValueError(f"Unsupported worker mode: {mode}")
        self._started = False

    @property
    def task_id(self) -> str:
        return self.context.task_id

    @property
    def pid(self) -> int | None:
        if self.mode == "process":
            return self._handle.pid
        return os.getpid()

    @property
    def started(self) -> bool:
        return self._started

    def start(self) -> None:
        self._handle.start()
        self._started = True

    def is_alive(self) -> bool:
        return self._started and self._handle.is_alive()

    @property
    def exitcode(self) -> int | None:
        if not self._started or self.is_alive():
            return None
        if self.mode == "process":
            return self._handle.exitcode
        return 0

    def join(self, timeout: float | None = None) -> None:
        if self._started:
            self._handle.join(timeout)

    def terminate(self) -> bool:
        """Kill a process worker; thread workers cannot be interrupted."""

        if self.mode != "process" or not self.is_alive():
            return False
        logger.warning("Terminating worker for %s (pid %s)", self.task_id, self.pid)
        self._handle.terminate()
        return True
