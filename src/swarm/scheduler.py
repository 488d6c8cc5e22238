"""Polling control loop that drives a task graph to completion."""

from __future__ import annotations

import itertools
import logging
import multiprocessing
import os
import signal
import threading
import time
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from swarm.bodies.base import TaskBody, TaskContext, UnknownRoleBody
from swarm.diagnosis import diagnose_stuck
from swarm.errors import StateCorruptionError, SwarmError
from swarm.graph import Task, TaskGraph
from swarm.session import TASK_LOGGER, SessionLayout
from swarm.state.queue import ExecutionQueue
from swarm.state.registry import ActiveJob, ActiveJobRegistry
from swarm.state.store import StateStore
from swarm.worker import FAILED, JobResult, ResultChannel, Worker

logger = logging.getLogger(__name__)
task_logger = logging.getLogger(TASK_LOGGER)

COMPLETE = "complete"
FAILED_RUN = "failed"
BLOCKED = "blocked"
DEADLOCK = "deadlock"
INTERRUPTED = "interrupted"

EventHook = Callable[[dict[str, Any]], None]


@dataclass(slots=True)
class RunOutcome:
    status: str
    total: int
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    pending: list[str] = field(default_factory=list)
    blocked: dict[str, list[str]] = field(default_factory=dict)
    deadlocked: dict[str, str] = field(default_factory=dict)
    duration_seconds: float = 0.0
    peak_concurrency: int = 0

    @property
    def stuck(self) -> list[str]:
        return [*self.deadlocked, *self.blocked]

    @property
    def succeeded(self) -> bool:
        return self.status == COMPLETE

    @property
    def success_rate(self) -> float:
        if not self.total:
            return 100.0
        return round(100.0 * len(self.completed) / self.total, 1)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "total": self.total,
            "completed": list(self.completed),
            "failed": list(self.failed),
            "pending": list(self.pending),
            "blocked": {key: list(value) for key, value in self.blocked.items()},
            "deadlocked": dict(self.deadlocked),
            "duration_seconds": self.duration_seconds,
            "peak_concurrency": self.peak_concurrency,
        }

    def summary_lines(self) -> list[str]:
        lines = [
            f"Status: {self.status}",
            f"Total tasks: {self.total}",
            f"Completed: {len(self.completed)}",
            f"Failed: {len(self.failed)}",
            f"Success rate: {self.success_rate}%",
            f"Peak concurrency: {self.peak_concurrency}",
            f"Duration: {self.duration_seconds:.2f}s",
        ]
        if self.failed:
            lines.append("Failed tasks: " + ", ".join(self.failed))
        for task_id, reason in self.deadlocked.items():
            lines.append(f"Deadlocked: {task_id} ({reason})")
        for task_id, roots in self.blocked.items():
            lines.append(f"Blocked: {task_id} (failed dependency: {', '.join(roots)})")
        if self.status == INTERRUPTED and self.pending:
            lines.append("Not started: " + ", ".join(self.pending))
        return lines


class DeadlockError(SwarmError):
    def __init__(self, outcome: RunOutcome) -> None:
        self.outcome = outcome
        super().__init__(
            "Deadlock detected; tasks can never run: " + ", ".join(outcome.deadlocked)
        )


class Scheduler:
    """Dependency-aware scheduler over a fixed pool of worker slots.

    Each cycle harvests finished workers, fills free slots with ready tasks in
    graph hint order and checks for progress. A pending task stays pending while
    its worker runs; it leaves the queue only when its result is harvested.
    Failed tasks are not retried and their dependents stay pending, which the
    final outcome reports as blocked.
    """

    def __init__(
        self,
        graph: TaskGraph,
        bodies: Mapping[str, TaskBody],
        layout: SessionLayout,
        *,
        max_parallel: int = 1,
        poll_interval: float = 1.0,
        worker_mode: str = "process",
        on_interrupt: str = "terminate",
        start_method: str = "",
        store: StateStore | None = None,
        event_hook: EventHook | None = None,
    ) -> None:
        if max_parallel < 1:
            raise ValueError("max_parallel must be at least 1.")
        if poll_interval < 0:
            raise ValueError("poll_interval must be non-negative.")
        if on_interrupt not in {"terminate", "wait"}:
            raise ValueError(f"Unsupported interrupt mode: {on_interrupt}")
        self.graph = graph
        self.bodies = dict(bodies)
        self.layout = layout
        self.max_parallel = max_parallel
        self.poll_interval = poll_interval
        self.worker_mode = worker_mode
        self.on_interrupt = on_interrupt
        self.store = store
        self.event_hook = event_hook
        self.mp_context = (
            multiprocessing.get_context(start_method or None) if worker_mode == "process" else None
        )

        self.queue = ExecutionQueue(graph)
        self.registry = ActiveJobRegistry(max_parallel)
        self.channel = ResultChannel(layout.results_dir)
        self.results: dict[str, JobResult] = {}
        self._dispatched: set[str] = set()
        self._terminated: set[str] = set()
        self._workers: list[Worker] = []
        self._sequence = itertools.count(1)
        self._stop = threading.Event()
        self._stop_reason: str | None = None

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def request_stop(self, reason: str = "requested") -> None:
        if not self._stop.is_set():
            logger.warning("Stop requested (%s); no new tasks will be dispatched", reason)
            self._stop_reason = reason
        self._stop.set()

    def run(self, *, strict: bool = False) -> RunOutcome:
        started = time.monotonic()
        logger.info(
            "Starting run: %d tasks, max %d parallel (%s workers)",
            len(self.graph),
            self.max_parallel,
            self.worker_mode,
        )
        self._emit("run_started", total=len(self.graph), max_parallel=self.max_parallel)
        self._persist("running")

        with self._signal_handlers():
            try:
                self._loop()
                if self.stop_requested:
                    self._shutdown()
            except BaseException:
                self._abort()
                raise

        for worker in self._workers:
            worker.join(timeout=1.0)

        outcome = self._outcome(round(time.monotonic() - started, 3))
        self._persist(outcome.status)
        self._emit("run_finished", **outcome.to_dict())
        logger.info(
            "Run finished: %s (%d/%d completed, %d failed)",
            outcome.status,
            len(outcome.completed),
            outcome.total,
            len(outcome.failed),
        )
        if strict and outcome.status == DEADLOCK:
            raise DeadlockError(outcome)
        return outcome

    def _loop(self) -> None:
        while True:
            self._harvest()
            self._verify()
            if self.stop_requested or self.queue.drained:
                return

            selected = self.queue.ready(active=self.registry.ids(), limit=self.registry.available)
            for task in selected:
                self._dispatch(task)

            if not self.registry:
                logger.error(
                    "No task can make progress; %d tasks still pending", len(self.queue.pending)
                )
                return
            self._pause(self.poll_interval)

    def _pause(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop.is_set() and time.monotonic() < deadline:
            self._stop.wait(min(0.1, max(0.0, deadline - time.monotonic())))

    def _verify(self) -> None:
        active = self.registry.ids()
        self.queue.verify(active=active)
        unknown = active - self._dispatched
        if unknown:
            raise StateCorruptionError(f"Registry holds undispatched tasks: {sorted(unknown)}")

    def _body_for(self, task: Task) -> TaskBody:
        body = self.bodies.get(task.role)
        if body is None:
            logger.warning("No body registered for role %s (task %s)", task.role, task.task_id)
            return UnknownRoleBody(task.role)
        return body

    def _dispatch(self, task: Task) -> None:
        if task.task_id in self._dispatched:
            raise StateCorruptionError(f"Task {task.task_id} was already dispatched.")
        agent_id = f"{task.role}_{int(time.time() * 1000)}_{next(self._sequence)}"
        context = TaskContext(
            task_id=task.task_id,
            agent_id=agent_id,
            role=task.role,
            workspace=self.layout.agents_dir / agent_id,
            artifacts_dir=self.layout.artifacts_dir,
            title=task.title,
            description=task.description,
            inputs=list(task.inputs),
            outputs=list(task.outputs),
            parallel_execution=self.max_parallel > 1,
            max_parallel=self.max_parallel,
        )
        worker = Worker(
            self._body_for(task),
            context,
            self.channel,
            mode=self.worker_mode,  # type: ignore[arg-type]
            mp_context=self.mp_context,
        )
        job = ActiveJob(
            task_id=task.task_id,
            role=task.role,
            agent_id=agent_id,
            started_at=time.time(),
            worker=worker,
        )
        self.registry.add(job)
        self._dispatched.add(task.task_id)
        self._workers.append(worker)

        try:
            worker.start()
        except Exception as exc:
            logger.error("Failed to start worker for %s: %s", task.task_id, exc)
            self.channel.write(
                JobResult(
                    task_id=task.task_id,
                    agent_id=agent_id,
                    status=FAILED,
                    duration=0.0,
                    inputs=list(task.inputs),
                    outputs=list(task.outputs),
                    error=f"worker failed to start: {type(exc).__name__}: {exc}",
                )
            )
        else:
            job.pid = worker.pid

        task_logger.info("Dispatched %s to %s (pid %s)", task.task_id, agent_id, job.pid)
        self._emit(
            "task_dispatched",
            task_id=task.task_id,
            role=task.role,
            agent_id=agent_id,
            pid=job.pid,
            active=len(self.registry),
        )
        self._persist("running")

    def _harvest(self) -> None:
        for job in self.registry:
            result = self.channel.consume(job.task_id)
            if result is None:
                worker = job.worker
                if worker is None or not worker.started or worker.is_alive():
                    continue
                # The result may land between the first read and the exit check.
                result = self.channel.consume(job.task_id)
                if result is None:
                    result = self._crash_result(job, worker.exitcode)
            self._apply(job, result)

        for task_id in self.channel.result_ids():
            if task_id in self.registry:
                continue
            logger.warning("Discarding result for %s: task is not dispatched", task_id)
            self.channel.discard(task_id)
            self._emit("stray_result", task_id=task_id)

    def _crash_result(self, job: ActiveJob, exitcode: int | None) -> JobResult:
        if job.task_id in self._terminated:
            error = "terminated"
        else:
            error = f"worker exited with code {exitcode} without a result"
        logger.error("Worker for %s ended without a result (exit code %s)", job.task_id, exitcode)
        self._emit("worker_crashed", task_id=job.task_id, exitcode=exitcode, error=error)
        task = self.graph.tasks[job.task_id]
        return JobResult(
            task_id=job.task_id,
            agent_id=job.agent_id,
            status=FAILED,
            duration=round(time.time() - job.started_at, 3),
            inputs=list(task.inputs),
            outputs=list(task.outputs),
            pid=job.pid,
            error=error,
        )

    def _apply(self, job: ActiveJob, result: JobResult) -> None:
        if result.task_id != job.task_id:
            raise StateCorruptionError(
                f"Result for {result.task_id} was filed under {job.task_id}."
            )
        self.registry.pop(job.task_id)
        self.queue.resolve(job.task_id, success=result.succeeded)
        self.results[job.task_id] = result
        if job.worker is not None:
            job.worker.join(timeout=0)

        counts = self.queue.counts()
        if result.succeeded:
            task_logger.info("Completed %s in %.2fs", job.task_id, result.duration)
            self._emit(
                "task_completed",
                task_id=job.task_id,
                agent_id=job.agent_id,
                duration=result.duration,
                inputs=list(result.inputs),
                outputs=list(result.outputs),
            )
        else:
            task_logger.error("Failed %s: %s", job.task_id, result.error)
            self._emit(
                "task_failed",
                task_id=job.task_id,
                agent_id=job.agent_id,
                duration=result.duration,
                inputs=list(result.inputs),
                outputs=list(result.outputs),
                error=result.error,
            )
        logger.info(
            "Progress: %d/%d completed, %d failed, %d active",
            counts["completed"],
            counts["total"],
            counts["failed"],
            len(self.registry),
        )
        self._record_artifacts(result)
        self._persist("running")

    def _shutdown(self) -> None:
        if not self.registry:
            return
        if self.on_interrupt == "terminate":
            for job in self.registry:
                if job.worker is not None and job.worker.terminate():
                    self._terminated.add(job.task_id)
        logger.info("Waiting for %d in-flight tasks", len(self.registry))
        while self.registry:
            self._harvest()
            if self.registry:
                time.sleep(max(0.01, min(self.poll_interval, 0.1)))
        self._verify()

    def _abort(self) -> None:
        for job in self.registry:
            if job.worker is not None:
                job.worker.terminate()
        self._emit("run_aborted", active=sorted(self.registry.ids()))

    def _outcome(self, duration: float) -> RunOutcome:
        outcome = RunOutcome(
            status=COMPLETE,
            total=len(self.graph),
            completed=list(self.queue.completed),
            failed=list(self.queue.failed),
            pending=list(self.queue.pending),
            duration_seconds=duration,
            peak_concurrency=self.registry.peak,
        )
        if outcome.pending and self.stop_requested:
            outcome.status = INTERRUPTED
        elif outcome.pending:
            report = diagnose_stuck(
                self.graph, self.queue.pending, self.queue.completed, self.queue.failed
            )
            outcome.blocked = report.blocked
            outcome.deadlocked = report.deadlocked
            outcome.status = DEADLOCK if report.is_deadlock else BLOCKED
            if report.deadlocked:
                self._emit("deadlock", tasks=dict(report.deadlocked))
        elif outcome.failed:
            outcome.status = FAILED_RUN
        return outcome

    def _record_artifacts(self, result: JobResult) -> None:
        """Store the task's artifact names under `execution.artifacts[task_id]`."""

        if self.store is None:
            return
        entry = {
            "inputs": list(result.inputs),
            "outputs": list(result.outputs),
            "result": result.status,
            "agent_id": result.agent_id,
            "created_at": result.finished_at,
        }

        def _updater(current: Any) -> dict[str, Any]:
            execution = dict(current) if isinstance(current, dict) else {}
            artifacts = execution.get("artifacts")
            artifacts = dict(artifacts) if isinstance(artifacts, dict) else {}
            artifacts[result.task_id] = entry
            execution["artifacts"] = artifacts
            return execution

        self.store.update_json("execution", _updater, default={})

    def _persist(self, status: str) -> None:
        if self.store is None:
            return
        snapshot = {
            "session_id": self.layout.session_id,
            "status": status,
            "max_parallel": self.max_parallel,
            **self.queue.snapshot(),
            **self.registry.snapshot(),
        }
        self.store.update_json("queue", lambda _current: snapshot, default={})

    def _emit(self, event: str, **fields: Any) -> None:
        if self.event_hook is not None:
            self.event_hook({"event": event, **fields})

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if threading.current_thread() is not threading.main_thread():
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)
        owner_pid = os.getpid()

        def _handler(signum: int, _frame: object | None) -> None:
            if os.getpid() != owner_pid:
                # Forked worker hit before it reset its own handlers.
                if signum == signal.SIGTERM:
                    signal.signal(signum, signal.SIG_DFL)
                    os.kill(os.getpid(), signum)
                return
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self.request_stop(name)

        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
