import os
import random
import signal
import sys
import threading
import time
from collections import Counter
from pathlib import Path
from typing import Any

import pytest

from swarm.bodies import CommandBody, TaskBody, TaskContext, TemplateBody
from swarm.errors import TaskBodyError
from swarm.graph import Task, TaskGraph
from swarm.scheduler import DeadlockError, RunOutcome, Scheduler
from swarm.session import SessionLayout, create_session
from swarm.state import StateStore
from swarm.worker import SUCCESS, JobResult, ResultChannel


class Tracker:
    """Thread-safe record of what ran, when, and alongside what."""

    def __init__(self, graph: TaskGraph) -> None:
        self.graph = graph
        self.lock = threading.Lock()
        self.active: set[str] = set()
        self.peak = 0
        self.started: list[str] = []
        self.succeeded: set[str] = set()
        self.runs: Counter[str] = Counter()
        self.violations: list[str] = []

    def enter(self, task_id: str) -> None:
        with self.lock:
            missing = [
                dep for dep in self.graph.tasks[task_id].dependencies if dep not in self.succeeded
            ]
            if missing:
                self.violations.append(f"{task_id} started before {missing}")
            self.active.add(task_id)
            self.peak = max(self.peak, len(self.active))
            self.started.append(task_id)
            self.runs[task_id] += 1

    def leave(self, task_id: str, success: bool) -> None:
        with self.lock:
            self.active.discard(task_id)
            if success:
                self.succeeded.add(task_id)


class RecordingBody(TaskBody):
    def __init__(
        self, tracker: Tracker, *, fail: set[str] | None = None, delay: float = 0.02
    ) -> None:
        self.tracker = tracker
        self.fail = fail or set()
        self.delay = delay

    def run(self, context: TaskContext) -> None:
        self.tracker.enter(context.task_id)
        success = context.task_id not in self.fail
        try:
            time.sleep(self.delay)
            if not success:
                raise TaskBodyError(f"{context.task_id} failed on purpose")
        finally:
            self.tracker.leave(context.task_id, success)


class ExitingBody(TaskBody):
    def run(self, context: TaskContext) -> None:
        raise SystemExit(2)


def _graph(*tasks: Task) -> TaskGraph:
    return TaskGraph.from_tasks(list(tasks))


def _layout(tmp_path: Path) -> SessionLayout:
    return create_session(tmp_path / "workspace", session_id="swarm_test")


def _scheduler(
    tmp_path: Path,
    graph: TaskGraph,
    body: TaskBody,
    *,
    max_parallel: int = 2,
    events: list[dict[str, Any]] | None = None,
    **kwargs: Any,
) -> Scheduler:
    return Scheduler(
        graph,
        {"developer": body},
        _layout(tmp_path),
        max_parallel=max_parallel,
        poll_interval=0.01,
        worker_mode=kwargs.pop("worker_mode", "thread"),
        event_hook=events.append if events is not None else None,
        **kwargs,
    )


def _random_dag(seed: int, size: int = 25) -> TaskGraph:
    rng = random.Random(seed)
    ids = [f"t{index:02d}" for index in range(size)]
    tasks = []
    for index, task_id in enumerate(ids):
        earlier = ids[:index]
        deps = rng.sample(earlier, k=min(len(earlier), rng.randint(0, 3)))
        tasks.append(Task(task_id, "developer", tuple(deps)))
    order = ids[:]
    rng.shuffle(order)
    return TaskGraph.from_tasks(tasks, order=order)


def _ancestors(graph: TaskGraph, task_id: str) -> set[str]:
    seen: set[str] = set()
    frontier = list(graph.tasks[task_id].dependencies)
    while frontier:
        dep = frontier.pop()
        if dep not in seen:
            seen.add(dep)
            frontier.extend(graph.tasks[dep].dependencies)
    return seen


def test_linear_chain_runs_in_dependency_order(tmp_path: Path) -> None:
    graph = _graph(
        Task("a", "developer"),
        Task("b", "developer", ("a",)),
        Task("c", "developer", ("b",)),
    )
    tracker = Tracker(graph)

    outcome = _scheduler(tmp_path, graph, RecordingBody(tracker), max_parallel=3).run()

    assert outcome.status == "complete"
    assert outcome.succeeded
    assert outcome.completed == ["a", "b", "c"]
    assert tracker.started == ["a", "b", "c"]
    assert tracker.peak == 1
    assert outcome.peak_concurrency == 1


def test_fan_out_respects_concurrency_limit(tmp_path: Path) -> None:
    graph = _graph(
        Task("root", "developer"),
        *(Task(f"leaf{index}", "developer", ("root",)) for index in range(6)),
    )
    tracker = Tracker(graph)

    outcome = _scheduler(
        tmp_path, graph, RecordingBody(tracker, delay=0.05), max_parallel=2
    ).run()

    assert outcome.status == "complete"
    assert len(outcome.completed) == 7
    assert tracker.peak <= 2
    assert outcome.peak_concurrency == 2
    assert tracker.started[0] == "root"
    assert tracker.violations == []


def test_ready_tasks_are_dispatched_in_hint_order(tmp_path: Path) -> None:
    graph = TaskGraph.from_tasks(
        [Task(name, "developer") for name in ("a", "b", "c", "d")],
        order=["c", "a", "d", "b"],
    )
    tracker = Tracker(graph)

    _scheduler(tmp_path, graph, RecordingBody(tracker), max_parallel=1).run()

    assert tracker.started == ["c", "a", "d", "b"]


def test_failed_dependency_is_reported_as_blocked(tmp_path: Path) -> None:
    graph = _graph(
        Task("a", "developer"),
        Task("b", "developer", ("a",)),
        Task("c", "developer", ("b",)),
        Task("d", "developer"),
    )
    tracker = Tracker(graph)

    outcome = _scheduler(tmp_path, graph, RecordingBody(tracker, fail={"a"})).run()

    assert outcome.status == "blocked"
    assert outcome.failed == ["a"]
    assert outcome.completed == ["d"]
    assert outcome.blocked == {"b": ["a"], "c": ["a"]}
    assert outcome.deadlocked == {}
    assert tracker.runs["a"] == 1
    assert "b" not in tracker.runs


def test_all_resolved_with_failures_is_failed_status(tmp_path: Path) -> None:
    graph = _graph(Task("a", "developer"), Task("b", "developer"))
    tracker = Tracker(graph)

    outcome = _scheduler(tmp_path, graph, RecordingBody(tracker, fail={"b"})).run()

    assert outcome.status == "failed"
    assert outcome.completed == ["a"]
    assert outcome.failed == ["b"]
    assert outcome.stuck == []


def test_cycle_is_detected_as_deadlock(tmp_path: Path) -> None:
    graph = _graph(
        Task("a", "developer", ("b",)),
        Task("b", "developer", ("a",)),
        Task("c", "developer"),
    )
    tracker = Tracker(graph)
    events: list[dict[str, Any]] = []

    outcome = _scheduler(tmp_path, graph, RecordingBody(tracker), events=events).run()

    assert outcome.status == "deadlock"
    assert outcome.completed == ["c"]
    assert set(outcome.deadlocked) == {"a", "b"}
    assert "dependency cycle" in outcome.deadlocked["a"]
    assert any(event["event"] == "deadlock" for event in events)
    assert any(line.startswith("Deadlocked: a") for line in outcome.summary_lines())


def test_strict_run_raises_deadlock_error(tmp_path: Path) -> None:
    graph = _graph(Task("a", "developer", ("ghost",)))
    tracker = Tracker(graph)

    with pytest.raises(DeadlockError) as excinfo:
        _scheduler(tmp_path, graph, RecordingBody(tracker)).run(strict=True)

    assert excinfo.value.outcome.deadlocked == {"a": "missing dependency: ghost"}
    assert tracker.runs == Counter()


def test_empty_graph_completes_immediately(tmp_path: Path) -> None:
    graph = TaskGraph.from_tasks([])
    outcome = _scheduler(tmp_path, graph, RecordingBody(Tracker(graph))).run()

    assert outcome.status == "complete"
    assert outcome.total == 0


@pytest.mark.parametrize("seed", range(6))
def test_random_dags_complete_with_ordering_and_bounds(tmp_path: Path, seed: int) -> None:
    graph = _random_dag(seed)
    tracker = Tracker(graph)
    events: list[dict[str, Any]] = []

    outcome = _scheduler(
        tmp_path, graph, RecordingBody(tracker, delay=0.005), max_parallel=3, events=events
    ).run()

    assert outcome.status == "complete"
    assert sorted(outcome.completed) == sorted(graph.task_ids)
    assert tracker.violations == []
    assert set(tracker.runs.values()) == {1}
    assert tracker.peak <= 3
    dispatched = Counter(
        event["task_id"] for event in events if event["event"] == "task_dispatched"
    )
    assert dispatched == Counter({task_id: 1 for task_id in graph.task_ids})
    assert max(event["active"] for event in events if event["event"] == "task_dispatched") <= 3


@pytest.mark.parametrize("seed", range(4))
def test_random_dags_with_failures_block_only_descendants(tmp_path: Path, seed: int) -> None:
    graph = _random_dag(seed)
    failing = {task_id for task_id in graph.order[:3] if not graph.tasks[task_id].dependencies}
    failing = failing or {"t00"}
    tracker = Tracker(graph)

    outcome = _scheduler(
        tmp_path, graph, RecordingBody(tracker, fail=failing, delay=0.002), max_parallel=4
    ).run()

    assert set(outcome.failed) == failing
    assert outcome.deadlocked == {}
    for task_id in graph.task_ids:
        doomed = bool(_ancestors(graph, task_id) & failing)
        if task_id in failing:
            continue
        if doomed:
            assert task_id in outcome.blocked
            assert set(outcome.blocked[task_id]) <= failing
        else:
            assert task_id in outcome.completed
    assert tracker.violations == []


def test_unknown_role_is_dispatched_and_fails(tmp_path: Path) -> None:
    graph = _graph(Task("a", "wizard"), Task("b", "developer", ("a",)))
    scheduler = _scheduler(tmp_path, graph, RecordingBody(Tracker(graph)))

    outcome = scheduler.run()

    assert outcome.failed == ["a"]
    assert outcome.blocked == {"b": ["a"]}
    assert "Unknown agent type: wizard" in scheduler.results["a"].error


def test_worker_that_dies_without_result_is_failed(tmp_path: Path) -> None:
    graph = _graph(Task("a", "developer"))
    events: list[dict[str, Any]] = []
    scheduler = _scheduler(tmp_path, graph, ExitingBody(), events=events)

    outcome = scheduler.run()

    assert outcome.failed == ["a"]
    assert "without a result" in scheduler.results["a"].error
    assert [event["event"] for event in events].count("worker_crashed") == 1


def test_stray_results_are_discarded(tmp_path: Path) -> None:
    graph = _graph(Task("a", "developer"))
    layout = _layout(tmp_path)
    ResultChannel(layout.results_dir).write(
        JobResult(task_id="ghost", agent_id="x", status=SUCCESS, duration=0.0)
    )
    events: list[dict[str, Any]] = []
    scheduler = Scheduler(
        graph,
        {"developer": RecordingBody(Tracker(graph))},
        layout,
        poll_interval=0.01,
        worker_mode="thread",
        event_hook=events.append,
    )

    outcome = scheduler.run()

    assert outcome.status == "complete"
    assert {"event": "stray_result", "task_id": "ghost"} in events
    assert ResultChannel(layout.results_dir).result_ids() == []


def test_state_snapshot_is_persisted(tmp_path: Path) -> None:
    graph = _graph(Task("a", "developer"), Task("b", "developer", ("a",)))
    layout = _layout(tmp_path)
    store = StateStore(layout.state_dir)
    scheduler = Scheduler(
        graph,
        {"developer": RecordingBody(Tracker(graph))},
        layout,
        poll_interval=0.01,
        worker_mode="thread",
        store=store,
    )

    scheduler.run()

    snapshot = store.get_json("queue")
    assert snapshot["status"] == "complete"
    assert snapshot["queue"] == []
    assert snapshot["completed"] == ["a", "b"]
    assert snapshot["active_jobs"] == {}
    # initial + 2 dispatches + 2 harvests + final
    assert store.get_envelope("queue")["revision"] == 6


def test_task_artifacts_are_recorded_in_execution_state(tmp_path: Path) -> None:
    graph = _graph(
        Task(
            "arch_001",
            "architect",
            inputs=("specification",),
            outputs=("architecture_document",),
        ),
        Task("impl_001", "developer", ("arch_001",), outputs=("project_structure",)),
    )
    layout = _layout(tmp_path)
    store = StateStore(layout.state_dir)
    store.set_json("execution", {"session_id": layout.session_id})
    events: list[dict[str, Any]] = []
    tracker = Tracker(graph)
    scheduler = Scheduler(
        graph,
        {
            "architect": RecordingBody(tracker),
            "developer": RecordingBody(tracker, fail={"impl_001"}),
        },
        layout,
        poll_interval=0.01,
        worker_mode="thread",
        store=store,
        event_hook=events.append,
    )

    scheduler.run()

    execution = store.get_json("execution")
    assert execution["session_id"] == layout.session_id
    artifacts = execution["artifacts"]
    assert artifacts["arch_001"]["inputs"] == ["specification"]
    assert artifacts["arch_001"]["outputs"] == ["architecture_document"]
    assert artifacts["arch_001"]["result"] == "SUCCESS"
    assert artifacts["impl_001"]["outputs"] == ["project_structure"]
    assert artifacts["impl_001"]["result"] == "FAILED"
    assert artifacts["impl_001"]["created_at"]

    completed = next(event for event in events if event["event"] == "task_completed")
    assert completed["outputs"] == ["architecture_document"]
    failed = next(event for event in events if event["event"] == "task_failed")
    assert failed["outputs"] == ["project_structure"]


@pytest.mark.skipif(sys.platform == "win32", reason="needs POSIX signals")
@pytest.mark.parametrize("signum", [signal.SIGTERM, signal.SIGINT])
def test_signal_terminates_in_flight_process_workers(tmp_path: Path, signum: int) -> None:
    graph = _graph(Task("a", "developer"), Task("b", "developer", ("a",)))
    delivered: list[int] = []

    def _hook(event: dict[str, Any]) -> None:
        if event["event"] == "task_dispatched" and not delivered:
            delivered.append(signum)
            os.kill(os.getpid(), signum)

    scheduler = Scheduler(
        graph,
        {
            "developer": CommandBody(
                [sys.executable, "-c", "import time; time.sleep(10)"], role="developer"
            )
        },
        _layout(tmp_path),
        poll_interval=0.01,
        worker_mode="process",
        on_interrupt="terminate",
        event_hook=_hook,
    )

    handlers = (signal.getsignal(signal.SIGINT), signal.getsignal(signal.SIGTERM))
    started = time.monotonic()
    outcome = scheduler.run()

    assert time.monotonic() - started < 5
    assert delivered == [signum]
    assert outcome.status == "interrupted"
    assert outcome.failed == ["a"]
    assert scheduler.results["a"].error == "terminated"
    assert outcome.pending == ["b"]
    assert (signal.getsignal(signal.SIGINT), signal.getsignal(signal.SIGTERM)) == handlers


def test_stop_request_waits_for_running_thread_workers(tmp_path: Path) -> None:
    graph = _graph(Task("a", "developer"), Task("b", "developer", ("a",)))
    tracker = Tracker(graph)
    holder: dict[str, Scheduler] = {}

    def _hook(event: dict[str, Any]) -> None:
        if event["event"] == "task_dispatched":
            holder["scheduler"].request_stop("test")

    scheduler = Scheduler(
        graph,
        {"developer": RecordingBody(tracker, delay=0.1)},
        _layout(tmp_path),
        poll_interval=0.01,
        worker_mode="thread",
        event_hook=_hook,
    )
    holder["scheduler"] = scheduler

    outcome = scheduler.run()

    assert outcome.status == "interrupted"
    assert outcome.completed == ["a"]
    assert outcome.pending == ["b"]
    assert len(scheduler.registry) == 0
    assert "b" not in tracker.runs


def test_stop_request_terminates_process_workers(tmp_path: Path) -> None:
    graph = _graph(Task("a", "developer"), Task("b", "developer", ("a",)))
    holder: dict[str, Scheduler] = {}

    def _hook(event: dict[str, Any]) -> None:
        if event["event"] == "task_dispatched":
            holder["scheduler"].request_stop("test")

    body = CommandBody([sys.executable, "-c", "import time; time.sleep(10)"], role="developer")
    scheduler = Scheduler(
        graph,
        {"developer": body},
        _layout(tmp_path),
        poll_interval=0.01,
        worker_mode="process",
        on_interrupt="terminate",
        event_hook=_hook,
    )
    holder["scheduler"] = scheduler

    started = time.monotonic()
    outcome = scheduler.run()

    assert time.monotonic() - started < 8
    assert outcome.status == "interrupted"
    assert outcome.failed == ["a"]
    assert scheduler.results["a"].error == "terminated"
    assert outcome.pending == ["b"]


def test_process_workers_run_template_bodies(tmp_path: Path) -> None:
    graph = _graph(
        Task("arch_001", "architect"),
        Task("impl_001", "developer", ("arch_001",)),
        Task("test_001", "tester", ("arch_001",)),
    )
    layout = _layout(tmp_path)
    scheduler = Scheduler(
        graph,
        {role: TemplateBody(role) for role in ("architect", "developer", "tester")},
        layout,
        max_parallel=2,
        poll_interval=0.02,
        worker_mode="process",
    )

    outcome = scheduler.run()

    assert outcome.status == "complete"
    assert (layout.artifacts_dir / "arch_001_output.md").is_file()
    assert (layout.artifacts_dir / "code" / "impl_001_implementation.md").is_file()
    assert (layout.artifacts_dir / "tests" / "test_001_tests.md").is_file()
    assert all(result.pid for result in scheduler.results.values())


def test_process_worker_crash_is_harvested_with_exit_code(tmp_path: Path) -> None:
    graph = _graph(Task("a", "developer"))
    kill_parent = "import os, signal; os.kill(os.getppid(), signal.SIGKILL)"
    body = CommandBody([sys.executable, "-c", kill_parent], role="developer")
    scheduler = _scheduler(tmp_path, graph, body, worker_mode="process")

    outcome = scheduler.run()

    assert outcome.failed == ["a"]
    assert "exited with code -9" in scheduler.results["a"].error


def test_invalid_settings_are_rejected(tmp_path: Path) -> None:
    graph = _graph(Task("a", "developer"))
    body = RecordingBody(Tracker(graph))

    with pytest.raises(ValueError):
        _scheduler(tmp_path, graph, body, max_parallel=0)
    with pytest.raises(ValueError):
        _scheduler(tmp_path, graph, body, on_interrupt="ignore")


def test_outcome_summary_lines() -> None:
    outcome = RunOutcome(
        status="blocked",
        total=4,
        completed=["a", "b"],
        failed=["c"],
        pending=["d"],
        blocked={"d": ["c"]},
        duration_seconds=1.5,
        peak_concurrency=2,
    )

    lines = outcome.summary_lines()
    assert "Success rate: 50.0%" in lines
    assert "Failed tasks: c" in lines
    assert "Blocked: d (failed dependency: c)" in lines
    assert outcome.stuck == ["d"]
