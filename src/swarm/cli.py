from __future__ import annotations

import json
import logging
import shutil
from pathlib import Path
from typing import Any

import click
from click.core import ParameterSource

from swarm.agents import AGENTS
from swarm.backends import BACKENDS
from swarm.bodies import CommandBody, TaskBody, TemplateBody
from swarm.bodies.template import TEMPLATES
from swarm.config import (
    WORKER_MODES,
    SwarmConfig,
    load_agents_config,
    load_config,
    save_config,
)
from swarm.errors import ConfigError, SwarmError
from swarm.graph import TaskGraph, load_task_graph
from swarm.planning import static_task_graph, static_task_plan
from swarm.scheduler import COMPLETE, INTERRUPTED, RunOutcome, Scheduler
from swarm.session import (
    SessionLayout,
    configure_logging,
    create_session,
    latest_session,
    open_session,
    reset_logging,
)
from swarm.state import ExecutionQueue, StateStore

logger = logging.getLogger(__name__)

EXIT_INTERRUPTED = 130


def _resolve_path(repo_root: Path, value: str) -> Path:
    path = Path(value)
    if not path.is_absolute():
        path = repo_root / path
    return path.resolve()


def _role_settings(agents_payload: dict[str, Any], role: str) -> dict[str, Any]:
    for key in ("agent_types", "agents"):
        section = agents_payload.get(key)
        if isinstance(section, dict) and isinstance(section.get(role), dict):
            return section[role]
    return {}


def _build_bodies(
    config: SwarmConfig,
    repo_root: Path,
    agents_payload: dict[str, Any],
) -> dict[str, TaskBody]:
    kind = config.backend.kind
    timeout = float(config.backend.timeout_seconds) or None
    bodies: dict[str, TaskBody] = {}

    if kind in BACKENDS:
        backend = BACKENDS[kind](binary=config.backend.binary, working_directory=repo_root)
        for role in config.agents.roles:
            agent_cls = AGENTS.get(role)
            if agent_cls is None:
                logger.warning("No %s agent for role %s", kind, role)
                continue
            prompt = _role_settings(agents_payload, role).get("system_prompt")
            bodies[role] = agent_cls(
                backend,
                model=config.agents.model or None,
                timeout_seconds=timeout,
                system_prompt=prompt if isinstance(prompt, str) else None,
            )
        return bodies

    scripts_dir = _resolve_path(repo_root, config.backend.scripts_dir)
    for role in config.agents.roles:
        script = scripts_dir / f"{role}.sh"
        if kind == "command" and script.is_file():
            bodies[role] = CommandBody.for_script(script, role=role, timeout_seconds=timeout)
        elif role in TEMPLATES:
            if kind == "command":
                logger.warning("No script at %s; using template output for %s", script, role)
            bodies[role] = TemplateBody(role)
        else:
            logger.warning("No body available for role %s", role)
    return bodies


def _load_graph(plan_path: Path | None, spec_text: str, session_id: str) -> TaskGraph:
    if plan_path is not None:
        return load_task_graph(plan_path)
    return static_task_graph(spec_text, session_id=session_id)


def _echo_summary(outcome: RunOutcome, layout: SessionLayout, parallel: bool) -> None:
    click.echo("")
    click.echo("=== Final Execution Summary ===")
    click.echo(f"Execution mode: {'parallel' if parallel else 'sequential'}")
    for line in outcome.summary_lines():
        click.echo(line)
    artifacts = [path for path in layout.artifacts_dir.rglob("*") if path.is_file()]
    click.echo(f"Generated files: {len(artifacts)}")
    click.echo(f"Session ID: {layout.session_id}")
    click.echo(f"Session workspace: {layout.root}")


@click.group()
def cli() -> None:
    """Agent swarm CLI."""


@cli.command("init")
@click.option(
    "--backend",
    "backend_kind",
    type=click.Choice(["template", "command", "claude", "codex"]),
    default=None,
)
@click.option("--max-parallel", type=int, default=None)
@click.option("--config", "config_value", default="swarm.toml", show_default=True)
def init_command(backend_kind: str | None, max_parallel: int | None, config_value: str) -> None:
    repo_root = Path.cwd().resolve()
    config_path = _resolve_path(repo_root, config_value)
    try:
        config = load_config(config_path)
        if backend_kind:
            config.backend.kind = backend_kind  # type: ignore[assignment]
        if max_parallel is not None:
            config.execution.max_parallel_agents = max_parallel
        config.validate()
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    save_config(config_path, config)
    (repo_root / config.session.workspace_dir).mkdir(parents=True, exist_ok=True)

    click.echo(f"Initialized agent swarm in {repo_root}")
    click.echo(f"Config: {config_path}")
    click.echo(f"Backend: {config.backend.kind}")
    click.echo(f"Max parallel agents: {config.execution.max_parallel_agents}")


@cli.command("plan")
@click.argument("spec_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--output", type=click.Path(dir_okay=False, path_type=Path), default=None)
def plan_command(spec_file: Path, output: Path | None) -> None:
    plan = static_task_plan(spec_file.read_text(encoding="utf-8"))
    rendered = json.dumps(plan, ensure_ascii=False, indent=2)
    if output is None:
        click.echo(rendered)
        return
    output.write_text(rendered + "\n", encoding="utf-8")
    click.echo(f"Wrote {len(plan['execution_order'])} tasks to {output}")


@cli.command("run")
@click.argument("agents_config", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("spec_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--parallel/--sequential", default=False, show_default=True)
@click.option(
    "--max-parallel",
    type=int,
    default=None,
    help="Concurrency limit; implies --parallel unless --sequential is given.",
)
@click.option(
    "--plan",
    "plan_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
)
@click.option("--worker-mode", type=click.Choice(list(WORKER_MODES)), default=None)
@click.option("--config", "config_value", default="swarm.toml", show_default=True)
@click.pass_context
def run_command(
    ctx: click.Context,
    agents_config: Path,
    spec_file: Path,
    parallel: bool,
    max_parallel: int | None,
    plan_file: Path | None,
    worker_mode: str | None,
    config_value: str,
) -> None:
    repo_root = Path.cwd().resolve()
    if max_parallel is not None and not parallel:
        if ctx.get_parameter_source("parallel") is ParameterSource.DEFAULT:
            parallel = True
        else:
            click.echo("Warning: --max-parallel is ignored with --sequential", err=True)
    try:
        config = load_config(_resolve_path(repo_root, config_value))
        agents_payload = load_agents_config(agents_config)
        config.apply_agents_config(agents_payload)
        if max_parallel is not None:
            config.execution.max_parallel_agents = max_parallel
        if worker_mode:
            config.execution.worker_mode = worker_mode  # type: ignore[assignment]
        config.validate()
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    limit = config.execution.max_parallel_agents if parallel else 1

    layout = create_session(
        _resolve_path(repo_root, config.session.workspace_dir),
        prefix=config.session.session_prefix,
    )
    handlers = configure_logging(
        layout, level=config.logging.level, console=config.logging.console
    )
    try:
        spec_text = spec_file.read_text(encoding="utf-8")
        shutil.copyfile(spec_file, layout.artifacts_dir / "specification.md")
        graph = _load_graph(plan_file, spec_text, layout.session_id)
        layout.plan_file.write_text(
            json.dumps(graph.to_plan(), ensure_ascii=False, indent=2), encoding="utf-8"
        )

        store = StateStore(layout.state_dir)
        store.set_json(
            "execution",
            {
                "session_id": layout.session_id,
                "mode": "parallel" if parallel else "sequential",
                "max_parallel": limit,
                "worker_mode": config.execution.worker_mode,
                "backend": config.backend.kind,
                "spec_file": str(spec_file.resolve()),
            },
        )
        logger.info("Session %s: %d tasks planned", layout.session_id, len(graph))

        scheduler = Scheduler(
            graph,
            _build_bodies(config, repo_root, agents_payload),
            layout,
            max_parallel=limit,
            poll_interval=config.execution.poll_interval_seconds,
            worker_mode=config.execution.worker_mode,
            on_interrupt=config.execution.on_interrupt,
            start_method=config.execution.start_method,
            store=store,
            event_hook=store.record_event,
        )
        outcome = scheduler.run()
        store.update_json(
            "execution",
            lambda current: {**(current or {}), "outcome": outcome.to_dict()},
            default={},
        )
    except SwarmError as exc:
        raise click.ClickException(str(exc)) from exc
    finally:
        reset_logging(handlers)

    _echo_summary(outcome, layout, parallel)
    if outcome.status == COMPLETE:
        return
    if outcome.status == INTERRUPTED:
        click.echo(f"Partial results available in: {layout.root}", err=True)
        ctx.exit(EXIT_INTERRUPTED)
    if outcome.deadlocked:
        raise click.ClickException(
            "Deadlock: tasks can never run: " + ", ".join(outcome.stuck)
        )
    if outcome.blocked:
        raise click.ClickException(
            "Blocked by failed dependencies: " + ", ".join(outcome.blocked)
        )
    ctx.exit(1)


@cli.command("status")
@click.option("--session", "session_id", default=None)
@click.option("--config", "config_value", default="swarm.toml", show_default=True)
def status_command(session_id: str | None, config_value: str) -> None:
    repo_root = Path.cwd().resolve()
    try:
        config = load_config(_resolve_path(repo_root, config_value))
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    workspace_root = _resolve_path(repo_root, config.session.workspace_dir)

    if session_id:
        try:
            layout = open_session(workspace_root, session_id)
        except FileNotFoundError as exc:
            raise click.ClickException(str(exc)) from exc
    else:
        found = latest_session(workspace_root, prefix=config.session.session_prefix)
        if found is None:
            raise click.ClickException(f"No sessions found in {workspace_root}")
        layout = found

    try:
        graph = load_task_graph(layout.plan_file)
        store = StateStore(layout.state_dir)
        snapshot = store.get_json("queue", default={})
        queue = ExecutionQueue.from_snapshot(graph, snapshot)
        active = snapshot.get("active_jobs", {})
        queue.verify(active=list(active))
        counters = store.get_metrics().get("counters", {})
    except SwarmError as exc:
        raise click.ClickException(str(exc)) from exc

    payload = {
        "session_id": layout.session_id,
        "status": snapshot.get("status", "unknown"),
        **queue.counts(),
        "active_jobs": active,
        "failed_tasks": list(queue.failed),
        "events": counters,
    }
    click.echo(json.dumps(payload, ensure_ascii=False, indent=2))
