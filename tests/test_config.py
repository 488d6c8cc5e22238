import json
import tomllib
from pathlib import Path

import pytest

from swarm import __version__
from swarm.config import (
    SwarmConfig,
    dumps_toml,
    load_agents_config,
    load_config,
    save_config,
)
from swarm.errors import ConfigError


def test_config_roundtrip(tmp_path: Path) -> None:
    config_path = tmp_path / "swarm.toml"
    config = SwarmConfig.default()
    config.session.workspace_dir = "runs"
    config.execution.max_parallel_agents = 5
    config.execution.poll_interval_seconds = 0.25
    config.execution.worker_mode = "thread"
    config.execution.on_interrupt = "wait"
    config.backend.kind = "codex"
    config.backend.binary = "/opt/bin/codex"
    config.agents.model = "test-model"
    config.agents.roles = ["architect", "developer"]
    config.logging.console = False

    save_config(config_path, config)
    loaded = load_config(config_path)

    assert loaded.session.workspace_dir == "runs"
    assert loaded.execution.max_parallel_agents == 5
    assert loaded.execution.poll_interval_seconds == 0.25
    assert loaded.execution.worker_mode == "thread"
    assert loaded.execution.on_interrupt == "wait"
    assert loaded.backend.kind == "codex"
    assert loaded.backend.binary == "/opt/bin/codex"
    assert loaded.agents.model == "test-model"
    assert loaded.agents.roles == ["architect", "developer"]
    assert loaded.logging.console is False


def test_toml_dump_contains_all_sections() -> None:
    rendered = dumps_toml(SwarmConfig.default())

    for section in ("[session]", "[execution]", "[backend]", "[agents]", "[logging]"):
        assert section in rendered
    assert "max_parallel_agents = 3" in rendered
    assert "poll_interval_seconds = 1.0" in rendered
    assert tomllib.loads(rendered)["agents"]["roles"] == [
        "architect",
        "developer",
        "tester",
        "documenter",
    ]


def test_missing_config_file_gives_defaults(tmp_path: Path) -> None:
    config = load_config(tmp_path / "absent.toml")

    assert config == SwarmConfig.default()


@pytest.mark.parametrize(
    "toml_text",
    [
        "[execution]\nmax_parallel_agents = 0\n",
        "[execution]\nmax_parallel_agents = -2\n",
        "[execution]\nworker_mode = \"fiber\"\n",
        "[backend]\nkind = \"carrier-pigeon\"\n",
        "[execution]\nunknown_key = 1\n",
        "[execution\nbroken",
    ],
)
def test_invalid_config_raises(tmp_path: Path, toml_text: str) -> None:
    config_path = tmp_path / "swarm.toml"
    config_path.write_text(toml_text, encoding="utf-8")

    with pytest.raises(ConfigError):
        load_config(config_path)


def test_agents_config_overrides_execution_settings(tmp_path: Path) -> None:
    agents_path = tmp_path / "agents.json"
    agents_path.write_text(
        json.dumps({"execution_settings": {"max_parallel_agents": 6, "poll_interval_seconds": 2}}),
        encoding="utf-8",
    )
    config = SwarmConfig.default()

    config.apply_agents_config(load_agents_config(agents_path))

    assert config.execution.max_parallel_agents == 6
    assert config.execution.poll_interval_seconds == 2.0


def test_agents_config_rejects_non_positive_parallelism() -> None:
    config = SwarmConfig.default()

    with pytest.raises(ConfigError, match="positive integer"):
        config.apply_agents_config({"execution_settings": {"max_parallel_agents": 0}})
    with pytest.raises(ConfigError, match="must be an integer"):
        config.apply_agents_config({"execution_settings": {"max_parallel_agents": "many"}})


def test_load_agents_config_errors(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="not found"):
        load_agents_config(tmp_path / "missing.json")

    broken = tmp_path / "broken.json"
    broken.write_text("{", encoding="utf-8")
    with pytest.raises(ConfigError, match="Invalid JSON"):
        load_agents_config(broken)

    listed = tmp_path / "list.json"
    listed.write_text("[]", encoding="utf-8")
    with pytest.raises(ConfigError, match="JSON object"):
        load_agents_config(listed)


def test_package_version_constant_matches_pyproject() -> None:
    project_root = Path(__file__).resolve().parents[1]
    pyproject = tomllib.loads((project_root / "pyproject.toml").read_text(encoding="utf-8"))

    assert __version__ == pyproject["project"]["version"]
