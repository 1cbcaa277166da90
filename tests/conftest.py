"""
Shared fixtures: a temporary project with scripted process execution.
"""

import json
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import pytest

from threadwork.config import Settings
from threadwork.core.context import ProjectContext, StaticVersionProvider
from threadwork.core.process import CommandResult, CommandRunner
from threadwork.core.state import PROJECT_FILE, QUALITY_CONFIG_FILE


class FakeCommandRunner(CommandRunner):
    """Command runner with scripted results and a fixed set of installed binaries"""

    def __init__(self, working_directory: str = ".", available: Iterable[str] = ()):
        super().__init__(working_directory=working_directory, timeout=5)
        self.available = set(available)
        self.scripts: Dict[str, CommandResult] = {}
        self.calls: List[str] = []

    def which(self, binary: str) -> bool:
        return binary in self.available

    def script(self, prefix: str, exit_code: int = 0, stdout: str = "", stderr: str = "") -> None:
        """Result for every command starting with ``prefix``"""
        self.scripts[prefix] = CommandResult(
            command=prefix,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
        )

    async def run(self, command: str, timeout: Optional[int] = None) -> CommandResult:
        self.calls.append(command)
        for prefix, result in self.scripts.items():
            if command.startswith(prefix):
                return result.model_copy(update={"command": command})
        return CommandResult(command=command, exit_code=0)


@pytest.fixture
def settings():
    return Settings(_env_file=None, env="test")


@pytest.fixture
def runner(tmp_path):
    return FakeCommandRunner(working_directory=str(tmp_path))


@pytest.fixture
def context(tmp_path, settings, runner):
    """Project context rooted in a temp directory"""
    return ProjectContext(
        root=tmp_path,
        settings=settings,
        runner=runner,
        version_provider=StaticVersionProvider("abc123"),
    )


def _write_state(context: ProjectContext, filename: str, data) -> Path:
    path = context.state_dir / filename
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(data if isinstance(data, str) else json.dumps(data), encoding="utf-8")
    return path


@pytest.fixture
def initialized(context):
    """Context with a project.json written by the setup tooling"""
    _write_state(context, PROJECT_FILE, {
        "projectName": "Acme API",
        "currentPhase": 2,
        "currentMilestone": 1,
        "activeTask": "Add login endpoint",
        "skillTier": "advanced",
    })
    return context


@pytest.fixture
def python_project(tmp_path, context, runner):
    """Python project with every Python gate tool installed"""
    (tmp_path / "pyproject.toml").write_text("[project]\nname = 'demo'\n", encoding="utf-8")
    runner.available.update({"mypy", "ruff", "pytest", "pip-audit"})
    return context


@pytest.fixture
def quality_config(context):
    def _write(data: dict) -> None:
        _write_state(context, QUALITY_CONFIG_FILE, data)
    return _write


@pytest.fixture
def write_state(context):
    """Write a raw JSON state file, bypassing the store"""
    def _write(filename: str, data) -> Path:
        return _write_state(context, filename, data)
    return _write
