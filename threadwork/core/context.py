"""
Project Context

An explicit handle for "the current project": root path, state directory,
settings and the external collaborators (process execution, content
version). Built once per invocation and passed into every ledger, gate and
retry operation.
"""

from pathlib import Path
from typing import Optional, Protocol, Union

import structlog
from pydantic import AliasChoices, Field

from threadwork.config import Settings, settings as default_settings
from threadwork.core.errors import ProjectNotInitializedError
from threadwork.core.process import CommandRunner
from threadwork.core.state import PROJECT_FILE, StateRecord, StateStore

logger = structlog.get_logger()

NO_VERSION = "no-version"


class ProjectConfig(StateRecord):
    """Top-level project state (project.json)"""
    project_name: str = Field(
        default="Unknown Project",
        validation_alias=AliasChoices("project_name", "projectName"),
    )
    current_phase: Optional[Union[int, str]] = Field(
        default=None,
        validation_alias=AliasChoices("current_phase", "currentPhase"),
    )
    current_milestone: Optional[Union[int, str]] = Field(
        default=None,
        validation_alias=AliasChoices("current_milestone", "currentMilestone"),
    )
    active_task: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("active_task", "activeTask"),
    )
    skill_tier: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("skill_tier", "skillTier"),
    )
    session_budget: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("session_budget", "sessionBudget"),
    )


class VersionProvider(Protocol):
    async def current_version(self) -> str: ...


class StaticVersionProvider:
    """Always reports the same version string"""

    def __init__(self, version: str = NO_VERSION):
        self.version = version

    async def current_version(self) -> str:
        return self.version


class GitVersionProvider:
    """Reports the HEAD commit of the project repository"""

    def __init__(self, runner: CommandRunner):
        self.runner = runner

    async def current_version(self) -> str:
        result = await self.runner.run("git rev-parse HEAD", timeout=30)
        sha = result.stdout.strip()
        if not result.passed or not sha:
            return NO_VERSION
        return sha


class ProjectContext:
    """Paths, settings and collaborators for one project"""

    def __init__(
        self,
        root: Path,
        settings: Settings,
        runner: CommandRunner,
        version_provider: VersionProvider,
    ):
        self.root = Path(root).resolve()
        self.settings = settings
        self.state_dir = self.root / settings.state_dir
        self.store = StateStore(self.state_dir)
        self.runner = runner
        self.version_provider = version_provider

    @classmethod
    def create(
        cls,
        root: Optional[Union[str, Path]] = None,
        settings: Optional[Settings] = None,
        runner: Optional[CommandRunner] = None,
        version_provider: Optional[VersionProvider] = None,
    ) -> "ProjectContext":
        """Build a context, probing optional capabilities once"""
        root_path = Path(root) if root is not None else Path.cwd()
        settings = settings or default_settings
        runner = runner or CommandRunner(
            working_directory=str(root_path),
            timeout=settings.command_timeout,
        )

        if version_provider is None:
            if runner.which("git"):
                version_provider = GitVersionProvider(runner)
            else:
                logger.info("git not available, gate cache keyed by sentinel version")
                version_provider = StaticVersionProvider()

        return cls(root_path, settings, runner, version_provider)

    @property
    def hook_log_path(self) -> Path:
        return self.state_dir / self.settings.hook_log_file

    def is_initialized(self) -> bool:
        return self.store.exists(PROJECT_FILE)

    def load_project(self) -> ProjectConfig:
        """Project config, or defaults when not initialized"""
        return self.store.read(PROJECT_FILE, ProjectConfig)

    def read_project(self) -> ProjectConfig:
        """Project config; raises if the project has not been initialized"""
        if not self.is_initialized():
            raise ProjectNotInitializedError(
                f"Cannot find {self.store.path(PROJECT_FILE)}, project is not initialized"
            )
        return self.load_project()
