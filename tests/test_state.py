"""
Tests for the state store, project context and fail-open guards
"""

import json

import pytest

from threadwork.core.context import NO_VERSION, GitVersionProvider, ProjectConfig, ProjectContext
from threadwork.core.errors import ProjectNotInitializedError, guard, guard_async
from threadwork.core.state import PROJECT_FILE, SCHEMA_VERSION, RALPH_STATE_FILE, StateStore
from threadwork.ralph.models import RetryState


class TestStateStore:
    """Tests for versioned JSON records"""

    @pytest.fixture
    def store(self, tmp_path):
        return StateStore(tmp_path / "state")

    def test_missing_record_reads_defaults(self, store):
        assert store.read(RALPH_STATE_FILE, RetryState).retries == 0
        assert store.read_raw(RALPH_STATE_FILE) is None

    def test_write_stamps_version_and_time(self, store):
        store.write(RALPH_STATE_FILE, RetryState(retries=2, last_work_unit_id="t1"))

        data = json.loads(store.path(RALPH_STATE_FILE).read_text())
        assert data["schema_version"] == SCHEMA_VERSION
        assert data["updated_at"]
        assert data["retries"] == 2
        assert store.read(RALPH_STATE_FILE, RetryState).last_work_unit_id == "t1"

    def test_corrupt_record_reads_defaults(self, store):
        store.state_dir.mkdir(parents=True)
        store.path(RALPH_STATE_FILE).write_text("{{{", encoding="utf-8")

        assert store.read(RALPH_STATE_FILE, RetryState).retries == 0
        assert store.read_raw(RALPH_STATE_FILE) == {}

    def test_non_object_record(self, store):
        store.state_dir.mkdir(parents=True)
        store.path(RALPH_STATE_FILE).write_text("[1, 2]", encoding="utf-8")

        assert store.read_raw(RALPH_STATE_FILE) == {}

    def test_write_raw_leaves_no_temp_files(self, store):
        store.write_raw("custom.json", {"a": 1})

        assert [p.name for p in store.state_dir.iterdir()] == ["custom.json"]
        assert store.read_raw("custom.json")["a"] == 1


class TestProjectContext:
    """Tests for the explicit project handle"""

    def test_paths(self, context, tmp_path):
        assert context.root == tmp_path.resolve()
        assert context.state_dir == tmp_path.resolve() / ".threadwork" / "state"
        assert context.hook_log_path.name == "hook-log.json"

    def test_read_project_requires_init(self, context):
        assert context.is_initialized() is False
        with pytest.raises(ProjectNotInitializedError):
            context.read_project()
        assert context.load_project().project_name == "Unknown Project"

    def test_camel_case_project(self, initialized):
        project = initialized.read_project()

        assert project.project_name == "Acme API"
        assert project.active_task == "Add login endpoint"
        assert project.skill_tier == "advanced"

    def test_snake_case_project(self, context, write_state):
        write_state(PROJECT_FILE, {"project_name": "Demo", "session_budget": 1000})
        assert context.read_project().session_budget == 1000

    def test_project_config_defaults(self):
        config = ProjectConfig()
        assert config.current_phase is None
        assert config.session_budget is None

    def test_create_without_git(self, tmp_path, settings, runner):
        context = ProjectContext.create(root=tmp_path, settings=settings, runner=runner)
        assert context.version_provider.version == NO_VERSION

    @pytest.mark.asyncio
    async def test_git_version(self, runner):
        runner.script("git rev-parse", stdout="0123abcd\n")
        assert await GitVersionProvider(runner).current_version() == "0123abcd"

    @pytest.mark.asyncio
    async def test_git_failure_is_sentinel(self, runner):
        runner.script("git rev-parse", exit_code=128, stderr="fatal: not a git repository")
        assert await GitVersionProvider(runner).current_version() == NO_VERSION


class TestGuards:
    """Tests for the fail-open wrappers"""

    def test_returns_result(self):
        assert guard(lambda: 42, fallback=0) == 42

    def test_fallback_value(self):
        assert guard(lambda: 1 / 0, fallback="safe") == "safe"

    def test_fallback_factory(self):
        assert guard(lambda: {}["missing"], fallback=list) == []

    @pytest.mark.asyncio
    async def test_async_fallback(self):
        async def explode():
            raise RuntimeError("boom")

        assert await guard_async(explode, fallback=lambda: "allow") == "allow"
