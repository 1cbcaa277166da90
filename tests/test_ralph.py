"""
Tests for the Ralph loop

Tests the core components:
- Completion detection
- Data models and hook output mapping
- The retry state machine
"""

import pytest
from pydantic import ValidationError

from threadwork.core.state import RALPH_STATE_FILE
from threadwork.core.tiers import set_tier
from threadwork.ralph.completion import CompletionDetector
from threadwork.ralph.loop import RalphLoop, evaluate_completion
from threadwork.ralph.models import (
    CompletionAction,
    CompletionDecision,
    GateName,
    GateOutcome,
    GateRunResult,
    RetryState,
    WorkUnitContext,
)


def failing_result() -> GateRunResult:
    return GateRunResult(
        passed=False,
        results=[
            GateOutcome.skip(GateName.TYPECHECK, "mypy not installed"),
            GateOutcome.skip(GateName.LINT, "Disabled in quality config"),
            GateOutcome(
                gate=GateName.TESTS,
                passed=False,
                diagnostics=["FAILED tests/test_auth.py::test_login - assert 401 == 200"],
            ),
            GateOutcome(
                gate=GateName.SECURITY,
                passed=False,
                blocking=False,
                diagnostics=["lodash (critical)"],
            ),
        ],
    )


def passing_result() -> GateRunResult:
    return GateRunResult(passed=True, results=[GateOutcome(gate=GateName.TESTS, passed=True)])


class ScriptedGateRunner:
    """Returns queued gate results; the last one repeats"""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    async def run_all(self, skip_cache: bool = False, include_build: bool = False) -> GateRunResult:
        self.calls.append(skip_cache)
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


EXECUTOR = WorkUnitContext(work_unit_id="task-1", agent_type="tw-executor")


class TestCompletionDetector:
    """Tests for coordination-only classification"""

    @pytest.fixture
    def detector(self):
        return CompletionDetector()

    @pytest.mark.parametrize("agent_type,agent_name", [
        ("tw-planner", ""),
        ("researcher", ""),
        ("", "Spec-Writer"),
        ("tw-orchestrator", "lead"),
        ("", "dispatch-2"),
    ])
    def test_coordination_roles(self, detector, agent_type, agent_name):
        unit = WorkUnitContext(agent_type=agent_type, agent_name=agent_name)
        assert detector.is_coordination_only(unit) is True

    def test_code_producing_unit(self, detector):
        assert detector.is_coordination_only(EXECUTOR) is False
        assert detector.is_coordination_only(WorkUnitContext()) is False

    def test_failed_gates_are_blocking_only(self, detector):
        assert detector.failed_gates(failing_result()) == [GateName.TESTS]

    def test_summarize(self, detector):
        summary = detector.summarize(failing_result())

        assert summary["tests"]["passed"] is False
        assert summary["lint"]["skipped"] is True
        assert summary["security"]["blocking"] is False


class TestRalphModels:
    """Tests for Ralph data models"""

    def test_work_unit_from_payload(self):
        unit = WorkUnitContext.from_payload({"subagent_type": "tw-executor", "agent_id": 42})

        assert unit.agent_type == "tw-executor"
        assert unit.work_unit_id == "42"

    def test_work_unit_id_falls_back_to_agent(self):
        assert WorkUnitContext.from_payload({"agent_name": "worker-3"}).work_unit_id == "worker-3"
        assert WorkUnitContext.from_payload({}).work_unit_id is None

    def test_retry_state_rejects_negative(self):
        with pytest.raises(ValidationError):
            RetryState(retries=-1)

    def test_hook_output(self):
        block = CompletionDecision(
            action=CompletionAction.BLOCK,
            message="fix it",
            retry_count=2,
            max_retries=5,
        )
        assert block.to_hook_output() == {
            "action": "block",
            "retry": True,
            "message": "fix it",
            "retryCount": 2,
            "maxRetries": 5,
        }

        escalate = CompletionDecision(action=CompletionAction.ESCALATE, message="help")
        assert escalate.to_hook_output() == {"action": "allow", "escalation": "help"}

        assert CompletionDecision(action=CompletionAction.ALLOW).to_hook_output() == {"action": "allow"}

    def test_skipped_gate_counts_as_passed(self):
        outcome = GateOutcome.skip(GateName.BUILD, "No build script found")
        assert outcome.passed is True
        assert outcome.failed is False


class TestRalphLoop:
    """Tests for the retry state machine"""

    @pytest.mark.asyncio
    async def test_escalates_after_max_retries(self, context):
        loop = RalphLoop(context, gate_runner=ScriptedGateRunner(failing_result()))

        for attempt in range(1, 6):
            decision = await loop.evaluate_completion(EXECUTOR)
            assert decision.action == CompletionAction.BLOCK
            assert decision.retry_count == attempt
            assert decision.max_retries == 5
            assert loop.read_state().retries == attempt

        decision = await loop.evaluate_completion(EXECUTOR)

        assert decision.action == CompletionAction.ESCALATE
        assert decision.failed_gates == [GateName.TESTS]
        assert "Quality gates failed after 5 retries: tests" in decision.message
        assert loop.read_state().retries == 0
        assert decision.to_hook_output()["action"] == "allow"

    @pytest.mark.asyncio
    async def test_pass_resets(self, context):
        gate_runner = ScriptedGateRunner(
            failing_result(), failing_result(), failing_result(), passing_result(), failing_result()
        )
        loop = RalphLoop(context, gate_runner=gate_runner)

        for _ in range(3):
            await loop.evaluate_completion(EXECUTOR)
        assert loop.read_state().retries == 3

        decision = await loop.evaluate_completion(EXECUTOR)
        assert decision.action == CompletionAction.ALLOW
        assert loop.read_state().retries == 0

        decision = await loop.evaluate_completion(EXECUTOR)
        assert decision.retry_count == 1

    @pytest.mark.asyncio
    async def test_coordination_only_skips_gates(self, context):
        gate_runner = ScriptedGateRunner(failing_result())
        loop = RalphLoop(context, gate_runner=gate_runner)
        await loop.evaluate_completion(EXECUTOR)
        await loop.evaluate_completion(EXECUTOR)
        calls = len(gate_runner.calls)

        decision = await loop.evaluate_completion(WorkUnitContext(agent_type="tw-planner"))

        assert decision.action == CompletionAction.ALLOW
        assert len(gate_runner.calls) == calls
        assert loop.read_state().retries == 0

    @pytest.mark.asyncio
    async def test_new_work_unit_restarts_count(self, context):
        loop = RalphLoop(context, gate_runner=ScriptedGateRunner(failing_result()))
        await loop.evaluate_completion(EXECUTOR)
        await loop.evaluate_completion(EXECUTOR)

        other = WorkUnitContext(work_unit_id="task-2", agent_type="tw-executor")
        decision = await loop.evaluate_completion(other)

        assert decision.retry_count == 1
        assert loop.read_state().last_work_unit_id == "task-2"

    @pytest.mark.asyncio
    async def test_gate_fault_fails_open(self, context):
        loop = RalphLoop(context, gate_runner=ScriptedGateRunner(RuntimeError("tool crashed")))

        decision = await loop.evaluate_completion(EXECUTOR)

        assert decision.action == CompletionAction.ALLOW
        assert loop.read_state().retries == 0

    @pytest.mark.asyncio
    async def test_state_machine_fault_fails_open(self, context, monkeypatch):
        loop = RalphLoop(context, gate_runner=ScriptedGateRunner(failing_result()))

        def broken(*args, **kwargs):
            raise KeyError("state")

        monkeypatch.setattr(loop, "transition", broken)

        decision = await loop.evaluate_completion(EXECUTOR)

        assert decision.action == CompletionAction.ALLOW
        assert decision.reason == "Internal error, failing open"

    @pytest.mark.asyncio
    async def test_always_skips_cache(self, context):
        gate_runner = ScriptedGateRunner(passing_result())
        await RalphLoop(context, gate_runner=gate_runner).evaluate_completion(EXECUTOR)

        assert gate_runner.calls == [True]

    @pytest.mark.asyncio
    async def test_block_message_follows_tier(self, initialized):
        set_tier(initialized, "ninja")
        loop = RalphLoop(initialized, gate_runner=ScriptedGateRunner(failing_result()))

        decision = await loop.evaluate_completion(EXECUTOR)

        assert decision.message == "TESTS:\nFAILED tests/test_auth.py::test_login - assert 401 == 200"

    @pytest.mark.asyncio
    async def test_block_message_excludes_non_blocking(self, context):
        loop = RalphLoop(context, gate_runner=ScriptedGateRunner(failing_result()))

        decision = await loop.evaluate_completion(EXECUTOR)

        assert "**tests**" in decision.message
        assert "lodash" not in decision.message

    @pytest.mark.asyncio
    async def test_custom_max_retries(self, context):
        loop = RalphLoop(context, gate_runner=ScriptedGateRunner(failing_result()), max_retries=2)

        actions = [(await loop.evaluate_completion(EXECUTOR)).action for _ in range(3)]

        assert actions == [CompletionAction.BLOCK, CompletionAction.BLOCK, CompletionAction.ESCALATE]

    @pytest.mark.asyncio
    async def test_corrupt_state_starts_idle(self, context, write_state):
        write_state(RALPH_STATE_FILE, {"retries": "many"})
        loop = RalphLoop(context, gate_runner=ScriptedGateRunner(failing_result()))

        decision = await loop.evaluate_completion(EXECUTOR)

        assert decision.retry_count == 1

    def test_sync_entry_point(self, context):
        """An empty project has nothing to check, so completion is allowed"""
        decision = evaluate_completion(context, EXECUTOR)

        assert decision.action == CompletionAction.ALLOW
