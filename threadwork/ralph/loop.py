"""
Ralph Loop

The quality-gate retry state machine. Intercepts an agent's attempt to
finish a unit of work, runs the quality gates and decides:

- allow     gates passed, or the unit is coordination-only
- block     gates failed; the agent gets a tier-formatted correction prompt
- escalate  gates kept failing past MAX_RETRIES; a human takes over

States: Idle -> Retrying(1..MAX_RETRIES) -> Escalated -> Idle.

Infrastructure faults always resolve to allow.
"""

import asyncio
from typing import List, Optional

import structlog

from threadwork.core.context import ProjectContext
from threadwork.core.errors import guard_async
from threadwork.core.state import RALPH_STATE_FILE, utcnow
from threadwork.core.tiers import Tier, WarningLevel, format_correction, format_warning, get_tier
from threadwork.ralph.completion import CompletionDetector
from threadwork.ralph.gates import GateRunner
from threadwork.ralph.models import (
    CompletionAction,
    CompletionDecision,
    GateName,
    GateRunResult,
    RetryState,
    WorkUnitContext,
)

logger = structlog.get_logger()


class RalphLoop:
    """
    Retry state machine for completion attempts.

    The retry counter is a single persisted record per project
    (ralph-state.json), read-modify-write by the invoking process.
    """

    def __init__(
        self,
        context: ProjectContext,
        gate_runner: Optional[GateRunner] = None,
        detector: Optional[CompletionDetector] = None,
        max_retries: Optional[int] = None,
    ):
        self.context = context
        self.gate_runner = gate_runner or GateRunner(context)
        self.detector = detector or CompletionDetector()
        self.max_retries = max_retries if max_retries is not None else context.settings.max_retries

    # State

    def read_state(self) -> RetryState:
        return self.context.store.read(RALPH_STATE_FILE, RetryState)

    def reset(self) -> None:
        """Return to Idle"""
        self.context.store.write(RALPH_STATE_FILE, RetryState())

    def _save(self, retries: int, work_unit_id: Optional[str]) -> None:
        self.context.store.write(
            RALPH_STATE_FILE,
            RetryState(retries=retries, last_work_unit_id=work_unit_id, last_updated=utcnow()),
        )

    # Evaluation

    async def evaluate_completion(self, work_unit: WorkUnitContext) -> CompletionDecision:
        """
        Decide whether a work unit may complete.

        Never raises: any fault inside gate execution or the state machine
        itself resolves to allow.
        """
        return await guard_async(
            lambda: self._evaluate(work_unit),
            fallback=lambda: CompletionDecision(
                action=CompletionAction.ALLOW,
                reason="Internal error, failing open",
            ),
            event="Ralph loop failed, allowing completion",
            work_unit_id=work_unit.work_unit_id,
        )

    async def _evaluate(self, work_unit: WorkUnitContext) -> CompletionDecision:
        if self.detector.is_coordination_only(work_unit):
            self.reset()
            logger.info(
                "Coordination-only work unit, skipping gates",
                agent_type=work_unit.agent_type,
                agent_name=work_unit.agent_name,
            )
            return CompletionDecision(action=CompletionAction.ALLOW, reason="Coordination-only work unit")

        tier = get_tier(self.context)

        # Uncommitted edits do not change the content version, so never trust the cache here
        result = await guard_async(
            lambda: self.gate_runner.run_all(skip_cache=True),
            fallback=None,
            event="Quality gate run failed, allowing completion",
        )
        if result is None:
            return CompletionDecision(action=CompletionAction.ALLOW, reason="Gate execution error")

        return self.transition(work_unit, result, tier)

    def transition(
        self,
        work_unit: WorkUnitContext,
        result: GateRunResult,
        tier: Tier = Tier.ADVANCED,
    ) -> CompletionDecision:
        """Apply one gate result to the persisted retry state"""
        if result.passed:
            self.reset()
            logger.info("Quality gates passed", tier=tier.value, work_unit_id=work_unit.work_unit_id)
            return CompletionDecision(action=CompletionAction.ALLOW, reason="Quality gates passed")

        state = self.read_state()
        previous = state.retries
        if (
            state.last_work_unit_id
            and work_unit.work_unit_id
            and state.last_work_unit_id != work_unit.work_unit_id
        ):
            logger.info(
                "New work unit, restarting retry count",
                previous_work_unit_id=state.last_work_unit_id,
                work_unit_id=work_unit.work_unit_id,
            )
            previous = 0

        retries = previous + 1
        failed = self.detector.failed_gates(result)

        if retries > self.max_retries:
            return self._escalate(failed, tier)

        self._save(retries, work_unit.work_unit_id)

        logger.warning(
            "Quality gates failed, blocking completion",
            retry=retries,
            max_retries=self.max_retries,
            failed=[g.value for g in failed],
            tier=tier.value,
        )
        return CompletionDecision(
            action=CompletionAction.BLOCK,
            message=format_correction(result.blocking_failures, tier),
            retry_count=retries,
            max_retries=self.max_retries,
            failed_gates=failed,
            reason=f"Quality gates failed (retry {retries}/{self.max_retries})",
        )

    def _escalate(self, failed: List[GateName], tier: Tier) -> CompletionDecision:
        names = ", ".join(g.value for g in failed)
        message = format_warning(
            WarningLevel.CRITICAL,
            f"Quality gates failed after {self.max_retries} retries: {names}. "
            "Manual intervention required.",
            tier,
        )
        self.reset()
        logger.error("Max retries reached, escalating", max_retries=self.max_retries, failed=names)
        return CompletionDecision(
            action=CompletionAction.ESCALATE,
            message=message,
            retry_count=self.max_retries,
            max_retries=self.max_retries,
            failed_gates=failed,
            reason="Max retries reached",
        )


def evaluate_completion(context: ProjectContext, work_unit: WorkUnitContext) -> CompletionDecision:
    """Synchronous entry point for the completion-interception hook"""
    return asyncio.run(RalphLoop(context).evaluate_completion(work_unit))
