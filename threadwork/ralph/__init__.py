"""
Ralph Loop Module

Quality-gate enforcement for agent work units. When an agent tries to
finish, the gates run; failures send the agent back with a correction
prompt, up to a retry limit, after which a human is asked to step in.

Philosophy: "It's better to fail predictably than succeed unpredictably."
"""

from threadwork.ralph.completion import CompletionDetector
from threadwork.ralph.gates import GateRunner, run_gates
from threadwork.ralph.loop import RalphLoop, evaluate_completion
from threadwork.ralph.models import (
    CompletionAction,
    CompletionDecision,
    GateName,
    GateOutcome,
    GateRunResult,
    QualityGateConfig,
    RetryState,
    WorkUnitContext,
)

__all__ = [
    "CompletionDetector",
    "GateRunner",
    "run_gates",
    "RalphLoop",
    "evaluate_completion",
    "CompletionAction",
    "CompletionDecision",
    "GateName",
    "GateOutcome",
    "GateRunResult",
    "QualityGateConfig",
    "RetryState",
    "WorkUnitContext",
]
