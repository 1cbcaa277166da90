"""
Completion Detection for the Ralph Loop

Decides which completion attempts are subject to quality gating and
summarizes a gate run for the retry state machine.
"""

from typing import Dict, FrozenSet, List

import structlog

from threadwork.ralph.models import GateName, GateRunResult, WorkUnitContext

logger = structlog.get_logger()

# Roles that coordinate or plan but never produce code artifacts
COORDINATION_ROLES: FrozenSet[str] = frozenset({
    "planner",
    "researcher",
    "verifier",
    "dispatch",
    "spec-writer",
    "orchestrator",
})


class CompletionDetector:
    """
    Classifies work units and reads gate results.

    Matching is by substring so prefixed role names (``tw-planner``) are
    recognized as well.
    """

    def __init__(self, coordination_roles: FrozenSet[str] = COORDINATION_ROLES):
        self.coordination_roles = coordination_roles

    def is_coordination_only(self, work_unit: WorkUnitContext) -> bool:
        """Coordination-only units skip gating entirely"""
        identifiers = [work_unit.agent_type.lower(), work_unit.agent_name.lower()]
        return any(
            role in identifier
            for role in self.coordination_roles
            for identifier in identifiers
            if identifier
        )

    def failed_gates(self, result: GateRunResult) -> List[GateName]:
        """Names of the failing gates that block completion"""
        return [r.gate for r in result.blocking_failures]

    def summarize(self, result: GateRunResult) -> Dict[str, Dict[str, object]]:
        """Per-gate summary for logs and status output"""
        return {
            r.gate.value: {
                "passed": r.passed,
                "skipped": r.skipped,
                "blocking": r.blocking,
                "diagnostic_count": len(r.diagnostics),
            }
            for r in result.results
        }
