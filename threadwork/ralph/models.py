"""
Ralph Loop Data Models

Defines gate outcomes, gate configuration, the persisted retry state and
the completion decision returned to the interception hook.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, Field, model_validator

from threadwork.core.state import StateRecord, utcnow


class GateName(str, Enum):
    """Quality gates, in reporting order"""
    TYPECHECK = "typecheck"
    LINT = "lint"
    TESTS = "tests"
    BUILD = "build"
    SECURITY = "security"


GATE_ORDER = list(GateName)


class CompletionAction(str, Enum):
    ALLOW = "allow"
    BLOCK = "block"
    ESCALATE = "escalate"


class GateOutcome(BaseModel):
    """Result of a single gate"""
    gate: GateName
    passed: bool
    skipped: bool = False
    blocking: bool = True
    diagnostics: List[str] = Field(default_factory=list)
    reason: Optional[str] = None
    command: Optional[str] = None
    coverage: Optional[float] = None
    duration_ms: int = 0
    errored: bool = False

    @classmethod
    def skip(
        cls,
        gate: GateName,
        reason: str,
        blocking: bool = True,
        errored: bool = False,
    ) -> "GateOutcome":
        """A skipped gate counts as passed"""
        return cls(gate=gate, passed=True, skipped=True, blocking=blocking, reason=reason, errored=errored)

    @property
    def failed(self) -> bool:
        return not self.passed and not self.skipped


class GateRunResult(BaseModel):
    """Aggregate of one run over all gates"""
    passed: bool
    results: List[GateOutcome] = Field(default_factory=list)
    ran_at: datetime = Field(default_factory=utcnow)
    cached: bool = False

    def get(self, gate: GateName) -> Optional[GateOutcome]:
        for outcome in self.results:
            if outcome.gate == gate:
                return outcome
        return None

    @property
    def failing(self) -> List[GateOutcome]:
        """Every gate that ran and failed, blocking or not"""
        return [r for r in self.results if r.failed]

    @property
    def blocking_failures(self) -> List[GateOutcome]:
        return [r for r in self.results if r.failed and r.blocking]


class GateSetting(BaseModel):
    """Per-gate switch"""
    enabled: bool = True
    blocking: bool = True


class CoverageGateSetting(GateSetting):
    min_coverage: float = Field(
        default=80.0,
        validation_alias=AliasChoices("min_coverage", "minCoverage"),
    )


DEFAULT_GATE_SETTINGS: Dict[GateName, Dict[str, bool]] = {
    GateName.TYPECHECK: {"enabled": True, "blocking": True},
    GateName.LINT: {"enabled": True, "blocking": True},
    GateName.TESTS: {"enabled": True, "blocking": True},
    GateName.BUILD: {"enabled": False, "blocking": False},
    GateName.SECURITY: {"enabled": True, "blocking": False},
}


class QualityGateConfig(StateRecord):
    """Quality gate configuration (quality-config.json)"""
    typecheck: GateSetting = Field(
        default_factory=lambda: GateSetting(**DEFAULT_GATE_SETTINGS[GateName.TYPECHECK])
    )
    lint: GateSetting = Field(
        default_factory=lambda: GateSetting(**DEFAULT_GATE_SETTINGS[GateName.LINT])
    )
    tests: CoverageGateSetting = Field(
        default_factory=lambda: CoverageGateSetting(**DEFAULT_GATE_SETTINGS[GateName.TESTS])
    )
    build: GateSetting = Field(
        default_factory=lambda: GateSetting(**DEFAULT_GATE_SETTINGS[GateName.BUILD])
    )
    security: GateSetting = Field(
        default_factory=lambda: GateSetting(**DEFAULT_GATE_SETTINGS[GateName.SECURITY])
    )

    @model_validator(mode="before")
    @classmethod
    def _merge_defaults(cls, data: Any) -> Any:
        # Partial gate entries keep the defaults for their missing keys
        if not isinstance(data, dict):
            return data
        merged = dict(data)
        for gate, defaults in DEFAULT_GATE_SETTINGS.items():
            value = merged.get(gate.value)
            if isinstance(value, dict):
                merged[gate.value] = {**defaults, **value}
        return merged

    def setting(self, gate: GateName) -> GateSetting:
        return getattr(self, gate.value)


class RetryState(StateRecord):
    """Persisted Ralph loop counter (ralph-state.json)"""
    retries: int = Field(default=0, ge=0)
    last_work_unit_id: Optional[str] = None
    last_updated: Optional[datetime] = None

    @property
    def is_idle(self) -> bool:
        return self.retries == 0


class WorkUnitContext(BaseModel):
    """The unit of work attempting to complete"""
    work_unit_id: Optional[str] = None
    agent_type: str = ""
    agent_name: str = ""

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "WorkUnitContext":
        """Build from a SubagentStop hook payload"""
        agent_type = payload.get("agent_type") or payload.get("subagent_type") or ""
        agent_name = payload.get("agent_name") or ""
        work_unit_id = (
            payload.get("agent_id")
            or payload.get("task_id")
            or agent_name
            or agent_type
            or None
        )
        return cls(
            work_unit_id=str(work_unit_id) if work_unit_id else None,
            agent_type=str(agent_type),
            agent_name=str(agent_name),
        )


class CompletionDecision(BaseModel):
    """What the interception hook should do with a completion attempt"""
    action: CompletionAction
    message: Optional[str] = None
    retry_count: Optional[int] = None
    max_retries: Optional[int] = None
    failed_gates: List[GateName] = Field(default_factory=list)
    reason: str = ""

    def to_hook_output(self) -> Dict[str, Any]:
        """Hook protocol payload. Escalation still lets the agent stop."""
        if self.action == CompletionAction.BLOCK:
            return {
                "action": "block",
                "retry": True,
                "message": self.message,
                "retryCount": self.retry_count,
                "maxRetries": self.max_retries,
            }
        if self.action == CompletionAction.ESCALATE:
            return {"action": "allow", "escalation": self.message}
        return {"action": "allow"}
