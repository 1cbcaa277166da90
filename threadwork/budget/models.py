"""
Token Budget Data Models

The session usage ledger (token-log.json) and the report structures built
from it.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from threadwork.core.state import StateRecord, utcnow


class VarianceRating(str, Enum):
    """How close an estimate landed to the actual usage"""
    EXCELLENT = "Excellent"
    GOOD = "Good"
    NEEDS_IMPROVEMENT = "Needs Improvement"


class Complexity(str, Enum):
    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"


class UsageRecord(BaseModel):
    """One unit of work's estimated and actual usage. Immutable once appended."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    estimated: int = Field(ge=0)
    actual: int = Field(ge=0)
    variance: str = Field(
        default="N/A",
        validation_alias=AliasChoices("variance", "variance_pct", "variancePct"),
    )
    rating: VarianceRating = VarianceRating.NEEDS_IMPROVEMENT
    recorded_at: datetime = Field(
        default_factory=utcnow,
        validation_alias=AliasChoices("recorded_at", "recordedAt"),
    )


class UsageLedger(StateRecord):
    """Session usage ledger. used_total always equals the sum of record actuals."""
    budget_total: Optional[int] = Field(
        default=None,
        ge=0,
        validation_alias=AliasChoices("budget_total", "sessionBudget"),
    )
    used_total: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("used_total", "sessionUsed"),
    )
    records: List[UsageRecord] = Field(
        default_factory=list,
        validation_alias=AliasChoices("records", "tasks"),
    )


class Thresholds(BaseModel):
    """Threshold signal. Both flags are true at or above the critical line."""
    warning: bool = False
    critical: bool = False


class TaskBudgetEstimate(BaseModel):
    low: int
    high: int
    midpoint: int
    complexity: Complexity


class SessionSummary(BaseModel):
    budget: int
    used: int
    remaining: int
    percent: int


class TaskSummary(BaseModel):
    id: str
    estimated: int
    actual: int
    variance: str
    rating: VarianceRating


class PhaseTotal(BaseModel):
    estimated: int
    actual: int
    variance: str


class BudgetReport(BaseModel):
    """Full budget and variance report for the current session"""
    session: SessionSummary
    tasks: List[TaskSummary] = Field(default_factory=list)
    phase_total: PhaseTotal
