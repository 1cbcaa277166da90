"""
Token Budget Tracker

Tracks session usage against a budget, surfaces threshold warnings at 80%
and 90%, and reports estimation variance per unit of work. All state is
persisted to token-log.json in the project's state directory.

Usage is an estimate (characters / 4), not exact accounting.
"""

import json
import math
from typing import Any, Optional

import structlog

from threadwork.budget.models import (
    BudgetReport,
    Complexity,
    PhaseTotal,
    SessionSummary,
    TaskBudgetEstimate,
    TaskSummary,
    Thresholds,
    UsageLedger,
    UsageRecord,
    VarianceRating,
)
from threadwork.core.context import ProjectContext
from threadwork.core.errors import InvalidBudgetError
from threadwork.core.state import TOKEN_LOG_FILE

logger = structlog.get_logger()

WARNING_PERCENT = 80
CRITICAL_PERCENT = 90

COMPLEX_SIGNALS = [
    "architect", "refactor", "migration", "integration", "authentication",
    "auth", "database", "schema", "multi", "complex", "redesign",
]
SIMPLE_SIGNALS = ["add", "update", "fix", "rename", "move", "remove", "delete", "simple", "small"]

BUDGET_RANGES = {
    Complexity.SIMPLE: (5_000, 15_000),
    Complexity.MEDIUM: (15_000, 40_000),
    Complexity.COMPLEX: (40_000, 80_000),
}

# Planning phases are cheaper than execution
PLANNING_MULTIPLIER = 0.7


def _round(value: float) -> int:
    """Round half up, so 12.5 -> 13 and -12.5 -> -12"""
    return math.floor(value + 0.5)


# Pure functions


def check_thresholds(percent: float) -> Thresholds:
    """Threshold signal for a consumed percentage. No hysteresis."""
    return Thresholds(warning=percent >= WARNING_PERCENT, critical=percent >= CRITICAL_PERCENT)


def compute_variance_pct(estimated: int, actual: int) -> str:
    """Signed variance string, e.g. ``+18%`` or ``-11%``"""
    if not estimated:
        return "N/A"
    pct = _round((actual - estimated) / estimated * 100)
    return f"+{pct}%" if pct >= 0 else f"{pct}%"


def get_variance_rating(estimated: int, actual: int) -> VarianceRating:
    if not estimated:
        return VarianceRating.NEEDS_IMPROVEMENT
    abs_pct = abs((actual - estimated) / estimated * 100)
    if abs_pct < 10:
        return VarianceRating.EXCELLENT
    if abs_pct <= 20:
        return VarianceRating.GOOD
    return VarianceRating.NEEDS_IMPROVEMENT


def estimate_tokens(text: Optional[str]) -> int:
    """Rough token estimate: characters / 4, rounded up"""
    return math.ceil(len(text or "") / 4)


def estimate_tool_tokens(tool_input: Any, tool_output: Any) -> int:
    """Estimate for one tool call from its serialized input and output"""
    size = len(json.dumps(tool_input if tool_input is not None else {}, default=str))
    size += len(json.dumps(tool_output if tool_output is not None else "", default=str))
    return math.ceil(size / 4)


def estimate_task_budget(description: Optional[str], phase: int = 1) -> TaskBudgetEstimate:
    """
    Heuristic budget for a task from its description.

    Args:
        description: Free-text task description
        phase: Project phase; phase 1 and earlier is planning and costs less

    Returns:
        Low/high bounds, their midpoint and the detected complexity
    """
    desc = (description or "").lower()
    word_count = len(desc.split()) or 1

    complex_score = sum(1 for s in COMPLEX_SIGNALS if s in desc)
    simple_score = sum(1 for s in SIMPLE_SIGNALS if s in desc)

    if complex_score >= 2 or word_count > 20:
        complexity = Complexity.COMPLEX
    elif simple_score >= 2 or word_count < 6:
        complexity = Complexity.SIMPLE
    else:
        complexity = Complexity.MEDIUM

    low, high = BUDGET_RANGES[complexity]
    multiplier = PLANNING_MULTIPLIER if phase <= 1 else 1.0
    low = _round(low * multiplier)
    high = _round(high * multiplier)

    return TaskBudgetEstimate(
        low=low,
        high=high,
        midpoint=_round((low + high) / 2),
        complexity=complexity,
    )


def _thousands(value: int) -> str:
    return f"{_round(value / 1000)}K"


# Ledger


class TokenTracker:
    """Usage Ledger operations for one project"""

    def __init__(self, context: ProjectContext):
        self.context = context

    def _read(self) -> UsageLedger:
        return self.context.store.read(TOKEN_LOG_FILE, UsageLedger)

    def _write(self, ledger: UsageLedger) -> None:
        self.context.store.write(TOKEN_LOG_FILE, ledger)

    def _budget_of(self, ledger: UsageLedger) -> int:
        if ledger.budget_total is not None:
            return ledger.budget_total
        project_budget = self.context.load_project().session_budget
        if project_budget is not None:
            return project_budget
        return self.context.settings.default_budget

    # Budget

    def get_budget(self) -> int:
        return self._budget_of(self._read())

    get_session_budget = get_budget

    def set_session_budget(self, budget: int) -> None:
        """
        Set the session budget.

        Raises:
            InvalidBudgetError: If the budget is not a positive integer
        """
        if budget <= 0:
            raise InvalidBudgetError(f"Session budget must be a positive integer, got {budget}")
        ledger = self._read()
        ledger.budget_total = budget
        self._write(ledger)
        logger.info("Session budget updated", budget=budget)

    # Usage

    def record_usage(self, work_unit_id: str, estimated: int, actual: Optional[int] = None) -> UsageRecord:
        """Append a usage record. ``actual`` defaults to the estimate."""
        estimated = max(0, int(estimated or 0))
        actual = estimated if actual is None else max(0, int(actual))

        ledger = self._read()
        budget = self._budget_of(ledger)
        before = check_thresholds(self._exact_percent(ledger.used_total, budget))

        record = UsageRecord(
            id=work_unit_id,
            estimated=estimated,
            actual=actual,
            variance=compute_variance_pct(estimated, actual),
            rating=get_variance_rating(estimated, actual),
        )
        ledger.records.append(record)
        ledger.used_total += actual
        self._write(ledger)

        after = check_thresholds(self._exact_percent(ledger.used_total, budget))
        percent = self._percent(ledger.used_total, budget)
        if after.critical and not before.critical:
            logger.warning("Budget critical threshold crossed", percent=percent, used=ledger.used_total)
        elif after.warning and not before.warning:
            logger.warning("Budget warning threshold crossed", percent=percent, used=ledger.used_total)

        return record

    def get_used(self) -> int:
        return self._read().used_total

    def get_remaining(self) -> int:
        ledger = self._read()
        return max(0, self._budget_of(ledger) - ledger.used_total)

    @staticmethod
    def _exact_percent(used: int, budget: int) -> float:
        if budget == 0:
            return 100.0
        return used * 100 / budget

    @classmethod
    def _percent(cls, used: int, budget: int) -> int:
        return min(100, _round(cls._exact_percent(used, budget)))

    def get_percent(self) -> int:
        """Percentage of budget consumed, 0-100. A zero budget counts as fully consumed."""
        ledger = self._read()
        return self._percent(ledger.used_total, self._budget_of(ledger))

    def check_thresholds(self) -> Thresholds:
        """Thresholds against the unrounded ratio, so 79.99% is still below warning"""
        ledger = self._read()
        return check_thresholds(self._exact_percent(ledger.used_total, self._budget_of(ledger)))

    def should_check_budget(self) -> bool:
        """True once less than 20% remains"""
        return self.check_thresholds().warning

    def is_over_budget(self) -> bool:
        """True once less than 10% remains"""
        return self.check_thresholds().critical

    def reset_session(self) -> None:
        """Zero the session usage. Called once at session start."""
        ledger = self._read()
        ledger.used_total = 0
        ledger.records = []
        self._write(ledger)
        logger.info("Session usage reset")

    # Reporting

    def get_budget_report(self) -> BudgetReport:
        ledger = self._read()
        budget = self._budget_of(ledger)
        used = ledger.used_total

        tasks = [
            TaskSummary(
                id=r.id,
                estimated=r.estimated,
                actual=r.actual,
                variance=r.variance,
                rating=r.rating,
            )
            for r in ledger.records
        ]
        total_estimated = sum(t.estimated for t in tasks)
        total_actual = sum(t.actual for t in tasks)

        return BudgetReport(
            session=SessionSummary(
                budget=budget,
                used=used,
                remaining=max(0, budget - used),
                percent=self._percent(used, budget),
            ),
            tasks=tasks,
            phase_total=PhaseTotal(
                estimated=total_estimated,
                actual=total_actual,
                variance=compute_variance_pct(total_estimated, total_actual),
            ),
        )

    def format_dashboard_line(self) -> str:
        """Single-line budget dashboard for prompt injection"""
        session = self.get_budget_report().session
        thresholds = check_thresholds(self._exact_percent(session.used, session.budget))

        status = ""
        if thresholds.critical:
            status = " | 🚨 CRITICAL: >90% consumed, run /tw:done now"
        elif thresholds.warning:
            status = " | ⚠️ Warning: >80% consumed"

        return (
            f"[TOKEN: {_thousands(session.used)}/{_thousands(session.budget)} used"
            f" | {session.percent}% consumed"
            f" | {_thousands(session.remaining)} remaining{status}]"
        )
