"""
Token budget tracking: the session usage ledger and its threshold signals.
"""

from threadwork.budget.models import BudgetReport, Thresholds, UsageLedger, UsageRecord, VarianceRating
from threadwork.budget.tracker import (
    TokenTracker,
    check_thresholds,
    estimate_task_budget,
    estimate_tokens,
    estimate_tool_tokens,
    get_variance_rating,
)

__all__ = [
    "BudgetReport",
    "Thresholds",
    "UsageLedger",
    "UsageRecord",
    "VarianceRating",
    "TokenTracker",
    "check_thresholds",
    "estimate_task_budget",
    "estimate_tokens",
    "estimate_tool_tokens",
    "get_variance_rating",
]
