"""
Core building blocks shared by the budget tracker and the Ralph loop.
"""

from threadwork.core.context import ProjectConfig, ProjectContext
from threadwork.core.errors import (
    InvalidBudgetError,
    InvalidTierError,
    ProjectNotInitializedError,
    ThreadworkError,
    guard,
    guard_async,
)
from threadwork.core.tiers import Tier

__all__ = [
    "ProjectConfig",
    "ProjectContext",
    "InvalidBudgetError",
    "InvalidTierError",
    "ProjectNotInitializedError",
    "ThreadworkError",
    "guard",
    "guard_async",
    "Tier",
]
