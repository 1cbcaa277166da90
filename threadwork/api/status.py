"""
Status Builders

Read-only snapshots of project state for the CLI.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from threadwork.budget.models import BudgetReport
from threadwork.budget.tracker import TokenTracker
from threadwork.core.context import ProjectContext
from threadwork.core.tiers import Tier, get_tier
from threadwork.ralph.loop import RalphLoop


class RetrySummary(BaseModel):
    retries: int
    max_retries: int
    last_work_unit_id: Optional[str] = None
    last_updated: Optional[datetime] = None


class ProjectStatus(BaseModel):
    """Everything ``threadwork status`` shows"""
    project_name: str
    current_phase: Optional[str] = None
    current_milestone: Optional[str] = None
    active_task: Optional[str] = None
    tier: Tier
    dashboard: str
    budget: BudgetReport
    ralph: RetrySummary


def build_status(context: ProjectContext) -> ProjectStatus:
    """
    Snapshot of the project.

    Raises:
        ProjectNotInitializedError: If project.json does not exist
    """
    project = context.read_project()
    tracker = TokenTracker(context)
    loop = RalphLoop(context)
    state = loop.read_state()

    return ProjectStatus(
        project_name=project.project_name,
        current_phase=str(project.current_phase) if project.current_phase is not None else None,
        current_milestone=str(project.current_milestone) if project.current_milestone is not None else None,
        active_task=project.active_task,
        tier=get_tier(context),
        dashboard=tracker.format_dashboard_line(),
        budget=tracker.get_budget_report(),
        ralph=RetrySummary(
            retries=state.retries,
            max_retries=loop.max_retries,
            last_work_unit_id=state.last_work_unit_id,
            last_updated=state.last_updated,
        ),
    )


def build_budget_report(context: ProjectContext) -> BudgetReport:
    return TokenTracker(context).get_budget_report()
