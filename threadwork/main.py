"""
Threadwork CLI
Entry point for the hook surfaces and the status, gates, tier and budget
commands
"""

import asyncio
import json
import logging
import sys
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
import typer
from rich.console import Console
from rich.table import Table
from rich.text import Text

from threadwork.api import hooks
from threadwork.api.status import build_budget_report, build_status
from threadwork.budget.tracker import TokenTracker
from threadwork.config import settings
from threadwork.core.context import ProjectContext
from threadwork.core.errors import (
    InvalidBudgetError,
    InvalidTierError,
    ProjectNotInitializedError,
    guard,
)
from threadwork.core.tiers import get_tier, set_tier
from threadwork.ralph.gates import GateRunner
from threadwork.ralph.models import GateRunResult

# Configure structured logging. Rendering happens per handler, see configure_logging.
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

app = typer.Typer(help="Threadwork: token budget tracking and quality-gate enforcement")
console = Console()
err_console = Console(stderr=True)

EXIT_CODE_FAIL = 1


class HookName(str, Enum):
    SESSION_START = "session-start"
    PRE_TOOL_USE = "pre-tool-use"
    POST_TOOL_USE = "post-tool-use"
    SUBAGENT_STOP = "subagent-stop"


def configure_logging(context: ProjectContext, to_file: bool = False) -> None:
    """
    Route threadwork logs to stderr, or to the hook log when running a hook.

    Hook stdout carries the hook protocol, so it never receives log lines.
    """
    if to_file or context.settings.env == "production":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    if to_file:
        context.state_dir.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(context.hook_log_path, encoding="utf-8")
    else:
        handler = logging.StreamHandler(sys.stderr)

    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    package_logger = logging.getLogger("threadwork")
    for existing in list(package_logger.handlers):
        package_logger.removeHandler(existing)
        existing.close()
    package_logger.addHandler(handler)
    package_logger.setLevel(context.settings.log_level.upper())
    package_logger.propagate = False


def build_context(root: Optional[Path] = None) -> ProjectContext:
    return ProjectContext.create(root=root, settings=settings)


def _context(ctx: typer.Context) -> ProjectContext:
    return ctx.obj["context"]


@app.callback()
def main(
    ctx: typer.Context,
    project_dir: Optional[Path] = typer.Option(
        None,
        "--project-dir",
        "-C",
        help="Project root (defaults to the current directory)",
    ),
):
    """Threadwork CLI."""
    ctx.ensure_object(dict)
    ctx.obj["context"] = build_context(project_dir)


# Status


@app.command()
def status(ctx: typer.Context):
    """Show project, tier, budget and retry state."""
    context = _context(ctx)
    configure_logging(context)
    try:
        snapshot = build_status(context)
    except ProjectNotInitializedError as e:
        err_console.print(f"[red]Error:[/] {e}")
        raise typer.Exit(code=EXIT_CODE_FAIL)

    table = Table(title=f"Threadwork: {snapshot.project_name}", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Phase", snapshot.current_phase or "unknown")
    table.add_row("Milestone", snapshot.current_milestone or "unknown")
    table.add_row("Active task", snapshot.active_task or "None")
    table.add_row("Tier", snapshot.tier.value)
    table.add_row("Budget", Text(snapshot.dashboard))
    table.add_row("Ralph retries", f"{snapshot.ralph.retries}/{snapshot.ralph.max_retries}")
    console.print(table)


# Gates


def _display_gate_result(result: GateRunResult) -> None:
    table = Table(title="Quality Gates")
    table.add_column("Gate")
    table.add_column("Result")
    table.add_column("Blocking")
    table.add_column("Details")

    for outcome in result.results:
        if outcome.skipped:
            verdict = "[dim]SKIP[/]"
            details = outcome.reason or ""
        elif outcome.passed:
            verdict = "[green]PASS[/]"
            details = f"coverage {outcome.coverage:.1f}%" if outcome.coverage is not None else ""
        else:
            verdict = "[red]FAIL[/]"
            details = "\n".join(outcome.diagnostics)
        table.add_row(outcome.gate.value, verdict, "yes" if outcome.blocking else "no", Text(details))

    console.print(table)
    summary = "[green]✓ All blocking gates passed[/]" if result.passed else "[red]✗ Blocking gates failed[/]"
    if result.cached:
        summary += " [dim](cached)[/]"
    console.print(summary)


@app.command()
def gates(
    ctx: typer.Context,
    skip_cache: bool = typer.Option(False, "--skip-cache", help="Ignore any cached result"),
    build: bool = typer.Option(False, "--build", help="Run the build gate even if disabled"),
    enforced: bool = typer.Option(False, "--enforced", "-e", help="Exit with error code if gates fail"),
):
    """Run the quality gates."""
    context = _context(ctx)
    configure_logging(context)

    result = asyncio.run(GateRunner(context).run_all(skip_cache=skip_cache, include_build=build))
    _display_gate_result(result)

    if enforced and not result.passed:
        raise typer.Exit(code=EXIT_CODE_FAIL)


# Tier


@app.command()
def tier(
    ctx: typer.Context,
    name: Optional[str] = typer.Argument(None, help="beginner, advanced or ninja"),
):
    """Show or set the skill tier."""
    context = _context(ctx)
    configure_logging(context)

    if name is None:
        console.print(f"Skill tier: [bold]{get_tier(context).value}[/]")
        return

    try:
        updated = set_tier(context, name)
    except InvalidTierError as e:
        err_console.print(f"[red]Error:[/] {e}")
        raise typer.Exit(code=EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Skill tier set to [bold]{updated.value}[/]")


# Budget


@app.command()
def budget(
    ctx: typer.Context,
    set_budget: Optional[int] = typer.Option(None, "--set", help="Set the session budget"),
    report: bool = typer.Option(False, "--report", help="Show the per-task variance report"),
):
    """Show the token budget dashboard."""
    context = _context(ctx)
    configure_logging(context)
    tracker = TokenTracker(context)

    if set_budget is not None:
        try:
            tracker.set_session_budget(set_budget)
        except InvalidBudgetError as e:
            err_console.print(f"[red]Error:[/] {e}")
            raise typer.Exit(code=EXIT_CODE_FAIL)
        console.print(f"[green]✓[/] Session budget set to {set_budget:,}")

    if not report:
        console.print(tracker.format_dashboard_line(), markup=False)
        return

    data = build_budget_report(context)
    table = Table(title="Token Budget Report")
    table.add_column("Task")
    table.add_column("Estimated", justify="right")
    table.add_column("Actual", justify="right")
    table.add_column("Variance", justify="right")
    table.add_column("Rating")
    for task in data.tasks:
        table.add_row(Text(task.id), f"{task.estimated:,}", f"{task.actual:,}", task.variance, task.rating.value)
    table.add_row(
        "[bold]Total[/]",
        f"{data.phase_total.estimated:,}",
        f"{data.phase_total.actual:,}",
        data.phase_total.variance,
        "",
    )
    console.print(table)
    console.print(
        f"Session: {data.session.used:,}/{data.session.budget:,} used"
        f" ({data.session.percent}%), {data.session.remaining:,} remaining"
    )


# Hooks


def _read_payload() -> Dict[str, Any]:
    data = getattr(sys.stdin, "buffer", sys.stdin).read()
    raw = data.decode("utf-8", errors="replace") if isinstance(data, bytes) else data
    raw = raw.strip()
    if not raw:
        return {}
    try:
        payload = json.loads(raw)
    except ValueError:
        logger.warning("Malformed hook payload, using empty payload")
        return {}
    return payload if isinstance(payload, dict) else {}


def _dispatch(name: HookName, context: ProjectContext, payload: Dict[str, Any]) -> hooks.HookResponse:
    if name == HookName.SESSION_START:
        return hooks.session_start(context, payload)
    if name == HookName.PRE_TOOL_USE:
        return hooks.pre_tool_use(context, payload)
    if name == HookName.POST_TOOL_USE:
        return hooks.post_tool_use(context, payload)
    return asyncio.run(hooks.subagent_stop(context, payload))


def _hook_fallback(name: HookName, payload: Dict[str, Any]) -> hooks.HookResponse:
    if name == HookName.SUBAGENT_STOP:
        return hooks.HookResponse(output={"action": "allow"})
    if name == HookName.SESSION_START:
        return hooks.HookResponse()
    return hooks.HookResponse(output=payload)


@app.command()
def hook(ctx: typer.Context, name: HookName = typer.Argument(..., help="Hook to run")):
    """Run a lifecycle hook: JSON payload on stdin, JSON response on stdout. Always exits 0."""
    context = _context(ctx)
    guard(
        lambda: configure_logging(context, to_file=True),
        fallback=None,
        event="Hook log unavailable",
    )

    payload = guard(_read_payload, fallback=dict, event="Unreadable hook payload, using empty payload")
    response = guard(
        lambda: _dispatch(name, context, payload),
        fallback=lambda: _hook_fallback(name, payload),
        event="Hook failed, passing through",
        hook=name.value,
    )

    typer.echo(json.dumps(response.output))
    if response.stderr:
        typer.echo(f"\n{response.stderr}", err=True)


if __name__ == "__main__":
    app()
