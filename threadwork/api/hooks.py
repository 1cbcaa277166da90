"""
Hook Surfaces

Entry points for the assistant's lifecycle hooks. Each takes the hook's
JSON payload and returns a HookResponse: the JSON for stdout plus optional
text for stderr, which the user sees in their terminal.

Hooks must never break the session. Every entry point is wrapped in a
guard that resolves any fault to the pass-through (or allow) response.
"""

import time
from typing import Any, Dict, Optional

import structlog
from pydantic import BaseModel, Field

from threadwork.budget.tracker import TokenTracker, estimate_tool_tokens
from threadwork.core.context import ProjectContext
from threadwork.core.errors import guard, guard_async
from threadwork.core.tiers import Tier, WarningLevel, format_warning, get_tier, get_tier_instructions
from threadwork.ralph.loop import RalphLoop
from threadwork.ralph.models import CompletionAction, WorkUnitContext

logger = structlog.get_logger()

TASK_TOOLS = {"Task", "task"}
TEAM_TOOLS = {"TeamCreate"}
INJECTION_MARKER = "<!-- Threadwork Context Injection -->"
TEAM_MARKER = "<!-- Threadwork Team Context -->"


class HookResponse(BaseModel):
    """What a hook writes back: stdout JSON and an optional stderr notice"""
    output: Dict[str, Any] = Field(default_factory=dict)
    stderr: Optional[str] = None


def _tool_name(payload: Dict[str, Any]) -> str:
    return payload.get("tool_name") or payload.get("toolName") or ""


def _tool_input(payload: Dict[str, Any]) -> Dict[str, Any]:
    tool_input = payload.get("tool_input")
    if tool_input is None:
        tool_input = payload.get("input")
    return tool_input if isinstance(tool_input, dict) else {}


def _budget_warning(tracker: TokenTracker, tier: Tier) -> str:
    thresholds = tracker.check_thresholds()
    if thresholds.critical:
        return format_warning(
            WarningLevel.CRITICAL,
            "Token budget >90%. Finish current task and run /tw:done immediately.",
            tier,
        )
    if thresholds.warning:
        return format_warning(
            WarningLevel.WARNING,
            "Token budget >80%. Wrap up after this task or start a new session.",
            tier,
        )
    return ""


# Session start


def session_start(context: ProjectContext, payload: Dict[str, Any]) -> HookResponse:
    """Reset session usage and inject the orientation block"""
    return guard(
        lambda: _session_start(context, payload),
        fallback=HookResponse,
        event="session-start hook failed",
        hook="session-start",
    )


def _session_start(context: ProjectContext, payload: Dict[str, Any]) -> HookResponse:
    tracker = TokenTracker(context)
    tracker.reset_session()

    project = context.load_project()
    tier = Tier.parse(project.skill_tier)
    active_task = project.active_task or "None"

    if payload.get("minimal"):
        block = (
            "## Threadwork Context\n"
            f"**Project**: {project.project_name} | **Task**: {active_task}\n"
        )
        logger.info("Session context injected", hook="session-start", minimal=True, size=len(block))
        return HookResponse(output={"type": "system", "content": block})

    parts = [
        "## Threadwork Session Context",
        f"**Project**: {project.project_name}"
        f" | **Phase**: {project.current_phase if project.current_phase is not None else 'unknown'}"
        f" | **Milestone**: {project.current_milestone if project.current_milestone is not None else 'unknown'}",
        f"**Active task**: {active_task}",
        "",
        tracker.format_dashboard_line(),
        "",
        get_tier_instructions(tier),
    ]
    block = "\n".join(parts)

    logger.info("Session context injected", hook="session-start", tier=tier.value, size=len(block))
    return HookResponse(output={"type": "system", "content": block})


# Pre tool use


def pre_tool_use(context: ProjectContext, payload: Dict[str, Any]) -> HookResponse:
    """Prepend tier instructions and budget status to delegated task prompts"""
    return guard(
        lambda: _pre_tool_use(context, payload),
        fallback=lambda: HookResponse(output=payload),
        event="pre-tool-use hook failed",
        hook="pre-tool-use",
    )


def _pre_tool_use(context: ProjectContext, payload: Dict[str, Any]) -> HookResponse:
    tool_name = _tool_name(payload)
    is_task = tool_name in TASK_TOOLS
    is_team = tool_name in TEAM_TOOLS
    if not is_task and not is_team:
        return HookResponse(output=payload)

    tier = get_tier(context)
    tracker = TokenTracker(context)
    parts = [
        TEAM_MARKER if is_team else INJECTION_MARKER,
        get_tier_instructions(tier),
        "",
        tracker.format_dashboard_line(),
    ]
    warning = _budget_warning(tracker, tier)
    if warning:
        parts.extend(["", warning])
    prefix = "\n".join(parts).strip()

    tool_input = dict(_tool_input(payload))
    output = {**payload, "tool_input": tool_input}

    if is_team:
        if "description" in tool_input:
            tool_input["description"] = f"{tool_input['description']}\n\n{prefix}"
    elif "prompt" in tool_input:
        tool_input["prompt"] = f"{prefix}\n\n---\n\n{tool_input['prompt']}"
    elif "description" in tool_input:
        tool_input["description"] = f"{prefix}\n\n---\n\n{tool_input['description']}"
    else:
        return HookResponse(output=payload)

    logger.info("Injected task context", hook="pre-tool-use", tool=tool_name, tier=tier.value)
    return HookResponse(output=output)


# Post tool use


def post_tool_use(context: ProjectContext, payload: Dict[str, Any]) -> HookResponse:
    """Record estimated usage for a tool call and surface threshold warnings"""
    return guard(
        lambda: _post_tool_use(context, payload),
        fallback=lambda: HookResponse(output=payload),
        event="post-tool-use hook failed",
        hook="post-tool-use",
    )


def _post_tool_use(context: ProjectContext, payload: Dict[str, Any]) -> HookResponse:
    tool_name = _tool_name(payload)
    tool_output = payload.get("tool_result")
    if tool_output is None:
        tool_output = payload.get("result", {})

    tokens = estimate_tool_tokens(_tool_input(payload), tool_output)
    tracker = TokenTracker(context)
    tracker.record_usage(f"tool-{tool_name}-{int(time.time() * 1000)}", tokens, tokens)

    thresholds = tracker.check_thresholds()
    used_k = round(tracker.get_used() / 1000)
    notice = None
    if thresholds.critical or thresholds.warning:
        tier = get_tier(context)
        if thresholds.critical:
            notice = format_warning(
                WarningLevel.CRITICAL,
                f"[THREADWORK] Token budget CRITICAL: {used_k}K used. "
                "Run /tw:done NOW to generate handoff before context is lost.",
                tier,
            )
        else:
            notice = format_warning(
                WarningLevel.WARNING,
                f"[THREADWORK] Token budget at 80%+: {used_k}K used. "
                "Consider wrapping up after the current task.",
                tier,
            )

    logger.info("Recorded tool usage", hook="post-tool-use", tool=tool_name, tokens=tokens)
    return HookResponse(output=payload, stderr=notice)


# Subagent stop


async def subagent_stop(
    context: ProjectContext,
    payload: Dict[str, Any],
    loop: Optional[RalphLoop] = None,
) -> HookResponse:
    """Run the Ralph loop for a finishing work unit"""
    return await guard_async(
        lambda: _subagent_stop(context, payload, loop),
        fallback=lambda: HookResponse(output={"action": "allow"}),
        event="subagent-stop hook failed",
        hook="subagent-stop",
    )


async def _subagent_stop(
    context: ProjectContext,
    payload: Dict[str, Any],
    loop: Optional[RalphLoop],
) -> HookResponse:
    work_unit = WorkUnitContext.from_payload(payload)
    loop = loop or RalphLoop(context)
    decision = await loop.evaluate_completion(work_unit)

    stderr = decision.message if decision.action == CompletionAction.ESCALATE else None
    return HookResponse(output=decision.to_hook_output(), stderr=stderr)
