"""
Skill Tiers and Tier Formatting

The tier controls presentation only: how correction prompts, warnings and
injected instructions read. It never changes control flow.

    beginner  verbose, explains what failed and why it matters
    advanced  concise one-liners (default)
    ninja     minimal output, no narration
"""

import re
from enum import Enum
from typing import TYPE_CHECKING, Optional, Sequence, Union

import structlog

from threadwork.core.errors import InvalidTierError
from threadwork.core.state import PROJECT_FILE

if TYPE_CHECKING:
    from threadwork.core.context import ProjectContext
    from threadwork.ralph.models import GateOutcome

logger = structlog.get_logger()


class Tier(str, Enum):
    BEGINNER = "beginner"
    ADVANCED = "advanced"
    NINJA = "ninja"

    @classmethod
    def parse(cls, value: Optional[Union[str, "Tier"]]) -> "Tier":
        """Lenient parse: unknown or missing values fall back to advanced"""
        try:
            return cls(value)
        except ValueError:
            return cls.ADVANCED


class WarningLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


VALID_TIERS = [t.value for t in Tier]

NINJA_ICONS = {
    WarningLevel.INFO: "ℹ",
    WarningLevel.WARNING: "⚠",
    WarningLevel.CRITICAL: "🚨",
}

ICONS = {
    WarningLevel.INFO: "ℹ️",
    WarningLevel.WARNING: "⚠️",
    WarningLevel.CRITICAL: "🚨",
}

BEGINNER_WARNINGS = {
    WarningLevel.INFO: (
        "ℹ️ Note: {message}\n"
        "(This is informational, no action required right now.)"
    ),
    WarningLevel.WARNING: (
        "⚠️ Heads up: {message}\n"
        "(You should address this before starting a new session to avoid losing context.)"
    ),
    WarningLevel.CRITICAL: (
        "🚨 Important: {message}\n"
        "(You need to act on this now. Run '/tw:done' to save your session before context is lost.)"
    ),
}

TIER_INSTRUCTIONS = {
    Tier.BEGINNER: [
        "## Output Style: Beginner Mode",
        "Explain your reasoning step-by-step before implementing.",
        "Include inline comments throughout generated code explaining what each section does.",
        "When a quality gate fails, explain what the error means and why it matters before fixing it.",
        'After each significant action, include a brief "What just happened" summary.',
        "Token budget warnings: briefly explain why managing tokens matters.",
        'Phase transitions: include a "You are here" orientation block.',
    ],
    Tier.ADVANCED: [
        "## Output Style: Advanced Mode",
        "Summarize reasoning in 1-2 sentences, no elaborate explanations.",
        "Code comments only for non-obvious logic.",
        "Quality gate failures: show the error and the fix, no background lecture.",
        "Slash command output: information-dense, no hand-holding.",
        "Token warnings: brief one-liner.",
        "Phase transitions: terse status updates.",
    ],
    Tier.NINJA: [
        "## Output Style: Ninja Mode",
        "Minimal output. Code only, no narration unless explicitly asked.",
        "Omit reasoning entirely unless requested.",
        "Quality gate failures: raw error + minimal correction. No explanation.",
        "Slash commands: machine-readable compact summaries.",
        "Token warnings: single indicator only (e.g., 🚨 91%).",
        "No orientation blocks, no summaries, no explanations unless asked.",
    ],
}


# Persistence


def get_tier(context: "ProjectContext") -> Tier:
    """Current tier from project.json, defaulting to advanced"""
    return Tier.parse(context.load_project().skill_tier)


def set_tier(context: "ProjectContext", tier: str) -> Tier:
    """
    Persist a new tier, keeping every other project key.

    Raises:
        InvalidTierError: If the tier is not one of beginner, advanced, ninja
    """
    value = tier.value if isinstance(tier, Tier) else tier
    if value not in VALID_TIERS:
        raise InvalidTierError(
            f"Invalid skill tier: '{tier}'. Must be one of: {', '.join(VALID_TIERS)}"
        )

    project = context.store.read_raw(PROJECT_FILE) or {}
    project.pop("skillTier", None)
    project["skill_tier"] = value
    context.store.write_raw(PROJECT_FILE, project)

    logger.info("Skill tier updated", tier=value)
    return Tier(value)


# Formatting


def get_tier_instructions(tier: Optional[Union[str, Tier]]) -> str:
    """Output-style block injected into every subagent prompt"""
    return "\n".join(TIER_INSTRUCTIONS[Tier.parse(tier)])


def format_output(content: str, tier: Optional[Union[str, Tier]]) -> str:
    """Ninja strips headings and collapses blank lines; other tiers pass through"""
    if Tier.parse(tier) != Tier.NINJA:
        return content
    content = re.sub(r"^#{1,3}\s+.+\n?", "", content, flags=re.MULTILINE)
    content = re.sub(r"\n{3,}", "\n\n", content)
    return content.strip()


def format_warning(
    level: Union[str, WarningLevel],
    message: str = "",
    tier: Optional[Union[str, Tier]] = None,
) -> str:
    """Tier-appropriate warning text"""
    level = WarningLevel(level)
    tier = Tier.parse(tier)

    if tier == Tier.NINJA:
        icon = NINJA_ICONS[level]
        return f"{icon} {message}" if message else icon

    if tier == Tier.BEGINNER:
        return BEGINNER_WARNINGS[level].format(message=message)

    return f"{ICONS[level]} {message}"


def _diagnostics(outcome: "GateOutcome", limit: int) -> list:
    return list(outcome.diagnostics[:limit]) or ["(no diagnostic output)"]


def format_correction(
    failing_gates: Sequence["GateOutcome"],
    tier: Optional[Union[str, Tier]] = None,
) -> str:
    """
    Build the correction prompt sent back to a blocked agent.

    Args:
        failing_gates: Gate outcomes to report; passed and skipped ones are ignored
        tier: Verbosity tier, advanced when missing or unknown

    Returns:
        Correction text, empty when there is nothing to report
    """
    failed = [g for g in failing_gates if not g.passed and not g.skipped]
    if not failed:
        return ""

    tier = Tier.parse(tier)

    if tier == Tier.NINJA:
        blocks = [
            f"{g.gate.value.upper()}:\n" + "\n".join(_diagnostics(g, 3))
            for g in failed
        ]
        return "\n\n".join(blocks)

    if tier == Tier.BEGINNER:
        lines = [
            "## Quality Gate Failures - Please Fix",
            "",
            "Some automated checks failed on your code. Here is what needs to be fixed:",
            "",
        ]
        for g in failed:
            name = g.gate.value
            lines.extend([
                f"### {name.capitalize()} Errors",
                f"These {name} errors need to be fixed before your changes can be accepted:",
                "",
                *[f"- `{d}`" for d in _diagnostics(g, 5)],
                "",
                "Fix each error listed above, then your changes will pass the quality check.",
                "",
            ])
        return "\n".join(lines).rstrip()

    sections = [f"**{g.gate.value}**: {'; '.join(_diagnostics(g, 3))}" for g in failed]
    return "Quality gates failed. Fix and re-verify:\n\n" + "\n".join(sections)
