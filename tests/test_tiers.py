"""
Tests for skill tiers and tier formatting
"""

import json

import pytest

from threadwork.core.errors import InvalidTierError
from threadwork.core.state import PROJECT_FILE
from threadwork.core.tiers import (
    Tier,
    WarningLevel,
    format_correction,
    format_output,
    format_warning,
    get_tier,
    get_tier_instructions,
    set_tier,
)
from threadwork.ralph.models import GateName, GateOutcome


@pytest.fixture
def failures():
    return [
        GateOutcome(
            gate=GateName.TYPECHECK,
            passed=False,
            diagnostics=[f"src/app.ts({i},1): error TS2322: bad type" for i in range(1, 7)],
        ),
        GateOutcome(
            gate=GateName.TESTS,
            passed=False,
            diagnostics=["FAILED tests/test_auth.py::test_login"],
        ),
    ]


class TestTierPersistence:
    """Tests for reading and writing the tier"""

    def test_default_is_advanced(self, context):
        assert get_tier(context) == Tier.ADVANCED

    def test_reads_camel_case_key(self, context, write_state):
        write_state(PROJECT_FILE, {"skillTier": "ninja"})
        assert get_tier(context) == Tier.NINJA

    def test_set_then_get(self, initialized):
        assert set_tier(initialized, "ninja") == Tier.NINJA
        assert get_tier(initialized) == Tier.NINJA

    def test_unknown_value_falls_back(self, context, write_state):
        write_state(PROJECT_FILE, {"skill_tier": "wizard"})
        assert get_tier(context) == Tier.ADVANCED

    def test_set_tier_preserves_other_keys(self, initialized):
        set_tier(initialized, "beginner")

        data = json.loads((initialized.state_dir / PROJECT_FILE).read_text())
        assert data["skill_tier"] == "beginner"
        assert "skillTier" not in data
        assert data["projectName"] == "Acme API"
        assert initialized.load_project().project_name == "Acme API"

    def test_set_invalid_tier(self, initialized):
        with pytest.raises(InvalidTierError) as exc:
            set_tier(initialized, "expert")

        assert "beginner, advanced, ninja" in str(exc.value)
        assert get_tier(initialized) == Tier.ADVANCED

    def test_parse(self):
        assert Tier.parse("ninja") == Tier.NINJA
        assert Tier.parse(None) == Tier.ADVANCED
        assert Tier.parse("nope") == Tier.ADVANCED


class TestFormatCorrection:
    """Tests for correction prompts"""

    def test_beginner_longer_than_ninja(self, failures):
        for subset in (failures[:1], failures[1:], failures):
            assert len(format_correction(subset, "beginner")) > len(format_correction(subset, "ninja"))

    def test_ninja(self, failures):
        text = format_correction(failures, Tier.NINJA)

        assert text.startswith("TYPECHECK:\n")
        assert "TESTS:\nFAILED tests/test_auth.py::test_login" in text
        assert text.count("error TS2322") == 3
        assert "Quality" not in text

    def test_advanced(self, failures):
        text = format_correction(failures, Tier.ADVANCED)
        lines = text.split("\n")

        assert lines[0] == "Quality gates failed. Fix and re-verify:"
        assert lines[2].startswith("**typecheck**: ")
        assert lines[2].count("; ") == 2
        assert lines[3] == "**tests**: FAILED tests/test_auth.py::test_login"

    def test_beginner(self, failures):
        text = format_correction(failures, Tier.BEGINNER)

        assert text.startswith("## Quality Gate Failures - Please Fix")
        assert "### Typecheck Errors" in text
        assert "### Tests Errors" in text
        assert text.count("error TS2322") == 5
        assert "- `FAILED tests/test_auth.py::test_login`" in text

    def test_unknown_tier_uses_advanced(self, failures):
        assert format_correction(failures, "wizard") == format_correction(failures, Tier.ADVANCED)

    def test_ignores_passed_and_skipped(self, failures):
        extra = [
            GateOutcome(gate=GateName.LINT, passed=True),
            GateOutcome.skip(GateName.SECURITY, "No lock file found"),
        ]
        text = format_correction(failures + extra, Tier.ADVANCED)

        assert "lint" not in text
        assert "security" not in text

    def test_nothing_failed(self):
        assert format_correction([GateOutcome(gate=GateName.LINT, passed=True)], Tier.NINJA) == ""

    def test_gate_without_diagnostics(self):
        text = format_correction([GateOutcome(gate=GateName.BUILD, passed=False)], Tier.ADVANCED)
        assert "(no diagnostic output)" in text


class TestFormatWarning:
    """Tests for warning text"""

    def test_ninja_is_icon_and_message(self):
        assert format_warning("critical", "91%", "ninja") == "🚨 91%"

    def test_advanced_single_line(self):
        text = format_warning(WarningLevel.WARNING, "Token budget >80%.", Tier.ADVANCED)
        assert text == "⚠️ Token budget >80%."
        assert "\n" not in text

    def test_beginner_explains(self):
        text = format_warning(WarningLevel.CRITICAL, "Token budget >90%.", Tier.BEGINNER)

        assert text.startswith("🚨 Important: Token budget >90%.")
        assert "/tw:done" in text
        assert len(text.split("\n")) == 2

    def test_missing_tier(self):
        assert format_warning("info", "hello") == "ℹ️ hello"


class TestInstructionsAndOutput:
    """Tests for tier instructions and output shaping"""

    @pytest.mark.parametrize("tier,mode", [
        ("beginner", "Beginner Mode"),
        ("advanced", "Advanced Mode"),
        ("ninja", "Ninja Mode"),
        (None, "Advanced Mode"),
    ])
    def test_instructions_name_the_mode(self, tier, mode):
        assert mode in get_tier_instructions(tier)

    def test_ninja_strips_headings(self):
        content = "# Title\n\nBody line\n\n\n\n## Section\nMore"
        assert format_output(content, "ninja") == "Body line\n\nMore"

    def test_other_tiers_pass_through(self):
        content = "# Title\nBody"
        assert format_output(content, "beginner") == content
        assert format_output(content, "advanced") == content
