"""
Quality Gate Runner

Runs the configured checks (typecheck, lint, tests, build, security) against
the project and aggregates them into a single pass/fail outcome.

- Tools are auto-detected from the project's manifests. A missing tool or
  manifest skips the gate instead of failing it.
- Gates run concurrently; results are always reported in gate order.
- Results are cached per (content version, build flag).
"""

import asyncio
import json
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog
from pydantic import Field

from threadwork.core.context import ProjectContext
from threadwork.core.errors import guard_async
from threadwork.core.process import CommandResult
from threadwork.core.state import GATE_CACHE_FILE, QUALITY_CONFIG_FILE, StateRecord
from threadwork.ralph.models import (
    GATE_ORDER,
    GateName,
    GateOutcome,
    GateRunResult,
    QualityGateConfig,
)

logger = structlog.get_logger()

MAX_CACHE_ENTRIES = 50
MAX_LINE_LENGTH = 200

PYTHON_MANIFESTS = ("pyproject.toml", "setup.py", "setup.cfg", "requirements.txt")
ESLINT_CONFIGS = (
    ".eslintrc.js",
    ".eslintrc.cjs",
    ".eslintrc.json",
    "eslint.config.js",
    "eslint.config.mjs",
)
LOCK_FILES = ("package-lock.json", "yarn.lock", "pnpm-lock.yaml")

COVERAGE_PATTERNS = [
    re.compile(r"^TOTAL\s+.*?(\d+(?:\.\d+)?)%\s*$", re.MULTILINE),
    re.compile(r"(\d+(?:\.\d+)?)\s*%\s*(?:branch|statement|line|coverage)", re.IGNORECASE),
]

# pytest exits 5 when no tests were collected
PYTEST_NO_TESTS = 5


class GateCache(StateRecord):
    """Last result per cache key (.gate-cache.json)"""
    entries: Dict[str, GateRunResult] = Field(default_factory=dict)


def cache_key(version: str, include_build: bool) -> str:
    return f"{version}-{'build' if include_build else 'nobuild'}"


def extract_lines(
    output: str,
    matches: Callable[[str], bool],
    limit: int,
) -> List[str]:
    """First ``limit`` distinct, stripped lines accepted by ``matches``"""
    found: List[str] = []
    for line in output.split("\n"):
        line = line.strip()[:MAX_LINE_LENGTH]
        if line and matches(line) and line not in found:
            found.append(line)
            if len(found) >= limit:
                break
    return found


def parse_coverage(output: str) -> Optional[float]:
    for pattern in COVERAGE_PATTERNS:
        match = pattern.search(output)
        if match:
            return float(match.group(1))
    return None


def _has_error(line: str) -> bool:
    return "error" in line.lower()


class GateRunner:
    """
    Executes quality gates for a project.

    Every check returns a ``GateOutcome`` and never raises; unexpected
    faults inside a check degrade to a skipped gate.
    """

    def __init__(self, context: ProjectContext):
        self.context = context
        self.root = context.root
        self.runner = context.runner
        self.max_diagnostics = context.settings.max_diagnostics

        self._checks: Dict[GateName, Callable[[QualityGateConfig], Awaitable[GateOutcome]]] = {
            GateName.TYPECHECK: self.run_typecheck,
            GateName.LINT: self.run_lint,
            GateName.TESTS: self.run_tests,
            GateName.BUILD: self.run_build,
            GateName.SECURITY: self.run_security,
        }

    def load_config(self) -> QualityGateConfig:
        return self.context.store.read(QUALITY_CONFIG_FILE, QualityGateConfig)

    async def run_all(
        self,
        skip_cache: bool = False,
        include_build: bool = False,
    ) -> GateRunResult:
        """
        Run every configured gate.

        Args:
            skip_cache: Ignore any cached result and overwrite it
            include_build: Run the build gate even if disabled in config

        Returns:
            Aggregate result; ``passed`` is the AND over enabled, blocking,
            non-skipped gates
        """
        version = await self.context.version_provider.current_version()
        key = cache_key(version, include_build)

        if not skip_cache:
            cached = self._read_cache().entries.get(key)
            if cached is not None:
                logger.info("Gate cache hit", key=key, passed=cached.passed)
                return cached.model_copy(update={"cached": True})

        config = self.load_config()
        logger.info("Running quality gates", key=key, skip_cache=skip_cache)

        outcomes = await asyncio.gather(
            *(self._run_gate(gate, config, include_build) for gate in GATE_ORDER)
        )

        passed = all(o.passed for o in outcomes if not o.skipped and o.blocking)
        result = GateRunResult(passed=passed, results=list(outcomes))

        errored = [o.gate.value for o in outcomes if o.errored]
        if errored:
            # A faulted check is not a verdict on this content version
            logger.warning("Gate checks errored, result not cached", key=key, errored=errored)
        else:
            self._write_cache(key, result)

        logger.info(
            "Quality gates finished",
            passed=passed,
            failed=[o.gate.value for o in result.failing],
            skipped=[o.gate.value for o in outcomes if o.skipped],
        )
        return result

    async def _run_gate(
        self,
        gate: GateName,
        config: QualityGateConfig,
        include_build: bool,
    ) -> GateOutcome:
        setting = config.setting(gate)
        enabled = setting.enabled or (gate == GateName.BUILD and include_build)

        if not enabled:
            return GateOutcome.skip(gate, "Disabled in quality config", blocking=setting.blocking)

        outcome = await guard_async(
            lambda: self._checks[gate](config),
            fallback=lambda: GateOutcome.skip(gate, "Gate check errored", errored=True),
            event="Gate check raised",
            gate=gate.value,
        )
        outcome = outcome.model_copy(update={"blocking": setting.blocking})

        logger.debug(
            "Gate finished",
            gate=gate.value,
            passed=outcome.passed,
            skipped=outcome.skipped,
            reason=outcome.reason,
        )
        return outcome

    # Cache

    def _read_cache(self) -> GateCache:
        return self.context.store.read(GATE_CACHE_FILE, GateCache)

    def _write_cache(self, key: str, result: GateRunResult) -> None:
        cache = self._read_cache()
        cache.entries[key] = result
        if len(cache.entries) > MAX_CACHE_ENTRIES:
            newest = sorted(cache.entries.items(), key=lambda kv: kv[1].ran_at)
            cache.entries = dict(newest[-MAX_CACHE_ENTRIES:])
        self.context.store.write(GATE_CACHE_FILE, cache)

    # Project detection

    def _exists(self, *names: str) -> bool:
        return any((self.root / name).exists() for name in names)

    def _is_python_project(self) -> bool:
        return self._exists(*PYTHON_MANIFESTS)

    def _package_json(self) -> Optional[Dict[str, Any]]:
        path = self.root / "package.json"
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("Unreadable package.json", path=str(path))
            return {}
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _has_dependency(pkg: Dict[str, Any], name: str) -> bool:
        return any(name in (pkg.get(section) or {}) for section in ("dependencies", "devDependencies"))

    # Outcome helpers

    def _outcome(
        self,
        gate: GateName,
        result: CommandResult,
        diagnostics: List[str],
        passed: Optional[bool] = None,
    ) -> GateOutcome:
        passed = result.passed if passed is None else passed
        if not passed and not diagnostics:
            diagnostics = [f"`{result.command}` exited with code {result.exit_code}"]
            tail = [line for line in result.output.split("\n") if line.strip()]
            if tail:
                diagnostics.append(tail[-1].strip()[:MAX_LINE_LENGTH])
        return GateOutcome(
            gate=gate,
            passed=passed,
            diagnostics=diagnostics[: self.max_diagnostics],
            command=result.command,
            duration_ms=result.duration_ms,
        )

    # Gates

    async def run_typecheck(self, config: QualityGateConfig) -> GateOutcome:
        gate = GateName.TYPECHECK

        if self._exists("tsconfig.json"):
            if not self.runner.which("tsc"):
                return GateOutcome.skip(gate, "tsc not installed")
            result = await self.runner.run("tsc --noEmit")
            errors = extract_lines(result.output, lambda line: "error TS" in line, self.max_diagnostics)
            return self._outcome(gate, result, errors)

        if self._is_python_project():
            if not self.runner.which("mypy"):
                return GateOutcome.skip(gate, "mypy not installed")
            result = await self.runner.run("mypy .")
            errors = extract_lines(result.output, lambda line: ": error:" in line, self.max_diagnostics)
            return self._outcome(gate, result, errors)

        return GateOutcome.skip(gate, "No tsconfig.json or Python project found")

    async def run_lint(self, config: QualityGateConfig) -> GateOutcome:
        gate = GateName.LINT
        command = None

        if self._exists(*ESLINT_CONFIGS) and self.runner.which("npx"):
            command = "npx eslint . --max-warnings 0 --format compact"
        elif self._exists("biome.json") and self.runner.which("npx"):
            command = "npx biome check ."
        elif self._is_python_project() and self.runner.which("ruff"):
            command = "ruff check ."
        elif self.runner.which("oxlint"):
            command = "oxlint ."

        if command is None:
            return GateOutcome.skip(gate, "No linter configured")

        result = await self.runner.run(command)
        if command.startswith("ruff"):
            ruff_line = re.compile(r"^.+:\d+:\d+: ")
            errors = extract_lines(result.output, lambda line: bool(ruff_line.match(line)), self.max_diagnostics)
        else:
            errors = extract_lines(result.output, _has_error, self.max_diagnostics)
        return self._outcome(gate, result, errors)

    async def run_tests(self, config: QualityGateConfig) -> GateOutcome:
        gate = GateName.TESTS
        pkg = self._package_json()
        pytest_run = False

        if pkg is not None:
            if not (pkg.get("scripts") or {}).get("test"):
                return GateOutcome.skip(gate, "No test script in package.json")
            if not self.runner.which("npm"):
                return GateOutcome.skip(gate, "npm not installed")
            if self._has_dependency(pkg, "jest"):
                command = "npx jest --passWithNoTests"
            elif self._has_dependency(pkg, "vitest"):
                command = "npx vitest run"
            else:
                command = "npm test -- --passWithNoTests"
        elif self._is_python_project():
            if not self.runner.which("pytest"):
                return GateOutcome.skip(gate, "pytest not installed")
            command = "pytest -q"
            pytest_run = True
        else:
            return GateOutcome.skip(gate, "No package.json or Python project found")

        result = await self.runner.run(command)
        passed = result.passed or (pytest_run and result.exit_code == PYTEST_NO_TESTS)

        if pytest_run:
            failures = extract_lines(
                result.output,
                lambda line: line.startswith("FAILED") or line.startswith("ERROR "),
                self.max_diagnostics,
            )
        else:
            failures = extract_lines(
                result.output,
                lambda line: "FAIL" in line or "✗" in line or "× " in line,
                self.max_diagnostics,
            )

        coverage = parse_coverage(result.output)
        min_coverage = config.tests.min_coverage
        if coverage is not None and coverage < min_coverage:
            passed = False
            failures.insert(0, f"Coverage {coverage:g}% is below the minimum {min_coverage:g}%")

        outcome = self._outcome(gate, result, failures, passed=passed)
        return outcome.model_copy(update={"coverage": coverage})

    async def run_build(self, config: QualityGateConfig) -> GateOutcome:
        gate = GateName.BUILD
        pkg = self._package_json()

        if pkg is not None and (pkg.get("scripts") or {}).get("build") and self.runner.which("npm"):
            command = "npm run build"
        elif self._exists("go.mod") and self.runner.which("go"):
            command = "go build ./..."
        elif self._exists("Cargo.toml") and self.runner.which("cargo"):
            command = "cargo build"
        else:
            return GateOutcome.skip(gate, "No build script found")

        result = await self.runner.run(command)
        errors = extract_lines(result.output, _has_error, self.max_diagnostics)
        return self._outcome(gate, result, errors)

    async def run_security(self, config: QualityGateConfig) -> GateOutcome:
        gate = GateName.SECURITY

        if self._exists(*LOCK_FILES):
            if not self.runner.which("npm"):
                return GateOutcome.skip(gate, "npm not installed")
            result = await self.runner.run("npm audit --audit-level high --json")
            return self._outcome(gate, result, self._npm_audit_findings(result.stdout))

        if self._is_python_project():
            if not self.runner.which("pip-audit"):
                return GateOutcome.skip(gate, "pip-audit not installed")
            result = await self.runner.run("pip-audit")
            advisory = re.compile(r"\b(PYSEC|GHSA|CVE)-")
            findings = extract_lines(result.output, lambda line: bool(advisory.search(line)), self.max_diagnostics)
            return self._outcome(gate, result, findings)

        return GateOutcome.skip(gate, "No lock file found")

    def _npm_audit_findings(self, output: str) -> List[str]:
        try:
            data = json.loads(output)
        except ValueError:
            return []
        if not isinstance(data, dict):
            return []
        vulns = data.get("vulnerabilities") or {}
        findings = [
            f"{name} ({info.get('severity')})"
            for name, info in vulns.items()
            if isinstance(info, dict) and info.get("severity") in ("high", "critical")
        ]
        return findings[: self.max_diagnostics]


def run_gates(
    context: ProjectContext,
    skip_cache: bool = False,
    include_build: bool = False,
) -> GateRunResult:
    """Synchronous entry point for callers outside an event loop"""
    return asyncio.run(GateRunner(context).run_all(skip_cache=skip_cache, include_build=include_build))
