"""
Process execution for quality gates

Runs shell commands inside the project root and reports exit code and
output. Absence of a binary is detectable up front through ``which`` and
never raises.
"""

import asyncio
import os
import shutil
import signal
import time
from pathlib import Path
from typing import Optional

import structlog
from pydantic import BaseModel

logger = structlog.get_logger()

MAX_OUTPUT_CHARS = 20000


class CommandResult(BaseModel):
    """Outcome of a single shell command"""
    command: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0

    @property
    def passed(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part).strip()


class CommandRunner:
    """
    Executes commands for gate checks.

    The timeout bounds worst-case latency of a hung tool; gate logic above
    this layer does not enforce its own.
    """

    def __init__(self, working_directory: str = ".", timeout: int = 300):
        self.working_dir = Path(working_directory).resolve()
        self.timeout = timeout

    def which(self, binary: str) -> bool:
        """Check whether a binary is available on PATH"""
        return shutil.which(binary) is not None

    async def run(self, command: str, timeout: Optional[int] = None) -> CommandResult:
        """Run a shell command and capture its output"""
        timeout = timeout or self.timeout
        start_time = time.time()

        try:
            proc = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self.working_dir),
                start_new_session=True,
            )
        except OSError as e:
            logger.warning("Command could not be started", command=command, error=str(e))
            return CommandResult(command=command, exit_code=127, stderr=str(e))

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            self._kill(proc)
            await proc.wait()
            logger.warning("Command timed out", command=command, timeout=timeout)
            return CommandResult(
                command=command,
                exit_code=-1,
                stderr=f"Command timed out after {timeout}s",
                duration_ms=int((time.time() - start_time) * 1000),
            )

        return CommandResult(
            command=command,
            exit_code=proc.returncode if proc.returncode is not None else 1,
            stdout=stdout.decode("utf-8", errors="replace")[:MAX_OUTPUT_CHARS],
            stderr=stderr.decode("utf-8", errors="replace")[:MAX_OUTPUT_CHARS],
            duration_ms=int((time.time() - start_time) * 1000),
        )

    @staticmethod
    def _kill(proc: asyncio.subprocess.Process) -> None:
        """Kill the shell and every tool it spawned"""
        try:
            if hasattr(os, "killpg"):
                os.killpg(proc.pid, signal.SIGKILL)
            else:
                proc.kill()
        except ProcessLookupError:
            pass
