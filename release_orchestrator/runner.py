"""Command runner for pipeline steps.

This module handles:
- Executing step commands with subprocess
- Capturing combined stdout/stderr to per-step log files
- Redacting secret values from anything written to logs
- Enforcing step timeouts
- Dry-run mode, where commands are logged but not executed
"""

from __future__ import annotations

import logging
import os
import re
import shlex
import shutil
import subprocess
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from release_orchestrator.errors import (
    STEP_TIMEOUT,
    StepExecutionError,
    ToolchainError,
)

logger = logging.getLogger(__name__)

REDACTED = "***"

# Lines of output kept on the result for error messages
OUTPUT_TAIL_LINES = 20

_UNSAFE_LOG_NAME = re.compile(r"[^a-zA-Z0-9_.\-]+")


@dataclass
class CommandResult:
    """Result of a command execution.

    Attributes:
        success: Whether the command exited with status 0.
        exit_code: Process exit code.
        command: The executed command, secrets redacted.
        log_path: Path to the step log file.
        output: Combined stdout/stderr, secrets redacted.
        started_at: Start time.
        finished_at: Finish time.
    """

    success: bool
    exit_code: int
    command: str
    log_path: Path
    output: str
    started_at: datetime
    finished_at: datetime

    @property
    def output_tail(self) -> str:
        """Return the last lines of output."""
        return "\n".join(self.output.splitlines()[-OUTPUT_TAIL_LINES:])


def redact(text: str, secrets: Iterable[str]) -> str:
    """Replace every secret value in text with a placeholder.

    Args:
        text: Text to scrub.
        secrets: Secret values; empty values are ignored.

    Returns:
        Text with secrets replaced by '***'.
    """
    # Longest first so a secret containing another is fully masked
    for secret in sorted((s for s in secrets if s), key=len, reverse=True):
        text = text.replace(secret, REDACTED)
    return text


def step_log_name(step: str) -> str:
    """Return a filesystem-safe log filename for a step name."""
    return _UNSAFE_LOG_NAME.sub("-", step).strip("-") + ".log"


def require_tools(tools: Sequence[str], step: str = "toolchain") -> dict[str, str]:
    """Check that executables are available on PATH.

    Args:
        tools: Executable names.
        step: Step name reported on failure.

    Returns:
        Mapping of tool name to resolved path.

    Raises:
        ToolchainError: If any tool is missing.
    """
    found: dict[str, str] = {}
    missing: list[str] = []
    for tool in tools:
        path = shutil.which(tool)
        if path is None:
            missing.append(tool)
        else:
            found[tool] = path
    if missing:
        raise ToolchainError(
            f"Required tools not found on PATH: {', '.join(missing)}",
            step=step,
        )
    return found


class CommandRunner:
    """Runs step commands and records their output.

    One runner is used per pipeline; its log directory holds one log file
    per step, and commands belonging to the same step are appended to it.
    """

    def __init__(
        self,
        logs_dir: Path,
        dry_run: bool = False,
        timeout: int | None = None,
        secrets: Iterable[str] = (),
    ) -> None:
        self.logs_dir = logs_dir
        self.dry_run = dry_run
        self.timeout = timeout
        self.secrets = [s for s in secrets if s]

    def add_secret(self, value: str | None) -> None:
        """Register an additional value to redact from logs."""
        if value and value not in self.secrets:
            self.secrets.append(value)

    def log_path_for(self, step: str) -> Path:
        """Return the log file path for a step."""
        return self.logs_dir / step_log_name(step)

    def run(
        self,
        step: str,
        cmd: Sequence[str],
        cwd: Path | None = None,
        env: dict[str, str] | None = None,
        input_text: str | None = None,
    ) -> CommandResult:
        """Execute a command for a step.

        Args:
            step: Step name, used for the log file.
            cmd: Command as list of strings.
            cwd: Working directory.
            env: Environment variable overrides merged over os.environ.
            input_text: Optional text passed on stdin.

        Returns:
            CommandResult with execution details. A non-zero exit is
            reported through `success`, not raised.

        Raises:
            StepExecutionError: If the command cannot be started or times out.
        """
        self.logs_dir.mkdir(parents=True, exist_ok=True)
        log_path = self.log_path_for(step)
        cmd_str = redact(shlex.join(cmd), self.secrets)

        started_at = datetime.now(timezone.utc)
        logger.info("[%s] %s%s", step, "(dry-run) " if self.dry_run else "", cmd_str)

        with log_path.open("a", encoding="utf-8") as log_file:
            log_file.write(f"# Command: {cmd_str}\n")
            log_file.write(f"# Started: {started_at.isoformat()}\n")
            log_file.write(f"# CWD: {cwd or Path.cwd()}\n")
            log_file.write("# " + "=" * 70 + "\n\n")

        if self.dry_run:
            finished_at = datetime.now(timezone.utc)
            self._write_footer(log_path, "", 0, started_at, finished_at)
            return CommandResult(
                success=True,
                exit_code=0,
                command=cmd_str,
                log_path=log_path,
                output="",
                started_at=started_at,
                finished_at=finished_at,
            )

        run_env: dict[str, str] | None = None
        if env:
            run_env = dict(os.environ)
            run_env.update(env)

        try:
            result = subprocess.run(
                list(cmd),
                cwd=cwd,
                input=input_text,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=self.timeout,
                env=run_env,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            message = f"Step '{step}' timed out after {self.timeout} seconds"
            logger.error("%s. See log: %s", message, log_path)
            with log_path.open("a", encoding="utf-8") as log_file:
                log_file.write(f"\n# TIMEOUT after {self.timeout} seconds\n")
            raise StepExecutionError(
                message, exit_code=-1, code=STEP_TIMEOUT, step=step
            ) from e
        except OSError as e:
            message = f"Failed to execute {cmd[0]}: {e}"
            logger.error(message)
            raise StepExecutionError(message, step=step) from e

        finished_at = datetime.now(timezone.utc)
        output = redact(result.stdout or "", self.secrets)
        self._write_footer(log_path, output, result.returncode, started_at, finished_at)

        if result.returncode != 0:
            logger.error(
                "[%s] command exited with %d. See log: %s",
                step,
                result.returncode,
                log_path,
            )

        return CommandResult(
            success=result.returncode == 0,
            exit_code=result.returncode,
            command=cmd_str,
            log_path=log_path,
            output=output,
            started_at=started_at,
            finished_at=finished_at,
        )

    @staticmethod
    def _write_footer(
        log_path: Path,
        output: str,
        exit_code: int,
        started_at: datetime,
        finished_at: datetime,
    ) -> None:
        with log_path.open("a", encoding="utf-8") as log_file:
            if output:
                log_file.write(output)
                if not output.endswith("\n"):
                    log_file.write("\n")
            log_file.write(f"\n# Finished: {finished_at.isoformat()}\n")
            log_file.write(f"# Exit code: {exit_code}\n")
            duration = (finished_at - started_at).total_seconds()
            log_file.write(f"# Duration: {duration:.1f}s\n\n")


__all__ = [
    "REDACTED",
    "CommandResult",
    "CommandRunner",
    "redact",
    "require_tools",
    "step_log_name",
]
