"""
Command Runner
==============
Runs external CLI tools (git, trivy, sonar-scanner, terraform) on the host
and returns structured results.

BOUNDARY RULES:
    - Runner ONLY executes and captures.
    - Runner NEVER interprets tool output — callers own that.
    - Runner NEVER raises on a non-zero exit; ``check_result`` does, at the
      call site that knows which PipelineError applies.
    - Secrets reach tools through ``env`` only, never through argv, so they
      cannot leak via the logged command line.
"""
import os
import shlex
import subprocess
import time
import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence, Type

from deployer.core.config import DEFAULT_EXECUTION_TIMEOUT
from deployer.core.errors import CommandExecutionError, PipelineError
from deployer.executor.build_executor import create_log_excerpt

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """
    Outcome of one CLI invocation.

    Fields
    ------
    args : list[str]
        The argv that was executed.
    exit_code : int
        Process exit code; -1 if the process could not be started or timed out.
    stdout / stderr : str
        Captured output.
    execution_time_seconds : float
        Wall clock duration.
    error : str | None
        Infrastructure error (binary missing, timeout), not tool failures.
    """
    args: list = field(default_factory=list)
    exit_code: int = -1
    stdout: str = ""
    stderr: str = ""
    execution_time_seconds: float = 0.0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and self.error is None

    @property
    def log_excerpt(self) -> str:
        return create_log_excerpt((self.stdout or "") + (self.stderr or ""))


def run_command(
    args: Sequence[str],
    cwd: Optional[str] = None,
    env: Optional[dict] = None,
    timeout_seconds: int = DEFAULT_EXECUTION_TIMEOUT,
) -> CommandResult:
    """
    Execute ``args`` synchronously and capture its output.

    ``env`` entries are layered over the current process environment.
    Always returns a CommandResult; never raises.
    """
    result = CommandResult(args=list(args))
    start = time.monotonic()
    full_env = None
    if env:
        full_env = dict(os.environ)
        full_env.update(env)

    logger.info("Running: %s (cwd=%s)", shlex.join(args), cwd or ".")
    try:
        proc = subprocess.run(
            list(args),
            cwd=cwd,
            env=full_env,
            capture_output=True,
            text=True,
            timeout=timeout_seconds,
        )
        result.exit_code = proc.returncode
        result.stdout = proc.stdout or ""
        result.stderr = proc.stderr or ""
    except FileNotFoundError:
        result.error = f"Executable not found: {args[0]}"
        logger.error(result.error)
    except subprocess.TimeoutExpired as e:
        result.error = f"Command timed out after {timeout_seconds}s: {args[0]}"
        result.stdout = e.stdout if isinstance(e.stdout, str) else ""
        result.stderr = e.stderr if isinstance(e.stderr, str) else ""
        logger.error(result.error)

    result.execution_time_seconds = round(time.monotonic() - start, 3)
    logger.info(
        "Finished: %s | exit=%d | time=%.2fs",
        args[0], result.exit_code, result.execution_time_seconds,
    )
    return result


def check_result(
    result: CommandResult,
    error_cls: Type[PipelineError] = CommandExecutionError,
    message: str = "",
) -> CommandResult:
    """Raise ``error_cls`` unless the command succeeded."""
    if result.ok:
        return result
    text = message or f"{result.args[0] if result.args else 'command'} failed"
    raise error_cls(
        f"{text} (exit {result.exit_code})",
        details={
            "command": " ".join(result.args[:2]),
            "exit_code": result.exit_code,
            "error": result.error,
            "log_excerpt": result.log_excerpt,
        },
    )
