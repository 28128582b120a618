"""
Build Executor
==============
Runs the application's test suite with coverage inside an ephemeral Docker
sandbox container. Returns structured execution results (logs, exit code,
timing).

BOUNDARY RULES (CRITICAL):
    - Executor ONLY observes execution.
    - Executor NEVER decides whether the run continues — the build stage does.
    - Executor NEVER touches the registry; image build/push lives in
      services/image_builder.py.

DOCKER STRATEGY:
    - One container per test run (ephemeral).
    - Source checkout mounted as volume at /workspace, so coverage.xml
      written by the container lands in the checkout on the host.
    - Container destroyed after execution.

DETERMINISM:
    Same checkout + same commands → same executor output.
"""
import time
import uuid
import logging
from dataclasses import dataclass, field
from typing import Optional

import docker
from docker.errors import (
    ContainerError,
    ImageNotFound,
    APIError,
)

from deployer.core.constants import COVERAGE_FILENAME

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Execution Result (returned to the build stage)
# ---------------------------------------------------------------------------
@dataclass
class ExecutionResult:
    """
    Structured output from a single sandboxed test execution.

    Fields
    ------
    exit_code : int
        Process exit code (0 = success, non-zero = failure).
    full_log : str
        Full combined stdout + stderr from the container.
    log_excerpt : str
        Abbreviated log (first + last N lines) for results.json.
    execution_time_seconds : float
        Wall clock duration of the execution.
    command : str
        The shell command that was executed.
    environment_metadata : dict
        Runtime info: image used, container ID, timeout applied.
    error : str | None
        Error message if execution infrastructure failed (not test failures).
    """
    exit_code: int = -1
    full_log: str = ""
    log_excerpt: str = ""
    execution_time_seconds: float = 0.0
    command: str = ""
    environment_metadata: dict = field(default_factory=dict)
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Log Excerpt Helper
# ---------------------------------------------------------------------------
_EXCERPT_HEAD_LINES = 30
_EXCERPT_TAIL_LINES = 30


def create_log_excerpt(full_log: str,
                       head: int = _EXCERPT_HEAD_LINES,
                       tail: int = _EXCERPT_TAIL_LINES) -> str:
    """
    Create an abbreviated log showing the first and last N lines.

    Returns the log unchanged if it is short enough.
    """
    lines = full_log.splitlines()
    total = len(lines)

    if total <= head + tail:
        return full_log

    head_lines = lines[:head]
    tail_lines = lines[-tail:]
    omitted = total - head - tail

    return "\n".join(
        head_lines
        + [f"\n... ({omitted} lines omitted) ...\n"]
        + tail_lines
    )


# ---------------------------------------------------------------------------
# Container Execution
# ---------------------------------------------------------------------------
_MEMORY_LIMIT = "2g"
_CPU_COUNT = 2


def build_coverage_command(
    source_dir: str,
    pattern: str = "test*.py",
    install_command: str = "(test ! -f requirements.txt || pip install -r requirements.txt) && pip install coverage",
) -> str:
    """
    Combine dependency install + coverage-instrumented tests + reports into
    one shell command.

    Uses `set -e` so the shell exits on the first failing step; a failing
    test run therefore never produces a fresh coverage.xml.
    """
    parts = [
        "set -e",
        f"echo '>>> INSTALL' && {install_command}",
        f"echo '>>> TEST' && coverage run -m unittest discover -s {source_dir} -p \"{pattern}\"",
        "echo '>>> COVERAGE' && coverage report",
        f"coverage xml -o {COVERAGE_FILENAME}",
    ]
    return " && ".join(parts)


def run_tests_in_container(
    workspace_path: str,
    docker_image: str,
    working_dir: str = "",
    source_dir: str = "app",
    timeout_seconds: int = 600,
    run_id: str = "",
) -> ExecutionResult:
    """
    Execute the coverage-instrumented test suite inside an ephemeral container.

    Lifecycle:
        1. Build the combined install → test → coverage shell command
        2. Create ephemeral container with the checkout mounted
        3. Wait for completion (bounded by timeout)
        4. Capture logs, exit code, timing
        5. Destroy container

    Parameters
    ----------
    workspace_path : str
        Absolute path to the source checkout on the host.
    docker_image : str
        Image providing the language runtime (e.g. python:3.10-slim).
    working_dir : str
        Sub-directory of the checkout the tests run from ("app").
        coverage.xml is written there.
    source_dir : str
        Directory passed to ``unittest discover -s``, relative to working_dir.
    timeout_seconds : int
        Max execution time before the container is killed.
    run_id : str
        Makes the container name unique per pipeline run.

    Returns
    -------
    ExecutionResult
        Always returned — never raises unhandled exceptions.
        On infrastructure failure, exit_code is -1 and error is set.
    """
    result = ExecutionResult()
    start_time = time.monotonic()

    container = None
    container_workdir = "/workspace"
    if working_dir:
        container_workdir = f"/workspace/{working_dir.strip('/')}"

    shell_cmd = build_coverage_command(source_dir)
    result.command = shell_cmd

    try:
        client = docker.from_env()

        logger.info(
            "Starting test container | image=%s | timeout=%ds | workdir=%s",
            docker_image, timeout_seconds, container_workdir,
        )

        container = client.containers.run(
            image=docker_image,
            command=["bash", "-c", shell_cmd],
            volumes={
                workspace_path: {"bind": "/workspace", "mode": "rw"},
            },
            environment={"CI": "true"},
            working_dir=container_workdir,
            mem_limit=_MEMORY_LIMIT,
            nano_cpus=_CPU_COUNT * 1_000_000_000,
            name=f"deployer-tests-{run_id or uuid.uuid4().hex[:12]}",
            labels={"project": "app-deployer", "role": "tests"},
            detach=True,
            stdout=True,
            stderr=True,
        )

        wait_result = container.wait(timeout=timeout_seconds)
        result.exit_code = wait_result.get("StatusCode", -1)

        log_bytes = container.logs(stdout=True, stderr=True)
        result.full_log = log_bytes.decode("utf-8", errors="replace")

        result.environment_metadata = {
            "image": docker_image,
            "container_id": container.short_id,
            "timeout_applied": timeout_seconds,
            "memory_limit": _MEMORY_LIMIT,
            "cpu_count": _CPU_COUNT,
        }

    except ImageNotFound:
        result.error = f"Docker image '{docker_image}' not found."
        result.exit_code = -1
        logger.error(result.error)

    except ContainerError as e:
        result.error = f"Container execution error: {e}"
        result.exit_code = getattr(e, "exit_status", -1)
        result.full_log = str(e)
        logger.error(result.error)

    except APIError as e:
        result.error = f"Docker API error: {e}"
        result.exit_code = -1
        logger.error(result.error)

    except Exception as e:
        # Catch-all: the build stage must always receive a result
        result.error = f"Unexpected executor error: {type(e).__name__}: {e}"
        result.exit_code = -1
        logger.exception(result.error)

    finally:
        if container is not None:
            try:
                container.remove(force=True)
                logger.info("Container %s destroyed", container.short_id)
            except Exception:
                logger.warning("Failed to remove container", exc_info=True)

    result.execution_time_seconds = round(time.monotonic() - start_time, 3)
    result.log_excerpt = create_log_excerpt(result.full_log)

    logger.info(
        "Test execution complete | exit=%d | time=%.2fs",
        result.exit_code, result.execution_time_seconds,
    )

    return result
