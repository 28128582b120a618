"""
Static Analysis Service
=======================
Submits source + coverage to SonarCloud and reads back its quality gate.

NO ANALYSIS LOGIC HERE. ``sonar-scanner`` does the analysis; this module
only builds its invocation and, afterwards, asks the service how the
analysis came out.

SUBMISSION CONTRACT:
  submit_analysis(...) -> CommandResult
    - projectKey / organization / sources / coverage path go on argv
    - the token goes in the SONAR_TOKEN environment variable only
    - raises AnalysisSubmissionError (non-fatal kind) on scanner failure

GATE STATUS CONTRACT:
  SonarClient.wait_for_quality_gate(task_url) -> "OK" | "WARN" | "ERROR" | "NONE" | None
    - polls the compute-engine task with exponential backoff
    - None means the status could not be determined (timeout, HTTP error,
      unreadable body)
    - never raises: the result is advisory
"""
import asyncio
import logging
import os
import time
from typing import Callable, Dict, List, Optional

import httpx

from deployer.core.constants import COVERAGE_FILENAME
from deployer.core.errors import AnalysisSubmissionError
from deployer.executor.command_runner import CommandResult, check_result, run_command

logger = logging.getLogger(__name__)

REPORT_TASK_FILE = os.path.join(".scannerwork", "report-task.txt")

_TASK_DONE = {"SUCCESS", "FAILED", "CANCELED"}


def build_scanner_command(
    project_key: str,
    organization: str,
    host_url: str,
    sources: str = ".",
    coverage_path: str = COVERAGE_FILENAME,
) -> List[str]:
    return [
        "sonar-scanner",
        f"-Dsonar.projectKey={project_key}",
        f"-Dsonar.organization={organization}",
        f"-Dsonar.host.url={host_url}",
        f"-Dsonar.sources={sources}",
        f"-Dsonar.python.coverage.reportPaths={coverage_path}",
    ]


def submit_analysis(
    source_dir: str,
    project_key: str,
    organization: str,
    token: str,
    host_url: str,
    coverage_path: str = COVERAGE_FILENAME,
    timeout_seconds: int = 600,
    runner: Optional[Callable[..., CommandResult]] = None,
) -> CommandResult:
    """
    Run sonar-scanner from ``source_dir``.

    Raises
    ------
    AnalysisSubmissionError
        If configuration is incomplete or the scanner exits non-zero.
    """
    if not project_key or not organization:
        raise AnalysisSubmissionError(
            "Static analysis project key / organization not configured",
        )
    if not token:
        raise AnalysisSubmissionError("Static analysis token not configured")

    runner = runner or run_command
    result = runner(
        build_scanner_command(project_key, organization, host_url, ".", coverage_path),
        cwd=source_dir,
        env={"SONAR_TOKEN": token},
        timeout_seconds=timeout_seconds,
    )
    return check_result(result, AnalysisSubmissionError, "Static analysis submission failed")


def read_report_task(source_dir: str) -> Dict[str, str]:
    """
    Parse ``.scannerwork/report-task.txt`` (key=value lines) written by the
    scanner. Returns {} if the file is absent.
    """
    path = os.path.join(source_dir, REPORT_TASK_FILE)
    if not os.path.isfile(path):
        return {}
    values: Dict[str, str] = {}
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            key, sep, value = line.strip().partition("=")
            if sep:
                values[key] = value
    return values


class SonarClient:
    """
    Reads analysis results back from SonarCloud.
    """

    def __init__(self, host_url: str, token: str = "") -> None:
        self.host_url = host_url.rstrip("/")
        self.headers = {"Accept": "application/json", "User-Agent": "app-deployer"}
        if token:
            self.headers["Authorization"] = f"Bearer {token}"

    async def wait_for_quality_gate(
        self,
        task_url: str,
        timeout_seconds: int = 300,
    ) -> Optional[str]:
        """
        Poll the compute-engine task until it finishes, then fetch the gate
        status for the resulting analysis.
        """
        start_time = time.time()
        backoff = 2.0

        async with httpx.AsyncClient(headers=self.headers, timeout=20.0) as client:
            while (time.time() - start_time) < timeout_seconds:
                try:
                    response = await client.get(task_url)
                    response.raise_for_status()
                    task = response.json().get("task", {})
                    status = task.get("status", "")

                    if status in _TASK_DONE:
                        if status != "SUCCESS":
                            logger.warning("Analysis task ended with status %s", status)
                            return None
                        return await self._fetch_gate_status(client, task.get("analysisId", ""))

                    logger.info("Analysis task status: %s", status or "unknown")

                except httpx.HTTPStatusError as http_err:
                    status_code = http_err.response.status_code
                    if 400 <= status_code < 500:
                        # 4xx = permanent (bad token, unknown task)
                        logger.error("Quality gate polling aborted: HTTP %d", status_code)
                        return None
                    logger.error("Quality gate polling server error (HTTP %d), retrying", status_code)
                except httpx.HTTPError as e:
                    logger.error("Error polling analysis task: %s", e)
                except (ValueError, AttributeError) as e:
                    # non-JSON body or JSON that is not an object
                    logger.error("Unreadable response from analysis service: %s", e)
                    return None

                await asyncio.sleep(backoff)
                backoff = min(backoff * 1.5, 15.0)

        logger.warning("Timed out waiting for analysis task after %ds", timeout_seconds)
        return None

    async def _fetch_gate_status(self, client: httpx.AsyncClient, analysis_id: str) -> Optional[str]:
        if not analysis_id:
            return None
        response = await client.get(
            f"{self.host_url}/api/qualitygates/project_status",
            params={"analysisId": analysis_id},
        )
        response.raise_for_status()
        return response.json().get("projectStatus", {}).get("status")
