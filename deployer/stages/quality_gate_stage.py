"""
Quality Gate Stage
==================
Submits source + coverage to the static-analysis service.

Runs only with a BuildOutput in hand, and fetches the coverage artifact
that output names before doing anything else. A missing artifact fails
the stage immediately; analysis is never silently skipped.

Failure policy (advisory):
    - scanner could not submit          → warning, stage succeeds
    - remote gate reports ERROR         → warning, stage succeeds
      unless RunConfig.sonar_blocking is set, then QualityGateBlockedError
    - gate status unavailable           → warning, stage succeeds
"""
import asyncio
import logging
from typing import Callable, List, Optional

from deployer.core.config import Credentials, RunConfig
from deployer.core.constants import STAGE_QUALITY_GATE
from deployer.core.errors import AnalysisSubmissionError, ArtifactNotFoundError, QualityGateBlockedError
from deployer.models.messages import BuildOutput, QualityGateOutput
from deployer.models.pipeline_run import PipelineRun
from deployer.services.artifact_store import ArtifactStore
from deployer.services.repo_service import acquire_source
from deployer.services.static_analysis import SonarClient, read_report_task, submit_analysis

logger = logging.getLogger(__name__)


class QualityGateStage:
    name = STAGE_QUALITY_GATE

    def __init__(
        self,
        config: RunConfig,
        credentials: Credentials,
        artifacts: ArtifactStore,
        source_fn: Callable[..., str] = acquire_source,
        submit_fn: Callable[..., object] = submit_analysis,
        sonar_client: Optional[SonarClient] = None,
    ) -> None:
        self.config = config
        self.credentials = credentials
        self.artifacts = artifacts
        self._acquire = source_fn
        self._submit = submit_fn
        self.sonar_client = sonar_client or SonarClient(
            config.sonar_host_url, credentials.sonar_token.get_secret_value(),
        )

    def _prepare(self, run: PipelineRun, build: BuildOutput) -> str:
        # coverage first: without it there is nothing worth checking out
        if not self.artifacts.exists(build.coverage.name):
            raise ArtifactNotFoundError(
                f"Coverage artifact '{build.coverage.name}' is not available",
                details={"artifact": build.coverage.name},
            )
        workspace = self._acquire(
            run.repo_url, run.revision, self.config.workspace_root,
            self.credentials.github_token.get_secret_value(),
            run_id=run.run_id,
        )
        path = self.artifacts.download(build.coverage.name, workspace)
        if not self.artifacts.verify(build.coverage, path):
            raise ArtifactNotFoundError(
                "Coverage artifact content does not match what the build stored",
                details={"artifact": build.coverage.name},
            )
        return workspace

    async def run(self, run: PipelineRun, build: BuildOutput) -> QualityGateOutput:
        workspace = await asyncio.to_thread(self._prepare, run, build)
        warnings: List[str] = []
        cfg = self.config

        try:
            await asyncio.to_thread(
                self._submit,
                source_dir=workspace,
                project_key=cfg.sonar_project_key,
                organization=cfg.sonar_organization,
                token=self.credentials.sonar_token.get_secret_value(),
                host_url=cfg.sonar_host_url,
                timeout_seconds=cfg.execution_timeout,
            )
        except AnalysisSubmissionError as e:
            logger.warning("[QUALITY] Analysis not submitted: %s", e.message)
            warnings.append(f"analysis not submitted: {e.message}")
            return QualityGateOutput(submitted=False, warnings=warnings)

        logger.info("[QUALITY] Analysis submitted for %s", run.revision[:7])

        task_url = read_report_task(workspace).get("ceTaskUrl", "")
        gate_status = None
        if task_url:
            gate_status = await self.sonar_client.wait_for_quality_gate(task_url)
        if gate_status is None:
            warnings.append("quality gate status unavailable")
        elif gate_status == "ERROR":
            if cfg.sonar_blocking:
                raise QualityGateBlockedError(
                    "Static analysis quality gate failed",
                    details={"project": cfg.sonar_project_key},
                )
            warnings.append("quality gate failed (advisory)")

        logger.info("[QUALITY] Gate status: %s", gate_status or "unknown")
        return QualityGateOutput(submitted=True, gate_status=gate_status, warnings=warnings)
