"""
Pipeline Orchestrator
=====================
Runs one PipelineRun through Build → Quality Gate → Deploy.

Ordering:
    - Strictly sequential; no two stages run at once.
    - Quality Gate receives the BuildOutput as an argument.
    - Deploy receives both the BuildOutput and the QualityGateOutput.
    - A stage is only started when every stage it needs succeeded.

Failure handling:
    - First PipelineError halts the run; remaining stages are SKIPPED.
    - Run status names the first failing stage and its error kind.
    - No retries, no rollback.
    - Artifacts and the checkout of a failed run are kept for diagnosis; a
      successful run removes both.
    - Each run writes its own <results_dir>/<run_id>.json.

Configuration:
    RunConfig and Credentials are built once per run and handed to each
    stage at construction. Secrets are registered with the log masking
    filter before any stage starts.
"""
import os
import time
import logging
from datetime import datetime, timezone
from typing import Optional

from deployer.core.config import Credentials, RunConfig, load_credentials, load_run_config
from deployer.core.constants import STAGE_BUILD, STAGE_DEPLOY, STAGE_ORDER, STAGE_QUALITY_GATE
from deployer.core.errors import PipelineError
from deployer.models.pipeline_run import PipelineRun
from deployer.models.stage_result import StageResult, StageStatus
from deployer.services.artifact_store import ArtifactStore
from deployer.services.repo_service import release_workspace
from deployer.services.results_writer import ResultsWriter
from deployer.stages.build_stage import BuildStage
from deployer.stages.deploy_stage import DeployStage
from deployer.stages.quality_gate_stage import QualityGateStage
from deployer.state.pipeline_state import PipelineState
from deployer.utils.logging_config import register_secrets

logger = logging.getLogger(__name__)


class PipelineOrchestrator:
    """
    Coordinates the three stages for a single run.

    Stages may be passed in pre-built (tests); otherwise they are created
    from the run's config, credentials and artifact store.
    """

    def __init__(
        self,
        config: Optional[RunConfig] = None,
        credentials: Optional[Credentials] = None,
        build_stage: Optional[BuildStage] = None,
        quality_gate_stage: Optional[QualityGateStage] = None,
        deploy_stage: Optional[DeployStage] = None,
        results_path: Optional[str] = None,
    ) -> None:
        self.config = config or load_run_config()
        self.credentials = credentials or load_credentials()
        self._build_stage = build_stage
        self._quality_gate_stage = quality_gate_stage
        self._deploy_stage = deploy_stage
        self.results_path = results_path

    def _stages_for(self, artifacts: ArtifactStore):
        build = self._build_stage or BuildStage(self.config, self.credentials, artifacts)
        quality = self._quality_gate_stage or QualityGateStage(self.config, self.credentials, artifacts)
        deploy = self._deploy_stage or DeployStage(self.config, self.credentials)
        return build, quality, deploy

    @staticmethod
    def _start(result: StageResult) -> float:
        result.status = StageStatus.RUNNING
        result.started_at = datetime.now(timezone.utc)
        return time.monotonic()

    @staticmethod
    def _finish(result: StageResult, status: StageStatus, summary: str, started: float) -> None:
        result.status = status
        result.summary = summary
        result.finished_at = datetime.now(timezone.utc)
        result.duration_seconds = round(time.monotonic() - started, 3)

    def _fail(self, state: PipelineState, stage: str, error: dict, started: float) -> None:
        result = state["stages"][stage]
        result.error = error
        self._finish(result, StageStatus.FAILED, error.get("message", ""), started)
        state["status"] = "failed"
        state["failed_stage"] = stage
        state["error"] = error
        state["execution_summary"] = f"Stage '{stage}' failed ({error.get('kind')}): {error.get('message')}"
        for name in STAGE_ORDER[STAGE_ORDER.index(stage) + 1:]:
            skipped = state["stages"][name]
            skipped.status = StageStatus.SKIPPED
            skipped.summary = f"skipped: '{stage}' failed"

    async def run(self, run: PipelineRun) -> PipelineState:
        """Execute all stages for ``run`` and return the final state."""
        register_secrets(self.credentials.secret_values())

        state: PipelineState = {
            "run": run,
            "workspace_path": "",
            "stages": {name: StageResult(stage=name) for name in STAGE_ORDER},
            "build_output": None,
            "quality_gate_output": None,
            "deploy_output": None,
            "start_time": time.time(),
            "status": "running",
            "failed_stage": "",
            "error": None,
            "execution_summary": "",
        }

        artifacts = ArtifactStore(self.config.artifact_root, run.run_id)
        build_stage, quality_stage, deploy_stage = self._stages_for(artifacts)

        logger.info(
            "Pipeline run %s started | branch=%s | revision=%s | action=%s",
            run.run_id[:8], run.branch, run.revision[:7], self.config.infra_action.value,
        )

        current = STAGE_BUILD
        started = 0.0
        try:
            # ===========================================================
            # 1. Build-and-Verify
            # ===========================================================
            started = self._start(state["stages"][STAGE_BUILD])
            build = await build_stage.run(run)
            state["build_output"] = build
            state["workspace_path"] = getattr(build_stage, "workspace_path", "")
            self._finish(state["stages"][STAGE_BUILD], StageStatus.SUCCESS,
                         f"Published {build.image_ref}", started)

            # ===========================================================
            # 2. Quality Gate
            # ===========================================================
            current = STAGE_QUALITY_GATE
            started = self._start(state["stages"][STAGE_QUALITY_GATE])
            quality = await quality_stage.run(run, build)
            state["quality_gate_output"] = quality
            state["stages"][STAGE_QUALITY_GATE].warnings = list(quality.warnings)
            self._finish(state["stages"][STAGE_QUALITY_GATE], StageStatus.SUCCESS,
                         f"Analysis submitted={quality.submitted}, gate={quality.gate_status or 'unknown'}",
                         started)

            # ===========================================================
            # 3. Deploy
            # ===========================================================
            current = STAGE_DEPLOY
            started = self._start(state["stages"][STAGE_DEPLOY])
            deployed = await deploy_stage.run(run, build, quality)
            state["deploy_output"] = deployed
            self._finish(state["stages"][STAGE_DEPLOY], StageStatus.SUCCESS,
                         f"terraform {deployed.infra_action.value}, {deployed.task_definition_arn}",
                         started)

            state["status"] = "success"
            state["execution_summary"] = f"Deployed {build.image_ref} ({deployed.infra_action.value})."
            artifacts.purge()
            release_workspace(self.config.workspace_root, run.run_id)

        except PipelineError as e:
            logger.error("Stage '%s' failed: %s", current, e.message)
            self._fail(state, current, e.to_dict(), started)

        except Exception as e:
            logger.error("Stage '%s' crashed: %s", current, e, exc_info=True)
            self._fail(state, current, {
                "kind": "unexpected",
                "message": f"{type(e).__name__}: {e}",
                "fatal": True,
                "details": {},
            }, started)

        results_path = self.results_path or os.path.join(self.config.results_dir, f"{run.run_id}.json")
        ResultsWriter.write_results(state, results_path)

        logger.info("Pipeline run %s complete. Status: %s", run.run_id[:8], state["status"])
        return state
