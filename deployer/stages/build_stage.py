"""
Build-and-Verify Stage
======================
First stage of every run. Turns a revision into a scanned, published image.

Steps (each a hard dependency on the previous):
    1. Acquire source at full history depth
    2. Compute the version tag
    3. Run tests with coverage in a sandbox container
    4. Store coverage.xml as the "coverage-report" artifact
    5. Log in to the registry
    6. Build {namespace}/{image}:{tag}
    7. Scan — fixable CRITICAL os/library findings block
    8. Push, only after the scan passed

Output: BuildOutput (tag, image ref, coverage artifact, scan report).
Any failure raises a PipelineError and nothing later in the list runs.
"""
import asyncio
import logging
import os
from typing import Callable, Optional

from deployer.core.config import Credentials, RunConfig
from deployer.core.constants import COVERAGE_ARTIFACT_NAME, COVERAGE_FILENAME, STAGE_BUILD
from deployer.core.errors import ArtifactNotFoundError, CredentialError, TestFailureError
from deployer.executor.build_executor import ExecutionResult, run_tests_in_container
from deployer.models.messages import BuildOutput
from deployer.models.pipeline_run import PipelineRun
from deployer.models.scan_report import ScanReport
from deployer.services.artifact_store import ArtifactStore
from deployer.services.image_builder import ImageBuilder
from deployer.services.repo_service import acquire_source
from deployer.services.tagging import generate_version_tag, image_reference
from deployer.services.vuln_scanner import scan_image

logger = logging.getLogger(__name__)


class BuildStage:
    """
    Build, test, scan and publish one revision.

    Collaborators are injectable so the stage can run without git, Docker
    or Trivy in tests.
    """
    name = STAGE_BUILD

    def __init__(
        self,
        config: RunConfig,
        credentials: Credentials,
        artifacts: ArtifactStore,
        image_builder: Optional[ImageBuilder] = None,
        source_fn: Callable[..., str] = acquire_source,
        test_fn: Callable[..., ExecutionResult] = run_tests_in_container,
        scan_fn: Callable[..., ScanReport] = scan_image,
    ) -> None:
        self.config = config
        self.credentials = credentials
        self.artifacts = artifacts
        self.image_builder = image_builder or ImageBuilder()
        self._acquire = source_fn
        self._run_tests = test_fn
        self._scan = scan_fn
        self.workspace_path = ""

    async def run(self, run: PipelineRun) -> BuildOutput:
        return await asyncio.to_thread(self.execute, run)

    def execute(self, run: PipelineRun) -> BuildOutput:
        cfg = self.config

        # 1. Source
        self.workspace_path = self._acquire(
            run.repo_url, run.revision, cfg.workspace_root,
            self.credentials.github_token.get_secret_value(),
            run_id=run.run_id,
        )

        # 2. Tag
        tag = generate_version_tag(cfg.app_version, run.revision)
        if not cfg.registry_namespace:
            raise CredentialError("Registry namespace (DOCKERHUB_USERNAME) is not configured")
        image_ref = image_reference(cfg.registry_namespace, cfg.image_name, tag)
        logger.info("[BUILD] Run %s → image %s", run.run_id[:8], image_ref)

        # 3. Tests + coverage
        app_path = os.path.join(self.workspace_path, cfg.app_dir)
        result = self._run_tests(
            workspace_path=self.workspace_path,
            docker_image=cfg.test_image,
            working_dir=cfg.app_dir,
            source_dir=cfg.test_source_dir,
            timeout_seconds=cfg.execution_timeout,
            run_id=run.run_id,
        )
        if result.error or result.exit_code != 0:
            raise TestFailureError(
                "Test suite failed" if not result.error else f"Test execution failed: {result.error}",
                details={"exit_code": result.exit_code, "log_excerpt": result.log_excerpt},
            )

        coverage_path = os.path.join(app_path, COVERAGE_FILENAME)
        if not os.path.isfile(coverage_path):
            raise ArtifactNotFoundError(
                "Tests passed but no coverage report was produced",
                details={"expected": os.path.join(cfg.app_dir, COVERAGE_FILENAME)},
            )

        # 4. Coverage artifact
        coverage = self.artifacts.upload(COVERAGE_ARTIFACT_NAME, coverage_path)

        # 5–6. Registry login + build
        self.image_builder.login(
            self.credentials.registry_username.get_secret_value(),
            self.credentials.registry_token.get_secret_value(),
        )
        self.image_builder.build(app_path, image_ref)

        # 7. Scan gate
        report = self._scan(image_ref, timeout_seconds=cfg.execution_timeout)

        # 8. Publish
        self.image_builder.push(image_ref)

        return BuildOutput(
            revision=run.revision,
            image_tag=tag,
            image_ref=image_ref,
            coverage=coverage,
            scan=report,
            pushed=True,
        )
