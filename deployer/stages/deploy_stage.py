"""
Deployment Stage
================
Last stage. Requires the BuildOutput and the QualityGateOutput of the same run.

Steps:
    1. Temporary cloud credentials, region-scoped, verified
    2. Render the task definition with {namespace}/{image}:{build.image_tag}
    3. Register it as a new revision
    4. Configure the environment-keyed remote state backend
    5. terraform init / validate / plan
    6. Exactly one of apply / destroy, chosen by RunConfig.infra_action
    7. Roll the service to the new revision and wait for stability

The image tag is taken from the BuildOutput, never recomputed here.
No rollback on failure.
"""
import asyncio
import logging
import os
from typing import Callable, Optional

from deployer.core.config import Credentials, RunConfig
from deployer.core.constants import STAGE_DEPLOY
from deployer.models.infra_action import InfraAction
from deployer.models.messages import BuildOutput, DeployOutput, QualityGateOutput
from deployer.models.pipeline_run import PipelineRun
from deployer.services.ecs_deployer import EcsDeployer, open_session
from deployer.services.repo_service import acquire_source
from deployer.services.tagging import image_reference
from deployer.services.task_definition import load_task_definition, render_task_definition, write_rendered
from deployer.services.terraform import TerraformRunner

logger = logging.getLogger(__name__)


class DeployStage:
    name = STAGE_DEPLOY

    def __init__(
        self,
        config: RunConfig,
        credentials: Credentials,
        source_fn: Callable[..., str] = acquire_source,
        session_fn: Callable[..., tuple] = open_session,
        deployer_factory: Optional[Callable[..., EcsDeployer]] = None,
        terraform_factory: Optional[Callable[..., TerraformRunner]] = None,
    ) -> None:
        self.config = config
        self.credentials = credentials
        self._acquire = source_fn
        self._open_session = session_fn
        self._deployer_factory = deployer_factory or EcsDeployer
        self._terraform_factory = terraform_factory or TerraformRunner
        self.terraform: Optional[TerraformRunner] = None

    async def run(
        self,
        run: PipelineRun,
        build: BuildOutput,
        quality: QualityGateOutput,
    ) -> DeployOutput:
        return await asyncio.to_thread(self.execute, run, build, quality)

    def _aws_env(self) -> dict:
        creds = self.credentials
        env = {
            "AWS_ACCESS_KEY_ID": creds.aws_access_key_id.get_secret_value(),
            "AWS_SECRET_ACCESS_KEY": creds.aws_secret_access_key.get_secret_value(),
            "AWS_REGION": self.config.aws_region,
            "AWS_DEFAULT_REGION": self.config.aws_region,
        }
        token = creds.aws_session_token.get_secret_value()
        if token:
            env["AWS_SESSION_TOKEN"] = token
        return env

    def execute(
        self,
        run: PipelineRun,
        build: BuildOutput,
        quality: QualityGateOutput,
    ) -> DeployOutput:
        cfg = self.config
        creds = self.credentials
        if quality.warnings:
            logger.info("[DEPLOY] Proceeding with %d advisory quality warning(s)", len(quality.warnings))

        # 1. Credentials
        session, identity_account = self._open_session(
            cfg.aws_region,
            creds.aws_access_key_id.get_secret_value(),
            creds.aws_secret_access_key.get_secret_value(),
            creds.aws_session_token.get_secret_value(),
        )
        account_id = creds.aws_account_id.get_secret_value() or identity_account

        workspace = self._acquire(
            run.repo_url, run.revision, cfg.workspace_root,
            creds.github_token.get_secret_value(),
            run_id=run.run_id,
        )

        # 2. Render
        image_ref = image_reference(cfg.registry_namespace, cfg.image_name, build.image_tag)
        template_path = os.path.join(workspace, cfg.task_definition_path)
        rendered = render_task_definition(load_task_definition(template_path), cfg.image_name, image_ref)
        write_rendered(template_path, rendered)

        # 3. Register
        ecs = self._deployer_factory(session, cfg.ecs_cluster, cfg.ecs_service)
        task_definition_arn = ecs.register(rendered)

        # 4–6. Infrastructure
        self.terraform = self._terraform_factory(
            os.path.join(workspace, cfg.deploy_dir),
            env=self._aws_env(),
            timeout_seconds=max(cfg.execution_timeout, 1800),
        )
        tf = self.terraform
        tf.check_version(cfg.tf_version)
        tf.write_backend(account_id, cfg.environment, cfg.aws_region)
        tf.init()
        tf.validate()
        tf.plan()
        tf.execute(cfg.infra_action)

        # 7. Rollout
        if cfg.infra_action is InfraAction.DESTROY:
            logger.warning("[DEPLOY] Infrastructure destroyed; service rollout skipped")
            return DeployOutput(
                task_definition_arn=task_definition_arn,
                image_ref=image_ref,
                infra_action=cfg.infra_action,
                service_stable=False,
            )

        ecs.deploy(task_definition_arn)
        ecs.wait_until_stable()

        return DeployOutput(
            task_definition_arn=task_definition_arn,
            image_ref=image_ref,
            infra_action=cfg.infra_action,
            service_stable=True,
        )
