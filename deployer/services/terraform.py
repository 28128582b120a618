"""
Terraform Runner
================
Drives the Terraform CLI in the application's deploy directory.

Sequence (each step must succeed):
    write_backend(...)   remote S3 state, keyed by environment
    init → validate → plan -out tfplan.binary
    execute(action)      exactly one of apply / destroy, auto-approved

The InfraAction passed to ``execute`` is the only thing that selects
between apply and destroy; there is no code path that runs both.

Locking of the shared remote state is Terraform's concern. This runner
assumes at most one concurrent run per environment and does not enforce it.
"""
import logging
import os
from typing import Callable, List, Optional

from deployer.core.constants import TF_BACKEND_FILE, TF_PLAN_FILE
from deployer.core.errors import InfrastructureError
from deployer.executor.command_runner import CommandResult, check_result, run_command
from deployer.models.infra_action import InfraAction

logger = logging.getLogger(__name__)


def state_bucket(account_id: str) -> str:
    return f"{account_id}-tfstate"


def state_key(environment: str) -> str:
    return f"app-{environment}.tfstate"


def render_backend_config(account_id: str, environment: str, region: str) -> str:
    """HCL snippet configuring the S3 remote state backend."""
    return (
        "terraform {\n"
        '  backend "s3" {\n'
        f'    bucket = "{state_bucket(account_id)}"\n'
        f'    key    = "{state_key(environment)}"\n'
        f'    region = "{region}"\n'
        "  }\n"
        "}\n"
    )


class TerraformRunner:
    """
    Runs terraform commands in ``deploy_dir``.

    ``env`` carries cloud credentials to the CLI; it is never logged.
    """

    def __init__(
        self,
        deploy_dir: str,
        env: Optional[dict] = None,
        timeout_seconds: int = 1800,
        runner: Optional[Callable[..., CommandResult]] = None,
    ) -> None:
        self.deploy_dir = deploy_dir
        self.env = dict(env or {})
        self.timeout_seconds = timeout_seconds
        self._runner = runner or run_command
        self.executed: List[str] = []

    def _run(self, args: List[str], what: str) -> CommandResult:
        result = self._runner(
            args,
            cwd=self.deploy_dir,
            env={**self.env, "TF_IN_AUTOMATION": "1", "TF_INPUT": "0"},
            timeout_seconds=self.timeout_seconds,
        )
        self.executed.append(args[1])
        return check_result(result, InfrastructureError, f"terraform {what} failed")

    def write_backend(self, account_id: str, environment: str, region: str) -> str:
        """
        Write the backend snippet to its own file in the deploy directory.

        The file is overwritten on every run so repeated runs never stack
        duplicate backend blocks.
        """
        if not account_id:
            raise InfrastructureError("Account id is required for the state backend")
        path = os.path.join(self.deploy_dir, TF_BACKEND_FILE)
        with open(path, "w", encoding="utf-8") as f:
            f.write(render_backend_config(account_id, environment, region))
        logger.info(
            "Terraform backend: s3://%s/%s (%s)",
            state_bucket(account_id), state_key(environment), region,
        )
        return path

    def init(self) -> CommandResult:
        return self._run(["terraform", "init", "-input=false"], "init")

    def validate(self) -> CommandResult:
        return self._run(["terraform", "validate"], "validate")

    def plan(self) -> CommandResult:
        return self._run(["terraform", "plan", "-input=false", "-out", TF_PLAN_FILE], "plan")

    def execute(self, action: InfraAction) -> CommandResult:
        logger.info("Terraform %s (auto-approved)", action.value.upper())
        return self._run(action.terraform_args(), action.value)

    def check_version(self, expected: str) -> None:
        """Warn when the installed CLI differs from the pinned version."""
        result = self._runner(["terraform", "version"], cwd=self.deploy_dir,
                              timeout_seconds=60)
        if not result.ok:
            raise InfrastructureError("terraform CLI is not available",
                                      details={"error": result.error})
        first = (result.stdout.splitlines() or [""])[0]
        if expected and expected not in first:
            logger.warning("Terraform version mismatch: expected %s, got '%s'", expected, first)
