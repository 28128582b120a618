"""
Configuration
=============
Loads environment variables from .env file using python-dotenv.

Environment Variables (run settings):
    APP_VERSION          — Semantic version baked into every image tag (default: 1.0.0)
    IMAGE_NAME           — Image / container name (default: ci-cd-app)
    ECS_SERVICE          — Target ECS service (default: app-service)
    ECS_CLUSTER          — Target ECS cluster (default: app-prod-cluster)
    ENVIRONMENT          — Environment name, keys the Terraform state (default: prod)
    TF_VERSION           — Terraform version the deploy directory is pinned to (default: 1.10.5)
    DESTROY              — "true" tears infrastructure down instead of applying (default: false)
    AWS_REGION           — Region for credentials, ECS and the state bucket (default: us-east-1)
    DOCKERHUB_USERNAME   — Registry namespace the image is pushed under
    SONAR_PROJECT_KEY    — SonarCloud project key
    SONAR_ORGANIZATION   — SonarCloud organization
    SONAR_HOST_URL       — SonarCloud base URL (default: https://sonarcloud.io)
    SONAR_BLOCKING       — "true" makes a failing remote quality gate fatal (default: false)
    TRIGGER_BRANCHES     — Comma separated branches that start a run on push (default: main,dev)
    TEST_SOURCE_DIR      — unittest discovery root inside APP_DIR (default: app)
    RESULTS_DIR          — One <run_id>.json per run is written here (default: ./results)

Environment Variables (secrets, never logged):
    DOCKERHUB_TOKEN, AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY,
    AWS_SESSION_TOKEN, AWS_ACCOUNT_ID, SONAR_TOKEN, GITHUB_TOKEN

Run Configuration:
    Module-level constants are read once at import. ``load_run_config()``
    snapshots them into a frozen RunConfig at the start of a run, and that
    object is what every stage receives. Stages never read os.environ.
"""
import os
from typing import Optional, Tuple

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, SecretStr

from deployer.models.infra_action import InfraAction

load_dotenv()

APP_VERSION = os.getenv("APP_VERSION", "1.0.0")
IMAGE_NAME = os.getenv("IMAGE_NAME", "ci-cd-app")
ECS_SERVICE = os.getenv("ECS_SERVICE", "app-service")
ECS_CLUSTER = os.getenv("ECS_CLUSTER", "app-prod-cluster")
ENVIRONMENT = os.getenv("ENVIRONMENT", "prod")
TF_VERSION = os.getenv("TF_VERSION", "1.10.5")
DESTROY = os.getenv("DESTROY", "false")
AWS_REGION = os.getenv("AWS_REGION", "us-east-1")
DOCKERHUB_USERNAME = os.getenv("DOCKERHUB_USERNAME", "")

SONAR_PROJECT_KEY = os.getenv("SONAR_PROJECT_KEY", "")
SONAR_ORGANIZATION = os.getenv("SONAR_ORGANIZATION", "")
SONAR_HOST_URL = os.getenv("SONAR_HOST_URL", "https://sonarcloud.io")
SONAR_BLOCKING = os.getenv("SONAR_BLOCKING", "false")

TRIGGER_BRANCHES = os.getenv("TRIGGER_BRANCHES", "main,dev")

# Layout of the deployed application inside the source checkout
APP_DIR = os.getenv("APP_DIR", "app")
DEPLOY_DIR = os.getenv("DEPLOY_DIR", "app/deploy")
TASK_DEFINITION_PATH = os.getenv("TASK_DEFINITION_PATH", "app/deploy/ecs-task-definition.json")
# Directory searched by unittest discovery, relative to APP_DIR
TEST_SOURCE_DIR = os.getenv("TEST_SOURCE_DIR", "app")

# Sandbox image used for the test + coverage run
TEST_IMAGE = os.getenv("TEST_IMAGE", "python:3.10-slim")

# Execution timeout in seconds: max time for a single test run or CLI call
DEFAULT_EXECUTION_TIMEOUT = int(os.getenv("EXECUTION_TIMEOUT", 600))

# Where sources, artifacts and results live on the host
WORKSPACE_ROOT = os.getenv("WORKSPACE_ROOT", os.path.abspath("workspace"))
ARTIFACT_ROOT = os.getenv("ARTIFACT_ROOT", os.path.abspath("artifacts"))
RESULTS_DIR = os.getenv("RESULTS_DIR", os.path.abspath("results"))

_TRUTHY = {"true", "1", "yes"}


def parse_flag(value: Optional[str]) -> bool:
    """Interpret an env-style flag. Only true/1/yes (any case) count as set."""
    return (value or "").strip().lower() in _TRUTHY


def parse_branches(value: str) -> Tuple[str, ...]:
    return tuple(b.strip() for b in value.split(",") if b.strip())


class RunConfig(BaseModel):
    """
    Immutable, per-run view of the pipeline settings.

    Built once by ``load_run_config`` and handed to every stage. The
    destructive switch is already resolved into an ``InfraAction`` here,
    so nothing downstream ever re-reads the raw DESTROY flag.
    """
    model_config = ConfigDict(frozen=True)

    app_version: str = APP_VERSION
    image_name: str = IMAGE_NAME
    ecs_service: str = ECS_SERVICE
    ecs_cluster: str = ECS_CLUSTER
    environment: str = ENVIRONMENT
    tf_version: str = TF_VERSION
    infra_action: InfraAction = InfraAction.APPLY
    aws_region: str = AWS_REGION
    registry_namespace: str = DOCKERHUB_USERNAME

    sonar_project_key: str = SONAR_PROJECT_KEY
    sonar_organization: str = SONAR_ORGANIZATION
    sonar_host_url: str = SONAR_HOST_URL
    sonar_blocking: bool = False

    trigger_branches: Tuple[str, ...] = Field(default_factory=lambda: parse_branches(TRIGGER_BRANCHES))

    app_dir: str = APP_DIR
    deploy_dir: str = DEPLOY_DIR
    task_definition_path: str = TASK_DEFINITION_PATH
    test_source_dir: str = TEST_SOURCE_DIR
    test_image: str = TEST_IMAGE
    execution_timeout: int = DEFAULT_EXECUTION_TIMEOUT

    workspace_root: str = WORKSPACE_ROOT
    artifact_root: str = ARTIFACT_ROOT
    results_dir: str = RESULTS_DIR


class Credentials(BaseModel):
    """
    Injected secrets. Every field is a SecretStr, so repr() and model_dump()
    show '**********' and the raw value is only reachable through
    ``get_secret_value()`` at the call site that needs it.
    """
    model_config = ConfigDict(frozen=True)

    registry_username: SecretStr = SecretStr("")
    registry_token: SecretStr = SecretStr("")
    aws_access_key_id: SecretStr = SecretStr("")
    aws_secret_access_key: SecretStr = SecretStr("")
    aws_session_token: SecretStr = SecretStr("")
    aws_account_id: SecretStr = SecretStr("")
    sonar_token: SecretStr = SecretStr("")
    github_token: SecretStr = SecretStr("")

    def secret_values(self) -> list[str]:
        """Non-empty raw values, for the log masking filter."""
        values = [
            getattr(self, name).get_secret_value()
            for name in type(self).model_fields
        ]
        return [v for v in values if v]


def load_run_config(**overrides) -> RunConfig:
    """
    Snapshot the environment into a RunConfig.

    Keyword overrides win over environment values (used by the API and tests).
    """
    values = {
        "infra_action": InfraAction.from_flag(parse_flag(DESTROY)),
        "sonar_blocking": parse_flag(SONAR_BLOCKING),
    }
    values.update(overrides)
    return RunConfig(**values)


def load_credentials() -> Credentials:
    return Credentials(
        registry_username=SecretStr(os.getenv("DOCKERHUB_USERNAME", "")),
        registry_token=SecretStr(os.getenv("DOCKERHUB_TOKEN", "")),
        aws_access_key_id=SecretStr(os.getenv("AWS_ACCESS_KEY_ID", "")),
        aws_secret_access_key=SecretStr(os.getenv("AWS_SECRET_ACCESS_KEY", "")),
        aws_session_token=SecretStr(os.getenv("AWS_SESSION_TOKEN", "")),
        aws_account_id=SecretStr(os.getenv("AWS_ACCOUNT_ID", "")),
        sonar_token=SecretStr(os.getenv("SONAR_TOKEN", "")),
        github_token=SecretStr(os.getenv("GITHUB_TOKEN", "")),
    )
