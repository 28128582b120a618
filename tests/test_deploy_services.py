"""
Unit Tests — Deploy Services
=============================
Task definition rendering, Terraform sequencing and the ECS/STS wrapper.
Terraform and AWS are never contacted: a stub runner records terraform
argv, and boto3 clients are MagicMocks.
"""
import json
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError, WaiterError

from deployer.core.errors import (
    CredentialError,
    InfrastructureError,
    RolloutTimeoutError,
    ServiceUpdateError,
    TaskDefinitionError,
)
from deployer.executor.command_runner import CommandResult
from deployer.models.infra_action import InfraAction
from deployer.services.ecs_deployer import EcsDeployer, open_session
from deployer.services.task_definition import (
    load_task_definition,
    registration_payload,
    render_task_definition,
    write_rendered,
)
from deployer.services.terraform import (
    TerraformRunner,
    render_backend_config,
    state_bucket,
    state_key,
)

IMAGE_REF = "acme/ci-cd-app:v1.0.0-abcdef1"


def _task_definition():
    return {
        "family": "ci-cd-app",
        "taskDefinitionArn": "arn:aws:ecs:us-east-1:123:task-definition/ci-cd-app:3",
        "revision": 3,
        "status": "ACTIVE",
        "networkMode": "awsvpc",
        "containerDefinitions": [
            {"name": "sidecar", "image": "amazon/aws-xray-daemon"},
            {"name": "ci-cd-app", "image": "placeholder", "essential": True},
        ],
    }


# ===================================================================
# Task definition
# ===================================================================
class TestTaskDefinition:

    def test_render_sets_named_container_only(self):
        td = _task_definition()
        rendered = render_task_definition(td, "ci-cd-app", IMAGE_REF)
        assert rendered["containerDefinitions"][1]["image"] == IMAGE_REF
        assert rendered["containerDefinitions"][0]["image"] == "amazon/aws-xray-daemon"
        # input untouched
        assert td["containerDefinitions"][1]["image"] == "placeholder"

    def test_unknown_container(self):
        with pytest.raises(TaskDefinitionError) as exc:
            render_task_definition(_task_definition(), "web", IMAGE_REF)
        assert exc.value.details["containers"] == ["sidecar", "ci-cd-app"]

    def test_no_container_definitions(self):
        with pytest.raises(TaskDefinitionError):
            render_task_definition({"family": "x"}, "ci-cd-app", IMAGE_REF)

    def test_registration_payload_strips_read_only_keys(self):
        payload = registration_payload(_task_definition())
        assert "taskDefinitionArn" not in payload
        assert "revision" not in payload
        assert "status" not in payload
        assert payload["family"] == "ci-cd-app"

    def test_load_and_write(self, tmp_path):
        path = tmp_path / "ecs-task-definition.json"
        path.write_text(json.dumps(_task_definition()))
        td = load_task_definition(str(path))
        out = write_rendered(str(path), render_task_definition(td, "ci-cd-app", IMAGE_REF))
        assert out.endswith("ecs-task-definition.rendered.json")
        assert json.loads(path.read_text())["containerDefinitions"][1]["image"] == "placeholder"
        with open(out) as f:
            assert json.load(f)["containerDefinitions"][1]["image"] == IMAGE_REF

    def test_load_missing(self, tmp_path):
        with pytest.raises(TaskDefinitionError):
            load_task_definition(str(tmp_path / "missing.json"))

    def test_load_invalid_json(self, tmp_path):
        path = tmp_path / "td.json"
        path.write_text("{not json")
        with pytest.raises(TaskDefinitionError):
            load_task_definition(str(path))

    def test_load_non_object(self, tmp_path):
        path = tmp_path / "td.json"
        path.write_text("[1, 2]")
        with pytest.raises(TaskDefinitionError):
            load_task_definition(str(path))


# ===================================================================
# Terraform
# ===================================================================
def _tf_runner(fail_on=None, version_output="Terraform v1.10.5\non linux_amd64\n"):
    calls = []

    def run(args, **kwargs):
        calls.append((list(args), kwargs))
        if args[1] == "version":
            return CommandResult(args=list(args), exit_code=0, stdout=version_output)
        code = 1 if args[1] == fail_on else 0
        return CommandResult(args=list(args), exit_code=code, stderr="Error" if code else "")

    run.calls = calls
    return run


class TestTerraform:

    def test_backend_naming(self):
        assert state_bucket("123456789012") == "123456789012-tfstate"
        assert state_key("prod") == "app-prod.tfstate"
        hcl = render_backend_config("123456789012", "prod", "us-east-1")
        assert 'backend "s3"' in hcl
        assert 'bucket = "123456789012-tfstate"' in hcl
        assert 'key    = "app-prod.tfstate"' in hcl
        assert 'region = "us-east-1"' in hcl

    def test_write_backend_overwrites(self, tmp_path):
        tf = TerraformRunner(str(tmp_path), runner=_tf_runner())
        tf.write_backend("111", "dev", "us-east-1")
        path = tf.write_backend("222", "prod", "eu-west-1")
        content = open(path).read()
        assert content.count("backend") == 1
        assert "222-tfstate" in content
        assert "111" not in content

    def test_write_backend_requires_account(self, tmp_path):
        tf = TerraformRunner(str(tmp_path), runner=_tf_runner())
        with pytest.raises(InfrastructureError):
            tf.write_backend("", "prod", "us-east-1")

    @pytest.mark.parametrize("action", list(InfraAction))
    def test_apply_and_destroy_are_exclusive(self, tmp_path, action):
        runner = _tf_runner()
        tf = TerraformRunner(str(tmp_path), env={"AWS_REGION": "us-east-1"}, runner=runner)
        tf.init()
        tf.validate()
        tf.plan()
        tf.execute(action)

        assert tf.executed == ["init", "validate", "plan", action.value]
        other = {"apply", "destroy"} - {action.value}
        assert not other & set(tf.executed)
        last_args, last_kwargs = runner.calls[-1]
        assert last_args == ["terraform", action.value, "-auto-approve", "-input=false"]
        assert last_kwargs["env"]["TF_IN_AUTOMATION"] == "1"
        assert last_kwargs["env"]["AWS_REGION"] == "us-east-1"
        assert last_kwargs["cwd"] == str(tmp_path)

    def test_plan_writes_plan_file(self, tmp_path):
        runner = _tf_runner()
        TerraformRunner(str(tmp_path), runner=runner).plan()
        assert runner.calls[0][0] == ["terraform", "plan", "-input=false", "-out", "tfplan.binary"]

    def test_failure_raises_infrastructure_error(self, tmp_path):
        tf = TerraformRunner(str(tmp_path), runner=_tf_runner(fail_on="validate"))
        tf.init()
        with pytest.raises(InfrastructureError) as exc:
            tf.validate()
        assert "validate" in exc.value.message

    def test_check_version_mismatch_only_warns(self, tmp_path):
        tf = TerraformRunner(str(tmp_path), runner=_tf_runner(version_output="Terraform v1.9.0\n"))
        tf.check_version("1.10.5")

    def test_check_version_cli_missing(self, tmp_path):
        def runner(args, **kwargs):
            return CommandResult(args=list(args), exit_code=-1, error="Executable not found: terraform")

        with pytest.raises(InfrastructureError):
            TerraformRunner(str(tmp_path), runner=runner).check_version("1.10.5")


# ===================================================================
# ECS / STS
# ===================================================================
def _client_error(op):
    return ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, op)


class TestOpenSession:

    def test_missing_keys(self):
        with pytest.raises(CredentialError):
            open_session("us-east-1", "", "")

    @patch("deployer.services.ecs_deployer.boto3.session.Session")
    def test_verified_session(self, mock_session_cls):
        session = mock_session_cls.return_value
        session.client.return_value.get_caller_identity.return_value = {"Account": "123456789012"}

        result, account = open_session("eu-west-1", "AKIA", "secret", "token")

        assert result is session
        assert account == "123456789012"
        kwargs = mock_session_cls.call_args.kwargs
        assert kwargs["region_name"] == "eu-west-1"
        assert kwargs["aws_session_token"] == "token"
        session.client.assert_called_with("sts")

    @patch("deployer.services.ecs_deployer.boto3.session.Session")
    def test_rejected_credentials(self, mock_session_cls):
        sts = mock_session_cls.return_value.client.return_value
        sts.get_caller_identity.side_effect = _client_error("GetCallerIdentity")
        with pytest.raises(CredentialError):
            open_session("us-east-1", "AKIA", "bad")


class TestEcsDeployer:

    def _deployer(self):
        ecs = MagicMock()
        return EcsDeployer(MagicMock(), "app-prod-cluster", "app-service", ecs_client=ecs), ecs

    def test_register_returns_arn(self):
        deployer, ecs = self._deployer()
        ecs.register_task_definition.return_value = {
            "taskDefinition": {"taskDefinitionArn": "arn:td:4"},
        }
        assert deployer.register(_task_definition()) == "arn:td:4"
        sent = ecs.register_task_definition.call_args.kwargs
        assert "taskDefinitionArn" not in sent
        assert sent["family"] == "ci-cd-app"

    def test_register_failure(self):
        deployer, ecs = self._deployer()
        ecs.register_task_definition.side_effect = _client_error("RegisterTaskDefinition")
        with pytest.raises(TaskDefinitionError):
            deployer.register(_task_definition())

    def test_deploy_and_wait(self):
        deployer, ecs = self._deployer()
        deployer.deploy("arn:td:4")
        deployer.wait_until_stable()
        ecs.update_service.assert_called_once_with(
            cluster="app-prod-cluster", service="app-service", taskDefinition="arn:td:4",
        )
        ecs.get_waiter.assert_called_once_with("services_stable")
        ecs.get_waiter.return_value.wait.assert_called_once_with(
            cluster="app-prod-cluster", services=["app-service"],
        )

    def test_update_rejected_is_not_a_timeout(self):
        deployer, ecs = self._deployer()
        ecs.update_service.side_effect = _client_error("UpdateService")
        with pytest.raises(ServiceUpdateError) as exc:
            deployer.deploy("arn:td:4")
        assert exc.value.kind == "service_update"
        assert not isinstance(exc.value, RolloutTimeoutError)
        assert exc.value.details == {"cluster": "app-prod-cluster", "service": "app-service"}
        ecs.get_waiter.assert_not_called()

    def test_never_stable(self):
        deployer, ecs = self._deployer()
        ecs.get_waiter.return_value.wait.side_effect = WaiterError(
            name="ServicesStable", reason="Max attempts exceeded", last_response={},
        )
        with pytest.raises(RolloutTimeoutError):
            deployer.wait_until_stable()
