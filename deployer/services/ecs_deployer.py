"""
ECS Deployer
============
Cloud side of the deploy stage, through boto3.

    open_session()            temporary credentials → boto3 Session, verified with STS
    register(task_def)        new task definition revision → ARN
    deploy(arn)               point the service at the revision
    wait_until_stable()       block on the services_stable waiter

The waiter's delay / max-attempt policy is the platform's default; it is
not tuned here. No rollback is attempted on failure.
"""
import logging
from typing import Any, Dict, Optional, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError, WaiterError

from deployer.core.errors import CredentialError, RolloutTimeoutError, ServiceUpdateError, TaskDefinitionError
from deployer.services.task_definition import registration_payload

logger = logging.getLogger(__name__)


def open_session(
    region: str,
    access_key_id: str,
    secret_access_key: str,
    session_token: str = "",
) -> Tuple[boto3.session.Session, str]:
    """
    Create a region-scoped session from temporary credentials and verify it.

    Returns
    -------
    (session, account_id)

    Raises
    ------
    CredentialError
        If credentials are missing or STS rejects them.
    """
    if not access_key_id or not secret_access_key:
        raise CredentialError("Cloud credentials are missing")

    session = boto3.session.Session(
        aws_access_key_id=access_key_id,
        aws_secret_access_key=secret_access_key,
        aws_session_token=session_token or None,
        region_name=region,
    )
    try:
        identity = session.client("sts").get_caller_identity()
    except (ClientError, BotoCoreError) as e:
        raise CredentialError(
            "Cloud credential verification failed",
            details={"region": region, "error": type(e).__name__},
        ) from e

    account_id = identity.get("Account", "")
    logger.info("Cloud credentials verified for account %s in %s", account_id, region)
    return session, account_id


class EcsDeployer:
    """
    Registers task definitions and rolls them out to one service.
    """

    def __init__(self, session: boto3.session.Session, cluster: str, service: str,
                 ecs_client: Optional[Any] = None) -> None:
        self.cluster = cluster
        self.service = service
        self.ecs = ecs_client or session.client("ecs")

    def register(self, task_definition: Dict[str, Any]) -> str:
        try:
            response = self.ecs.register_task_definition(**registration_payload(task_definition))
        except (ClientError, BotoCoreError) as e:
            raise TaskDefinitionError(
                f"Task definition registration failed: {e}",
                details={"family": task_definition.get("family")},
            ) from e
        arn = response["taskDefinition"]["taskDefinitionArn"]
        logger.info("Registered task definition %s", arn)
        return arn

    def deploy(self, task_definition_arn: str) -> None:
        try:
            self.ecs.update_service(
                cluster=self.cluster,
                service=self.service,
                taskDefinition=task_definition_arn,
            )
        except (ClientError, BotoCoreError) as e:
            raise ServiceUpdateError(
                f"Service update failed: {e}",
                details={"cluster": self.cluster, "service": self.service},
            ) from e
        logger.info("Service %s/%s updated to %s", self.cluster, self.service, task_definition_arn)

    def wait_until_stable(self) -> None:
        logger.info("Waiting for %s/%s to reach a stable state", self.cluster, self.service)
        waiter = self.ecs.get_waiter("services_stable")
        try:
            waiter.wait(cluster=self.cluster, services=[self.service])
        except WaiterError as e:
            raise RolloutTimeoutError(
                "Service did not reach a stable state",
                details={"cluster": self.cluster, "service": self.service, "reason": str(e)},
            ) from e
        logger.info("Service %s/%s is stable", self.cluster, self.service)
