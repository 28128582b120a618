"""
Stage Messages
==============
Typed values handed from one stage to the next.

Build emits BuildOutput (image tag + coverage artifact), which the quality
gate and deploy stages take as arguments. The quality gate emits
QualityGateOutput, which deploy requires. A stage cannot be invoked
without the messages of the stages it depends on.
"""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from deployer.models.infra_action import InfraAction
from deployer.models.scan_report import ScanReport


class CoverageArtifact(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    path: str
    sha256: str
    size_bytes: int


class BuildOutput(BaseModel):
    model_config = ConfigDict(frozen=True)

    revision: str
    image_tag: str
    image_ref: str
    coverage: CoverageArtifact
    scan: ScanReport
    pushed: bool = False


class QualityGateOutput(BaseModel):
    model_config = ConfigDict(frozen=True)

    submitted: bool
    gate_status: Optional[str] = None
    warnings: List[str] = []


class DeployOutput(BaseModel):
    model_config = ConfigDict(frozen=True)

    task_definition_arn: str
    image_ref: str
    infra_action: InfraAction
    service_stable: bool
