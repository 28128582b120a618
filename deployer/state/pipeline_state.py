"""
Pipeline State
TypedDict holding everything the orchestrator accumulates during a run.
Returned to callers and serialized by ResultsWriter.
"""
from typing import TypedDict, Dict, Optional

from deployer.models.pipeline_run import PipelineRun
from deployer.models.stage_result import StageResult
from deployer.models.messages import BuildOutput, QualityGateOutput, DeployOutput


class PipelineState(TypedDict):
    # Run identity
    run: PipelineRun
    workspace_path: str

    # Stage bookkeeping, keyed by stage name, in execution order
    stages: Dict[str, StageResult]

    # Typed stage outputs (None until the stage succeeds)
    build_output: Optional[BuildOutput]
    quality_gate_output: Optional[QualityGateOutput]
    deploy_output: Optional[DeployOutput]

    # Timing
    start_time: float

    # Final summary
    status: str                 # pending, running, success, failed
    failed_stage: str
    error: Optional[dict]
    execution_summary: str
