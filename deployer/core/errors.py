"""
Pipeline Errors
===============
Typed failures raised by stages and their tool adapters.

Each error carries a stable ``kind`` (written to results.json) and a
``fatal`` flag. Fatal errors halt the run; the only non-fatal kind is an
analysis submission failure, which the quality gate records as a warning.

Taxonomy:
    test_failure         — test suite failed, image is never built
    build_failure        — image build failed
    vulnerability_gate   — CRITICAL fixable finding, image is never pushed
    analysis_submission  — static analysis could not be submitted (advisory)
    credentials          — registry / cloud auth failed
    infrastructure       — terraform init/validate/plan/apply/destroy failed
    service_update       — service could not be moved to the new revision
    rollout_timeout      — service never reached a stable state
"""
from typing import Optional


class PipelineError(Exception):
    kind = "pipeline_error"
    fatal = True

    def __init__(self, message: str, *, details: Optional[dict] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "message": self.message,
            "fatal": self.fatal,
            "details": self.details,
        }


class SourceAcquisitionError(PipelineError):
    kind = "source_acquisition"


class TestFailureError(PipelineError):
    __test__ = False  # not a pytest test class
    kind = "test_failure"


class ArtifactNotFoundError(PipelineError):
    kind = "artifact_not_found"


class ImageBuildError(PipelineError):
    kind = "build_failure"


class VulnerabilityGateError(PipelineError):
    kind = "vulnerability_gate"


class AnalysisSubmissionError(PipelineError):
    kind = "analysis_submission"
    fatal = False


class QualityGateBlockedError(PipelineError):
    kind = "quality_gate_blocked"


class CredentialError(PipelineError):
    kind = "credentials"


class TaskDefinitionError(PipelineError):
    kind = "task_definition"


class InfrastructureError(PipelineError):
    kind = "infrastructure"


class ServiceUpdateError(PipelineError):
    kind = "service_update"


class RolloutTimeoutError(PipelineError):
    kind = "rollout_timeout"


class CommandExecutionError(PipelineError):
    kind = "command_execution"
