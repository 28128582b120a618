"""
Results Writer
==============
Serializes the final PipelineState into results.json.

Secrets never reach this file: Credentials are not part of the state,
and the stage outputs only carry references (image refs, ARNs, digests).
"""
import json
import logging
import os
from typing import Any, Dict

from deployer.state.pipeline_state import PipelineState

logger = logging.getLogger(__name__)


def _dump(model) -> Any:
    return model.model_dump(mode="json") if model is not None else None


class ResultsWriter:
    """
    Compiles one pipeline run into a structured JSON document.
    """

    @staticmethod
    def build_document(state: PipelineState) -> Dict[str, Any]:
        run = state.get("run")
        stages = state.get("stages", {})
        return {
            "run": _dump(run),
            "stages": {name: result.model_dump(mode="json") for name, result in stages.items()},
            "outputs": {
                "build": _dump(state.get("build_output")),
                "quality_gate": _dump(state.get("quality_gate_output")),
                "deploy": _dump(state.get("deploy_output")),
            },
            "final_results": {
                "status": state.get("status", "pending"),
                "failed_stage": state.get("failed_stage", ""),
                "error": state.get("error"),
                "summary": state.get("execution_summary", ""),
            },
        }

    @staticmethod
    def write_results(state: PipelineState, output_path: str = "results.json") -> bool:
        """
        Compile state and write results.json.
        """
        try:
            data = ResultsWriter.build_document(state)

            abs_output = os.path.abspath(output_path)
            logger.info("Writing final results to %s", abs_output)

            os.makedirs(os.path.dirname(abs_output), exist_ok=True)
            with open(abs_output, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)

            return True

        except (OSError, TypeError, ValueError) as e:
            logger.error("Failed to write results.json: %s", e, exc_info=True)
            return False
