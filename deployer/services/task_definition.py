"""
Task Definition Renderer
========================
Fills the new image reference into an ECS task definition template.

The template on disk is never modified: the rendered descriptor is
written next to it as ``<name>.rendered.json`` and that path is what the
deploy stage registers.

Registration-only keys that ``describe_task_definition`` returns (ARN,
revision, status, timestamps…) are stripped before the descriptor is sent
back to ECS, since RegisterTaskDefinition rejects them.
"""
import copy
import json
import logging
import os
from typing import Any, Dict

from deployer.core.errors import TaskDefinitionError

logger = logging.getLogger(__name__)

READ_ONLY_KEYS = (
    "taskDefinitionArn",
    "revision",
    "status",
    "requiresAttributes",
    "compatibilities",
    "registeredAt",
    "registeredBy",
    "deregisteredAt",
)


def load_task_definition(path: str) -> Dict[str, Any]:
    if not os.path.isfile(path):
        raise TaskDefinitionError(
            "Task definition template not found",
            details={"path": path},
        )
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise TaskDefinitionError(
            f"Task definition is not valid JSON: {e.msg}",
            details={"path": path, "line": e.lineno},
        ) from e
    if not isinstance(data, dict):
        raise TaskDefinitionError("Task definition root must be an object", details={"path": path})
    return data


def render_task_definition(
    task_definition: Dict[str, Any],
    container_name: str,
    image_ref: str,
) -> Dict[str, Any]:
    """
    Return a copy of ``task_definition`` with the ``image`` of the container
    named ``container_name`` set to ``image_ref``.

    Raises
    ------
    TaskDefinitionError
        If no container with that name exists.
    """
    rendered = copy.deepcopy(task_definition)
    containers = rendered.get("containerDefinitions")
    if not isinstance(containers, list):
        raise TaskDefinitionError("Task definition has no containerDefinitions list")

    matches = [c for c in containers if isinstance(c, dict) and c.get("name") == container_name]
    if not matches:
        raise TaskDefinitionError(
            f"Container '{container_name}' not found in task definition",
            details={"containers": [c.get("name") for c in containers if isinstance(c, dict)]},
        )
    matches[0]["image"] = image_ref
    return rendered


def registration_payload(task_definition: Dict[str, Any]) -> Dict[str, Any]:
    """Strip keys RegisterTaskDefinition does not accept."""
    return {k: v for k, v in task_definition.items() if k not in READ_ONLY_KEYS}


def write_rendered(template_path: str, rendered: Dict[str, Any]) -> str:
    base, _ = os.path.splitext(template_path)
    out_path = f"{base}.rendered.json"
    with open(out_path, "w", encoding="utf-8") as f:
        json.dump(rendered, f, indent=2)
    logger.info("Rendered task definition written to %s", out_path)
    return out_path
