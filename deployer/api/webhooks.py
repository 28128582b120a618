"""
POST /webhooks/push
Accepts a repository push event and starts a pipeline run for it.

Only pushes to a configured trigger branch start a run. Tag pushes,
other branches and branch deletions (all-zero ``after``) are
acknowledged and ignored. The run executes as a background task; the
response carries the run id to poll at GET /runs/{run_id}.
"""
import logging
from typing import Callable, Optional

from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import BaseModel, Field, field_validator

from deployer.core.config import load_run_config
from deployer.core.constants import NULL_SHA
from deployer.models.pipeline_run import PipelineRun
from deployer.stages.orchestrator import PipelineOrchestrator
from deployer.state.run_registry import run_registry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks")

_BRANCH_PREFIX = "refs/heads/"


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------
class PushRepository(BaseModel):
    clone_url: str
    full_name: str = ""


class PushEvent(BaseModel):
    ref: str
    after: str = Field(min_length=1)
    repository: PushRepository

    @field_validator("after")
    @classmethod
    def revision_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("after must name a commit")
        return value


class PushResponse(BaseModel):
    accepted: bool
    run_id: Optional[str] = None
    reason: str = ""
    branch: str = ""
    revision: str = ""


def branch_from_ref(ref: str) -> Optional[str]:
    """``refs/heads/main`` → ``main``; anything that is not a branch → None."""
    if not ref.startswith(_BRANCH_PREFIX):
        return None
    return ref[len(_BRANCH_PREFIX):] or None


def get_orchestrator_factory() -> Callable[[], PipelineOrchestrator]:
    return PipelineOrchestrator


async def execute_run(run: PipelineRun, factory: Callable[[], PipelineOrchestrator]) -> None:
    run_registry.mark_running(run.run_id)
    try:
        state = await factory().run(run)
    except Exception as e:
        logger.error("Run %s could not complete: %s", run.run_id[:8], e, exc_info=True)
        run_registry.fail(run.run_id, f"{type(e).__name__}: {e}")
        return
    run_registry.complete(state)


# ---------------------------------------------------------------------------
# Endpoint
# ---------------------------------------------------------------------------
@router.post("/push", response_model=PushResponse, status_code=202)
async def receive_push(
    event: PushEvent,
    background_tasks: BackgroundTasks,
    factory: Callable[[], PipelineOrchestrator] = Depends(get_orchestrator_factory),
):
    branch = branch_from_ref(event.ref)
    if branch is None:
        return PushResponse(accepted=False, reason=f"not a branch push: {event.ref}")

    if event.after == NULL_SHA:
        return PushResponse(accepted=False, reason="branch deleted", branch=branch)

    trigger_branches = load_run_config().trigger_branches
    if branch not in trigger_branches:
        logger.info("Push to '%s' ignored (triggers: %s)", branch, ", ".join(trigger_branches))
        return PushResponse(accepted=False, reason="branch is not a trigger branch", branch=branch)

    run = PipelineRun(revision=event.after, branch=branch, repo_url=event.repository.clone_url)
    run_registry.record(run)
    background_tasks.add_task(execute_run, run, factory)

    logger.info("Queued run %s for %s@%s", run.run_id[:8], branch, run.revision[:7])
    return PushResponse(accepted=True, run_id=run.run_id, branch=branch, revision=run.revision)
