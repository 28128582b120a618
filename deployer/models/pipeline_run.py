"""
Pipeline Run Model
==================
Pydantic model identifying one run of the deployment pipeline.

Fields:
    run_id          — uuid4 hex, assigned at creation
    revision        — source revision (commit SHA) being built
    branch          — branch name the push event targeted
    event           — triggering event name (always "push" today)
    repo_url        — clone URL of the repository
    created_at      — UTC timestamp of creation

A run is frozen once created; stage progress lives in PipelineState.
"""
import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PipelineRun(BaseModel):
    model_config = ConfigDict(frozen=True)

    run_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    revision: str
    branch: str = ""
    event: str = "push"
    repo_url: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("revision")
    @classmethod
    def revision_not_empty(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("revision must be a non-empty string")
        return v
