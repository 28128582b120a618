"""
Stage Result Model
==================
Pydantic model recording the outcome of one pipeline stage.

Fields:
    stage               — stage name (build / quality_gate / deploy)
    status              — StageStatus value
    summary             — one-line human readable outcome
    warnings            — advisory, non-fatal messages
    error               — PipelineError.to_dict() when the stage failed
    started_at / finished_at
    duration_seconds
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel


class StageStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class StageResult(BaseModel):
    stage: str
    status: StageStatus = StageStatus.PENDING
    summary: str = ""
    warnings: List[str] = []
    error: Optional[dict] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    duration_seconds: float = 0.0
