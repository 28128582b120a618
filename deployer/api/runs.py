"""
GET /runs, GET /runs/{run_id}
Status polling for runs started by this process.
"""
from fastapi import APIRouter, HTTPException

from deployer.state.run_registry import run_registry

router = APIRouter(prefix="/runs")


@router.get("")
async def list_runs():
    return {"runs": run_registry.list()}


@router.get("/{run_id}")
async def get_run(run_id: str):
    entry = run_registry.get(run_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return entry
