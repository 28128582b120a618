"""
In-memory registry of pipeline runs started by this process.

Entries are created when a push is accepted and replaced with the final
summary when the orchestrator returns. Nothing is persisted; a restart
forgets every run (results.json remains the durable record).
"""
import threading
from typing import Any, Dict, List, Optional

from deployer.models.pipeline_run import PipelineRun
from deployer.state.pipeline_state import PipelineState


class RunRegistry:
    def __init__(self) -> None:
        self._runs: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def record(self, run: PipelineRun) -> Dict[str, Any]:
        entry = {
            "run_id": run.run_id,
            "revision": run.revision,
            "branch": run.branch,
            "status": "queued",
            "failed_stage": "",
            "error": None,
            "stages": {},
        }
        with self._lock:
            self._runs[run.run_id] = entry
        return dict(entry)

    def mark_running(self, run_id: str) -> None:
        with self._lock:
            if run_id in self._runs:
                self._runs[run_id]["status"] = "running"

    def complete(self, state: PipelineState) -> None:
        run = state["run"]
        with self._lock:
            entry = self._runs.setdefault(run.run_id, {
                "run_id": run.run_id, "revision": run.revision, "branch": run.branch,
            })
            entry["status"] = state.get("status", "failed")
            entry["failed_stage"] = state.get("failed_stage", "")
            entry["error"] = state.get("error")
            entry["stages"] = {
                name: result.status.value for name, result in state.get("stages", {}).items()
            }
            build = state.get("build_output")
            if build is not None:
                entry["image_ref"] = build.image_ref

    def fail(self, run_id: str, message: str) -> None:
        with self._lock:
            if run_id in self._runs:
                self._runs[run_id]["status"] = "failed"
                self._runs[run_id]["error"] = {"kind": "unexpected", "message": message}

    def get(self, run_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._runs.get(run_id)
            return dict(entry) if entry is not None else None

    def list(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(e) for e in self._runs.values()]

    def clear(self) -> None:
        with self._lock:
            self._runs.clear()


run_registry = RunRegistry()
