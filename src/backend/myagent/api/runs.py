"""
REST API for run submission and result retrieval.
"""
from __future__ import annotations

import logging
import uuid
from typing import AsyncIterator, Dict

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException

from myagent.agent.orchestrator import AgentOrchestrator
from myagent.config import Settings, settings
from myagent.models.schemas import (
    RunResponse,
    RunResult,
    RunStatus,
    RunStatusResponse,
    RunSubmission,
)
from myagent.services.gateway import ModelGateway

logger = logging.getLogger(__name__)
router = APIRouter()

# In-memory store for active/completed runs; nothing survives a restart
_runs: Dict[str, RunStatusResponse] = {}


def get_settings() -> Settings:
    return settings


async def get_gateway(app_settings: Settings = Depends(get_settings)) -> AsyncIterator[ModelGateway]:
    """One gateway per request; its HTTP client is closed when the request is done."""
    gateway = ModelGateway(app_settings)
    try:
        yield gateway
    finally:
        await gateway.aclose()


async def _execute_run(
    run_id: str,
    submission: RunSubmission,
    app_settings: Settings,
    gateway: ModelGateway,
) -> None:
    orchestrator = AgentOrchestrator(
        app_settings,
        gateway=gateway,
        max_attempts=submission.max_attempts,
        target_score=submission.target_score,
    )
    try:
        result = await orchestrator.run(submission.task, context=submission.context)
    except Exception as e:
        logger.exception(f"Run {run_id} crashed")
        result = RunResult(status=RunStatus.FAILED, error=str(e))
    finally:
        await gateway.aclose()

    _runs[run_id] = RunStatusResponse(run_id=run_id, status=result.status, result=result)
    logger.info(f"Run {run_id} finished: {result.status.value}, score {result.last_score}")


@router.post("/submit", response_model=RunResponse)
async def submit_run(
    submission: RunSubmission,
    background_tasks: BackgroundTasks,
    app_settings: Settings = Depends(get_settings),
    gateway: ModelGateway = Depends(get_gateway),
):
    """
    Submit a task for a non-interactive run.

    The run executes in the background. Poll /api/runs/{run_id} for the result.
    """
    if not submission.task.strip():
        raise HTTPException(status_code=422, detail="A task description is required")

    run_id = str(uuid.uuid4())[:8]
    _runs[run_id] = RunStatusResponse(run_id=run_id, status=RunStatus.RUNNING)
    background_tasks.add_task(_execute_run, run_id, submission, app_settings, gateway)

    return RunResponse(
        run_id=run_id,
        status=RunStatus.RUNNING,
        message="Run started. Poll the run endpoint for the result.",
    )


@router.get("/{run_id}", response_model=RunStatusResponse)
async def get_run(run_id: str):
    """Get the current status and, once finished, the result of a run."""
    run = _runs.get(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Run {run_id} not found")
    return run


@router.get("/", response_model=list[str])
async def list_runs():
    """List all run IDs."""
    return list(_runs.keys())
