"""FastAPI route definitions."""

from __future__ import annotations

import asyncio
import json

from fastapi import APIRouter, Depends, HTTPException
from sse_starlette.sse import EventSourceResponse

from compositor.core.constants import TERMINAL_STATES, JobStatus
from compositor.core.errors import JobNotFoundError, MissingInputError
from compositor.core.settings import APP_VERSION, PATHS
from compositor.schemas.config import AppConfig
from compositor.schemas.job import JobCreateResponse, JobOut, JobParameters
from compositor.services.config_store import load_config, save_config
from compositor.services.media import ffmpeg_available, ffprobe_available
from compositor.services.pipeline import JobOrchestrator, build_orchestrator
from compositor.workers.queue import enqueue_job

router = APIRouter(prefix="/api", tags=["api"])

_TERMINAL_VALUES = {state.value for state in TERMINAL_STATES}


def get_orchestrator() -> JobOrchestrator:
    return build_orchestrator(enqueue_job)


def _status_url(job_id: str) -> str:
    return f"{router.prefix}/jobs/{job_id}"


@router.get("/health")
def health(orchestrator: JobOrchestrator = Depends(get_orchestrator)) -> dict[str, object]:
    cfg = load_config()
    queued = len(orchestrator.repository.list_ids_by_status(JobStatus.QUEUED))
    return {
        "version": APP_VERSION,
        "ffmpeg_available": ffmpeg_available(cfg.render.ffmpeg_bin),
        "ffprobe_available": ffprobe_available(cfg.render.ffprobe_bin),
        "queue_db": str(PATHS.queue_path),
        "queued_jobs": queued,
    }


@router.get("/config", response_model=AppConfig)
def get_config() -> AppConfig:
    return load_config()


@router.put("/config", response_model=AppConfig)
def put_config(config: AppConfig) -> AppConfig:
    return save_config(config)


@router.post("/jobs", response_model=JobCreateResponse, status_code=202)
def create_job(
    params: JobParameters,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> JobCreateResponse:
    try:
        job_id = orchestrator.submit(params)
    except MissingInputError as exc:
        raise HTTPException(status_code=400, detail={"category": exc.category.value, "detail": str(exc)}) from exc
    return JobCreateResponse(job_id=job_id, status=JobStatus.QUEUED.value, status_url=_status_url(job_id))


@router.get("/jobs", response_model=list[JobOut])
def list_jobs(orchestrator: JobOrchestrator = Depends(get_orchestrator)) -> list[JobOut]:
    return orchestrator.list_jobs()


@router.get("/jobs/{job_id}", response_model=JobOut)
def get_job(job_id: str, orchestrator: JobOrchestrator = Depends(get_orchestrator)) -> JobOut:
    try:
        return orchestrator.get_status(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Job not found") from exc


@router.get("/jobs/{job_id}/events")
async def stream_job_events(
    job_id: str,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> EventSourceResponse:
    repository = orchestrator.repository
    if not repository.get(job_id):
        raise HTTPException(status_code=404, detail="Job not found")

    async def event_generator():
        last_id = 0
        while True:
            events = await asyncio.to_thread(repository.list_events, job_id, last_id)
            job = await asyncio.to_thread(repository.get, job_id)

            for event in events:
                last_id = event.id
                yield {
                    "event": "job_event",
                    "id": str(event.id),
                    "data": event.model_dump_json(),
                }

            if job and job.status in _TERMINAL_VALUES and not events:
                yield {"event": "end", "data": json.dumps({"job_id": job_id, "status": job.status})}
                break

            await asyncio.sleep(1)

    return EventSourceResponse(event_generator())
