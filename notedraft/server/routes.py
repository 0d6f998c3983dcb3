"""Developer draft endpoints: publish (browser or API), job listing and safety settings."""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Awaitable

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from loguru import logger

from notedraft.progress import ProgressNotifier
from notedraft.server.deps import get_services
from notedraft.server.models import ApiDraftRequest, NoteDraftRequest, SettingsUpdateRequest
from notedraft.service import Services, require_development_mode
from notedraft.store.jobs import DEFAULT_LIST_LIMIT

NDJSON_MEDIA_TYPE = "application/x-ndjson"
STREAM_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}

router = APIRouter()


def _log_task_result(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Publish task ended with {}: {}", type(exc).__name__, exc)


async def _relay(notifier: ProgressNotifier, task: asyncio.Task) -> AsyncIterator[str]:
    try:
        async for line in notifier.stream():
            yield line
    finally:
        # Stream closed before the terminal event: the caller went away.
        if not task.done() and not notifier.terminated:
            logger.warning("Client disconnected; cancelling job {}", notifier.job_id)
            task.cancel()


def _stream_job(notifier: ProgressNotifier, work: Awaitable[Any]) -> StreamingResponse:
    task = asyncio.ensure_future(work)
    task.add_done_callback(_log_task_result)
    return StreamingResponse(_relay(notifier, task), media_type=NDJSON_MEDIA_TYPE, headers=STREAM_HEADERS)


@router.post("/note-draft")
async def create_note_draft(payload: NoteDraftRequest, services: Services = Depends(get_services)):
    require_development_mode(payload.mode)
    request = payload.to_publish_request()
    job = services.create_job(request)
    notifier = services.notifier_for(job)
    notifier.step(f"Job created: {job.job_id}")
    logger.info("Accepted browser draft job {} request_id={}", job.job_id, job.request_id)
    return _stream_job(notifier, services.run_browser_job(job, request, notifier))


@router.post("/note-draft-api")
async def create_note_draft_via_api(payload: ApiDraftRequest, services: Services = Depends(get_services)):
    require_development_mode(payload.mode)
    request = payload.to_publish_request()
    job = services.create_job(request)
    notifier = services.notifier_for(job)
    notifier.step(f"Job created: {job.job_id}")
    logger.info("Accepted API draft job {} request_id={}", job.job_id, job.request_id)
    return _stream_job(notifier, services.run_api_job(job, request, notifier, image_url=payload.image_url))


@router.get("/note-jobs")
async def list_note_jobs(
    mode: str = Query(default="production"),
    limit: int = Query(default=DEFAULT_LIST_LIMIT, ge=1, le=DEFAULT_LIST_LIMIT),
    services: Services = Depends(get_services),
) -> list[dict[str, Any]]:
    require_development_mode(mode)
    jobs = services.job_store.list(limit)
    logger.debug("note-jobs: returning {} jobs", len(jobs))
    return [job.to_dict() for job in jobs]


@router.get("/settings")
async def read_settings(mode: str = Query(default="production"), services: Services = Depends(get_services)) -> dict[str, Any]:
    require_development_mode(mode)
    return services.settings_store.load().to_public()


@router.post("/settings")
async def update_settings(payload: SettingsUpdateRequest, services: Services = Depends(get_services)) -> dict[str, Any]:
    require_development_mode(payload.mode)
    return services.settings_store.update(payload.settings).to_public()
