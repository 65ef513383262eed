"""Batch download routes."""
import json
import logging
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, StreamingResponse

from drivefetch.config import Settings
from drivefetch.services import EventHub, Scheduler, scan_directory
from .deps import get_hub, get_scheduler, get_settings, resolve_under_root
from .schemas import BatchRequest, ConfigRequest

router = APIRouter(prefix="/api/download")
logger = logging.getLogger("drivefetch")

KEEPALIVE_SECONDS = 15.0


def _sse(data: Dict[str, Any]) -> str:
    return f"data: {json.dumps(data)}\n\n"


async def event_stream(request: Request, hub: EventHub, scheduler: Scheduler) -> AsyncIterator[str]:
    """SSE body: a connected message, the current state, then live events."""
    sub = hub.subscribe(replay=scheduler.replay_events())
    try:
        yield _sse({"type": "connected"})
        while True:
            if await request.is_disconnected():
                logger.info("SSE client disconnected subscriber_id=%d", sub.id)
                break
            event = await sub.get(timeout=KEEPALIVE_SECONDS)
            if event is None:
                yield ": keep-alive\n\n"
                continue
            yield _sse(event.to_message())
    finally:
        hub.unsubscribe(sub)


@router.post("/batch", response_class=JSONResponse)
async def api_batch_download(
    request: BatchRequest,
    scheduler: Scheduler = Depends(get_scheduler),
    settings: Settings = Depends(get_settings),
):
    """
    Queue one download task per URL. URLs whose task already completed are
    reported under "skipped" and not downloaded again.
    """
    urls = [u for u in request.urls if u.strip()]
    if not urls:
        raise HTTPException(status_code=400, detail="URLs array is required")

    if request.output_dir:
        output_dir = str(resolve_under_root(settings, request.output_dir))
    else:
        output_dir = settings.download_root
    result = scheduler.submit_batch(urls, output_dir)
    return {
        "status": "success",
        "message": f"Added {len(result.tasks)} tasks to queue",
        "data": result.model_dump(mode="json"),
    }


@router.get("/progress")
async def api_progress(
    request: Request,
    hub: EventHub = Depends(get_hub),
    scheduler: Scheduler = Depends(get_scheduler),
):
    """Server-Sent Events stream of task_start/progress/warning/task_complete/task_error/cancelled."""
    return StreamingResponse(
        event_stream(request, hub, scheduler),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@router.post("/cancel", response_class=JSONResponse)
async def api_cancel(scheduler: Scheduler = Depends(get_scheduler)):
    """Kill running downloads and drop everything queued."""
    if scheduler.status().active_count == 0:
        raise HTTPException(status_code=400, detail="No active download to cancel")
    count = scheduler.cancel_all()
    return {"status": "success", "message": "Download cancelled", "data": {"count": count}}


@router.post("/restart", response_class=JSONResponse)
async def api_restart(scheduler: Scheduler = Depends(get_scheduler)):
    """Re-queue failed, interrupted and cancelled tasks, keeping their progress."""
    count = scheduler.restart_failed()
    return {"status": "success", "message": f"Restarted {count} tasks", "data": {"count": count}}


@router.get("/status", response_class=JSONResponse)
async def api_status(scheduler: Scheduler = Depends(get_scheduler)):
    """Scheduler state: queue depth, active tasks and every known task."""
    return {"status": "success", "data": scheduler.status().model_dump(mode="json")}


@router.get("/config", response_class=JSONResponse)
async def api_get_config(scheduler: Scheduler = Depends(get_scheduler)):
    """Current download concurrency."""
    return {"status": "success", "data": {"max_concurrent": scheduler.max_concurrent}}


@router.post("/config", response_class=JSONResponse)
async def api_set_config(request: ConfigRequest, scheduler: Scheduler = Depends(get_scheduler)):
    """Change download concurrency (1-8); the value is persisted."""
    if request.max_concurrent is not None:
        scheduler.max_concurrent = request.max_concurrent
    return {"status": "success", "data": {"max_concurrent": scheduler.max_concurrent}}


@router.get("/files", response_class=JSONResponse)
async def api_list_files(
    directory: Optional[str] = Query(None, alias="dir", description="Directory to scan; defaults to the download root"),
    with_hash: bool = Query(True, alias="hash", description="Include md5 of each file"),
    settings: Settings = Depends(get_settings),
):
    """
    List downloaded files under the download root, or a directory inside it.
    Hashing runs in the threadpool.
    """
    target = resolve_under_root(settings, directory) if directory else settings.download_root
    files = await run_in_threadpool(scan_directory, str(target), with_hash)
    return {"status": "success", "data": [f.model_dump() for f in files]}
