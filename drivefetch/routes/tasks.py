"""Task management routes."""
import logging
from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from drivefetch.services import Scheduler, scan_directory
from drivefetch.state import Task, TaskRegistry
from .deps import get_registry, get_scheduler

router = APIRouter(prefix="/api/download")
logger = logging.getLogger("drivefetch")


def _require_task(registry: TaskRegistry, task_id: str) -> Task:
    task = registry.get(task_id)
    if not task:
        logger.info("Task not found task_id=%s", task_id)
        raise HTTPException(status_code=404, detail=f"Task with ID {task_id} not found")
    return task


@router.get("/tasks", response_class=JSONResponse)
async def list_all_tasks(registry: TaskRegistry = Depends(get_registry)):
    """
    List all known download tasks and their status.
    """
    tasks = registry.list()
    logger.debug("List tasks count=%d", len(tasks))
    return {"status": "success", "data": [t.model_dump(mode="json") for t in tasks]}


@router.get("/tasks/{task_id}", response_class=JSONResponse)
async def get_task_status(task_id: str, registry: TaskRegistry = Depends(get_registry)):
    """Return one task, or 404 if it is unknown."""
    task = _require_task(registry, task_id)
    return {"status": "success", "data": task.model_dump(mode="json")}


@router.delete("/tasks/{task_id}", response_class=JSONResponse)
async def delete_task(task_id: str, scheduler: Scheduler = Depends(get_scheduler)):
    """
    Delete a task. A running download for it is stopped first; downloaded
    files are left in place.
    """
    if not scheduler.remove_task(task_id):
        raise HTTPException(status_code=404, detail=f"Task with ID {task_id} not found")
    return {"status": "success", "message": f"Task {task_id} deleted successfully"}


@router.get("/tasks/{task_id}/files", response_class=JSONResponse)
async def api_task_files(
    task_id: str,
    with_hash: bool = Query(False, alias="hash", description="Include md5 of each file"),
    registry: TaskRegistry = Depends(get_registry),
):
    """List the files downloaded into a task's job directory."""
    task = _require_task(registry, task_id)
    files = await run_in_threadpool(scan_directory, str(Path(task.output_dir) / task.id), with_hash)
    return {"status": "success", "data": [f.model_dump() for f in files]}
