"""Bounded-concurrency download scheduler."""
import asyncio
import logging
import time
from collections import deque
from typing import Deque, Dict, List, Optional, Sequence

from pydantic import BaseModel

from drivefetch.config import MAX_CONCURRENT, MIN_CONCURRENT, RuntimeConfig
from drivefetch.state import Phase, ProgressSnapshot, Task, TaskRegistry, TaskStatus
from .events import Event, EventHub, EventType
from .progress import ParserWarning
from .supervisor import ProcessSupervisor

logger = logging.getLogger("drivefetch")

RESTARTABLE_STATUSES = (TaskStatus.failed, TaskStatus.running, TaskStatus.cancelled)


class BatchResult(BaseModel):
    tasks: List[Task]
    skipped: List[str]


class SchedulerStatus(BaseModel):
    running: bool
    queue_depth: int
    active_count: int
    max_concurrent: int
    tasks: List[Task]
    current_tasks: List[Task]


class Scheduler:
    """
    Admits queued tasks up to max_concurrent and drives them through the
    supervisor. Runs entirely on the event loop: the admission loop and the
    supervisor callbacks never overlap, so the queue and active set are
    plain containers.
    """

    def __init__(
        self,
        registry: TaskRegistry,
        supervisor: ProcessSupervisor,
        hub: EventHub,
        runtime_config: Optional[RuntimeConfig] = None,
        config_file: Optional[str] = None,
        poll_interval: float = 0.1,
    ):
        self.registry = registry
        self.supervisor = supervisor
        self.hub = hub
        self.runtime_config = runtime_config or RuntimeConfig()
        self.config_file = config_file
        self.poll_interval = poll_interval
        self._queue: Deque[str] = deque()
        # dict keeps admission order
        self._active: Dict[str, None] = {}
        self._loop_task: Optional[asyncio.Task] = None

    # ----------------------------
    # Configuration
    # ----------------------------

    @property
    def max_concurrent(self) -> int:
        return self.runtime_config.max_concurrent

    @max_concurrent.setter
    def max_concurrent(self, value: int) -> None:
        if not MIN_CONCURRENT <= value <= MAX_CONCURRENT:
            raise ValueError(f"max_concurrent must be between {MIN_CONCURRENT} and {MAX_CONCURRENT}")
        self.runtime_config.max_concurrent = value
        if self.config_file:
            self.runtime_config.save(self.config_file)
        logger.info("Max concurrent downloads set max_concurrent=%d", value)

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    # ----------------------------
    # Operations
    # ----------------------------

    def submit_batch(self, urls: Sequence[str], output_dir: str) -> BatchResult:
        """
        Register and enqueue one task per URL. Tasks that already completed
        are reported as skipped; ones already queued or running are not
        queued twice.
        """
        tasks: List[Task] = []
        skipped: List[str] = []
        for url in urls:
            url = url.strip()
            if not url:
                continue
            task, created = self.registry.create(url, output_dir)
            if task.status == TaskStatus.completed:
                logger.info("Skipping completed task task_id=%s", task.id)
                skipped.append(task.id)
                continue
            tasks.append(task.model_copy())
            self._enqueue(task.id)

        logger.info("Batch submitted queued=%d skipped=%d queue_depth=%d", len(tasks), len(skipped), len(self._queue))
        if tasks:
            self._ensure_running()
        return BatchResult(tasks=tasks, skipped=skipped)

    def cancel_all(self) -> int:
        """Hard stop: kill running jobs and drop everything queued."""
        killed = 0
        for task_id in list(self._active):
            if self.supervisor.cancel(task_id):
                killed += 1
        for task in self.registry.list():
            if task.status == TaskStatus.running:
                self.registry.update(task.id, status=TaskStatus.cancelled, error=None)
        dropped = len(self._queue)
        self._queue.clear()
        self._active.clear()
        self.hub.publish(Event(type=EventType.cancelled))
        logger.info("Cancelled all downloads killed=%d dropped_queued=%d", killed, dropped)
        return killed

    def restart_failed(self) -> int:
        """Stop current work and re-queue failed, running and cancelled tasks."""
        for task_id in list(self._active):
            self.supervisor.cancel(task_id)
        self._queue.clear()
        self._active.clear()

        count = 0
        for task in self.registry.list():
            if task.status in RESTARTABLE_STATUSES:
                # progress and current_file are kept so the UI resumes where it was
                self.registry.update(task.id, status=TaskStatus.pending, error=None)
                self._enqueue(task.id)
                count += 1

        logger.info("Restarted tasks count=%d", count)
        if count:
            self._ensure_running()
        return count

    def recover(self) -> int:
        """Re-enqueue work left unfinished by a previous run."""
        count = 0
        for task in self.registry.recoverable():
            if task.id in self._active or task.id in self._queue:
                continue
            if task.status != TaskStatus.pending:
                self.registry.update(task.id, status=TaskStatus.pending, error=None)
            self._enqueue(task.id)
            count += 1
        if count:
            logger.info("Found unfinished tasks, resuming count=%d", count)
            self._ensure_running()
        return count

    def remove_task(self, task_id: str) -> bool:
        """Stop and forget a task. Returns False if it was unknown."""
        if task_id in self._active:
            self.supervisor.cancel(task_id)
            del self._active[task_id]
        if task_id in self._queue:
            self._queue.remove(task_id)
        return self.registry.delete(task_id)

    def status(self) -> SchedulerStatus:
        """Snapshot of queue depth, active tasks and all known tasks."""
        current = [self.registry.get(task_id) for task_id in self._active]
        return SchedulerStatus(
            running=self.is_running,
            queue_depth=len(self._queue),
            active_count=len(self._active),
            max_concurrent=self.max_concurrent,
            tasks=[t.model_copy() for t in self.registry.list()],
            current_tasks=[t.model_copy() for t in current if t is not None],
        )

    def replay_events(self) -> List[Event]:
        """Current state for a subscriber that just connected."""
        events: List[Event] = []
        for task_id in self._active:
            task = self.registry.get(task_id)
            if task is None:
                continue
            events.append(Event(type=EventType.task_start, task_id=task_id, task=task.model_copy()))
            snapshot = self.supervisor.current_progress(task_id)
            if snapshot is None:
                snapshot = ProgressSnapshot(current_file=task.current_file, percent=task.progress)
            elif snapshot.phase == Phase.discovering and task.progress:
                # restarted task still listing files: show where it left off
                snapshot = snapshot.model_copy(
                    update={"percent": task.progress, "current_file": task.current_file or snapshot.current_file}
                )
            events.append(Event(type=EventType.progress, task_id=task_id, progress=snapshot))
        return events

    async def join(self) -> None:
        """Wait until the admission loop has drained the queue and gone idle."""
        while self.is_running:
            await asyncio.shield(self._loop_task)

    async def shutdown(self) -> None:
        """Stop the admission loop and kill every running process."""
        if self._loop_task is not None and not self._loop_task.done():
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
        await self.supervisor.shutdown()
        self._active.clear()
        logger.info("Scheduler stopped queue_depth=%d", len(self._queue))

    # ----------------------------
    # Admission loop
    # ----------------------------

    def _enqueue(self, task_id: str) -> None:
        if task_id in self._active or task_id in self._queue:
            logger.debug("Task already queued or active task_id=%s", task_id)
            return
        self._queue.append(task_id)

    def _ensure_running(self) -> None:
        if self.is_running:
            return
        self._loop_task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        logger.info("Scheduler loop started queue_depth=%d", len(self._queue))
        while self._queue or self._active:
            while self._queue and len(self._active) < self.max_concurrent:
                task_id = self._queue.popleft()
                try:
                    await self._admit(task_id)
                except Exception as exc:
                    logger.exception("Error starting download task_id=%s", task_id)
                    self._fail_admission(task_id, f"Failed to start download: {exc}")
            if self._queue or self._active:
                await asyncio.sleep(self.poll_interval)
        logger.info("Scheduler loop idle")

    def _fail_admission(self, task_id: str, message: str) -> None:
        """Release the slot of a task whose start blew up and record it as failed."""
        self.supervisor.cancel(task_id)
        if task_id in self._active:
            self.on_error(task_id, message)
        elif self.registry.get(task_id) is not None:
            self.registry.update(task_id, status=TaskStatus.failed, error=message)
            self.hub.publish(Event(type=EventType.task_error, task_id=task_id, error=message))

    async def _admit(self, task_id: str) -> None:
        task = self.registry.get(task_id)
        if task is None:
            logger.warning("Queued task no longer exists task_id=%s", task_id)
            return
        if task.status == TaskStatus.completed:
            logger.info("Task already completed, skipping task_id=%s", task_id)
            return
        if task_id in self._active:
            logger.info("Task already downloading, skipping task_id=%s", task_id)
            return

        self.registry.update(task_id, status=TaskStatus.running, error=None)
        self._active[task_id] = None
        self.hub.publish(Event(type=EventType.task_start, task_id=task_id, task=task.model_copy()))
        await self.supervisor.start(task_id, task.url, task.output_dir, self)

    # ----------------------------
    # Supervisor callbacks
    # ----------------------------

    def on_progress(self, task_id: str, snapshot: ProgressSnapshot) -> None:
        if task_id not in self._active:
            return
        fields = {"current_file": snapshot.current_file}
        if snapshot.phase != Phase.discovering:
            # 100 is reserved for completed tasks
            fields["progress"] = min(snapshot.percent, 99)
        self.registry.update(task_id, **fields)
        self.hub.publish(Event(type=EventType.progress, task_id=task_id, progress=snapshot))

    def on_warning(self, task_id: str, warning: ParserWarning) -> None:
        if task_id not in self._active:
            return
        self.hub.publish(Event(type=EventType.warning, task_id=task_id, warning=warning.message))

    def on_complete(self, task_id: str, output_dir: str) -> None:
        if task_id not in self._active:
            logger.debug("Completion for inactive task ignored task_id=%s", task_id)
            return
        del self._active[task_id]
        self.registry.update(
            task_id,
            status=TaskStatus.completed,
            progress=100,
            completed_at=time.time(),
            error=None,
        )
        logger.info("Task completed task_id=%s output_dir=%s", task_id, output_dir)
        self.hub.publish(Event(type=EventType.task_complete, task_id=task_id, output_dir=output_dir))

    def on_error(self, task_id: str, message: str) -> None:
        if task_id not in self._active:
            logger.debug("Error for inactive task ignored task_id=%s", task_id)
            return
        del self._active[task_id]
        self.registry.update(task_id, status=TaskStatus.failed, error=message)
        logger.warning("Task failed task_id=%s error=%s", task_id, message)
        self.hub.publish(Event(type=EventType.task_error, task_id=task_id, error=message))
