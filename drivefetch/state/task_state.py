"""Task registry with SQLite persistence."""
import asyncio
import logging
import sqlite3
import time
from typing import Any, Dict, List, Optional, Set, Tuple

from .models import Task, TaskStatus, derive_task_id

logger = logging.getLogger("drivefetch")

RECOVERABLE_STATUSES = (TaskStatus.pending, TaskStatus.running, TaskStatus.failed)


class TaskRegistry:
    """
    Owns every known task.

    Status changes are written to SQLite immediately. Progress and
    current_file changes are only marked dirty and written by flush(),
    which run_flusher() calls every flush_interval seconds.
    """

    def __init__(self, db_file: str = "tasks.db", flush_interval: float = 5.0):
        self.tasks: Dict[str, Task] = {}
        self.db_file = db_file
        self.flush_interval = flush_interval
        self._dirty: Set[str] = set()
        self._init_db()
        self._load_tasks()

    def _init_db(self) -> None:
        logger.info("Initializing database db_file=%s", self.db_file)
        conn = sqlite3.connect(self.db_file)
        cur = conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS tasks (
                id TEXT PRIMARY KEY,
                url TEXT NOT NULL,
                output_dir TEXT NOT NULL,
                status TEXT NOT NULL,
                progress INTEGER NOT NULL DEFAULT 0,
                current_file TEXT NOT NULL DEFAULT '',
                created_at REAL NOT NULL,
                completed_at REAL,
                error TEXT,
                timestamp TEXT NOT NULL
            )
            """
        )
        conn.commit()
        conn.close()

    def _load_tasks(self) -> None:
        start = time.monotonic()
        try:
            conn = sqlite3.connect(self.db_file)
            cur = conn.cursor()
            cur.execute(
                """
                SELECT id, url, output_dir, status, progress, current_file,
                       created_at, completed_at, error
                FROM tasks
                ORDER BY created_at
                """
            )
            rows = cur.fetchall()
            for row in rows:
                (
                    task_id,
                    url,
                    output_dir,
                    status,
                    progress,
                    current_file,
                    created_at,
                    completed_at,
                    error,
                ) = row
                self.tasks[task_id] = Task(
                    id=task_id,
                    url=url,
                    output_dir=output_dir,
                    status=TaskStatus(status),
                    progress=progress,
                    current_file=current_file,
                    created_at=created_at,
                    completed_at=completed_at,
                    error=error,
                )
            conn.close()
            logger.info(
                "Loaded tasks from database count=%d elapsed_ms=%d",
                len(rows),
                int((time.monotonic() - start) * 1000),
            )
        except (sqlite3.Error, ValueError):
            logger.exception("Error loading tasks from database db_file=%s", self.db_file)

    def _save_task(self, task: Task) -> None:
        try:
            conn = sqlite3.connect(self.db_file)
            cur = conn.cursor()
            cur.execute(
                """
                INSERT OR REPLACE INTO tasks
                (id, url, output_dir, status, progress, current_file,
                 created_at, completed_at, error, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, datetime('now'))
                """,
                (
                    task.id,
                    task.url,
                    task.output_dir,
                    task.status.value,
                    task.progress,
                    task.current_file,
                    task.created_at,
                    task.completed_at,
                    task.error,
                ),
            )
            conn.commit()
            conn.close()
            logger.debug("Saved task task_id=%s status=%s progress=%d", task.id, task.status.value, task.progress)
        except sqlite3.Error:
            logger.exception("Error saving task to database task_id=%s", task.id)

    def _delete_row(self, task_id: str, vacuum: bool = False) -> bool:
        try:
            conn = sqlite3.connect(self.db_file)
            cur = conn.cursor()
            cur.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            conn.commit()
            if vacuum:
                # Reclaim space so repeated deletes don't bloat the file
                cur.execute("VACUUM")
            conn.close()
            return True
        except sqlite3.Error:
            logger.exception("Error deleting task from database task_id=%s", task_id)
            return False

    def create(self, url: str, output_dir: str) -> Tuple[Task, bool]:
        """Register a download; returns (task, created). Existing ids are returned untouched."""
        task_id = derive_task_id(url)
        existing = self.tasks.get(task_id)
        if existing:
            logger.info("Deduped task task_id=%s status=%s url=%s", task_id, existing.status.value, url)
            return existing, False

        task = Task(id=task_id, url=url, output_dir=output_dir, created_at=time.time())
        self.tasks[task_id] = task
        self._save_task(task)
        logger.info("Created task task_id=%s output_dir=%s url=%s", task_id, output_dir, url)
        return task, True

    def get(self, task_id: str) -> Optional[Task]:
        """Get a task by ID."""
        return self.tasks.get(task_id)

    def list(self) -> List[Task]:
        """List all known tasks in creation order."""
        return list(self.tasks.values())

    def update(self, task_id: str, durable: bool = False, **fields: Any) -> Optional[Task]:
        """
        Update task fields. Status changes (or durable=True) are saved at once;
        other changes are buffered until the next flush. Returns None for an
        unknown task.
        """
        task = self.tasks.get(task_id)
        if not task:
            logger.warning("Attempted to update missing task task_id=%s fields=%s", task_id, sorted(fields))
            return None

        for name, value in fields.items():
            setattr(task, name, value)

        if "status" not in fields and not durable:
            self._dirty.add(task_id)
            return task

        self._dirty.discard(task_id)
        self._save_task(task)
        if task.status == TaskStatus.cancelled:
            # Written once, then dropped so cancel/restart cycles don't grow the table
            self._delete_row(task_id)
        if "status" in fields:
            logger.info("Updated task task_id=%s status=%s", task_id, task.status.value)
        return task

    def delete(self, task_id: str) -> bool:
        """Delete a task from memory and the database."""
        if task_id not in self.tasks:
            return False
        del self.tasks[task_id]
        self._dirty.discard(task_id)
        self._delete_row(task_id, vacuum=True)
        logger.info("Deleted task task_id=%s", task_id)
        return True

    def recoverable(self) -> List[Task]:
        """Tasks that should be re-enqueued after a restart, oldest first."""
        tasks = [t for t in self.tasks.values() if t.status in RECOVERABLE_STATUSES]
        tasks.sort(key=lambda t: t.created_at)
        return tasks

    def flush(self) -> int:
        """Write buffered progress updates; returns the number of rows written."""
        if not self._dirty:
            return 0
        dirty, self._dirty = self._dirty, set()
        written = 0
        for task_id in dirty:
            task = self.tasks.get(task_id)
            if task is None or task.status == TaskStatus.cancelled:
                continue
            self._save_task(task)
            written += 1
        logger.debug("Flushed buffered task updates count=%d", written)
        return written

    async def run_flusher(self) -> None:
        """Flush buffered progress every flush_interval seconds until cancelled."""
        while True:
            await asyncio.sleep(self.flush_interval)
            self.flush()

    def close(self) -> None:
        """Write any buffered progress before shutdown."""
        self.flush()
