"""Task and progress data models."""
import re
import time
import uuid
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

# First 20+ character Drive-style identifier in the URL, or the bare ID itself
_RESOURCE_ID_RE = re.compile(r"(?:^|[/=])([A-Za-z0-9_-]{20,})")


class TaskStatus(str, Enum):
    pending = "pending"
    running = "running"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"


class Phase(str, Enum):
    discovering = "discovering"
    transferring = "transferring"
    done = "done"


class Task(BaseModel):
    """A requested folder download and its tracked lifecycle."""
    id: str
    url: str
    output_dir: str
    status: TaskStatus = TaskStatus.pending
    progress: int = 0
    current_file: str = ""
    created_at: float
    completed_at: Optional[float] = None
    error: Optional[str] = None


class ProgressSnapshot(BaseModel):
    """One structured progress observation derived from tool output."""
    model_config = ConfigDict(frozen=True)

    completed: int = 0
    total: int = 0
    current_file: str = ""
    percent: int = 0
    phase: Phase = Phase.discovering


def derive_task_id(url: str) -> str:
    """Map a URL to a stable task id, or a fresh unique one when it has no resource id."""
    match = _RESOURCE_ID_RE.search(url.strip())
    if match:
        return match.group(1)
    return f"task_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"
