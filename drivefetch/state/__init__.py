from .models import Phase, ProgressSnapshot, Task, TaskStatus, derive_task_id
from .task_state import TaskRegistry

__all__ = [
    "Phase",
    "ProgressSnapshot",
    "Task",
    "TaskRegistry",
    "TaskStatus",
    "derive_task_id",
]
