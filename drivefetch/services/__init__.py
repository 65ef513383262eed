from .events import Event, EventHub, EventType, Subscription
from .files import DownloadedFile, scan_directory
from .progress import ExitOutcome, ParserWarning, ProgressParser, Stream, WarningKind
from .scheduler import BatchResult, Scheduler, SchedulerStatus
from .supervisor import DownloadHandle, ProcessSupervisor, extract_folder_id

__all__ = [
    "BatchResult",
    "DownloadHandle",
    "DownloadedFile",
    "Event",
    "EventHub",
    "EventType",
    "ExitOutcome",
    "ParserWarning",
    "ProcessSupervisor",
    "ProgressParser",
    "Scheduler",
    "SchedulerStatus",
    "Stream",
    "Subscription",
    "WarningKind",
    "extract_folder_id",
    "scan_directory",
]
