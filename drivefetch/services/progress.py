"""
Progress parsing for gdown folder downloads.

gdown writes free text to two streams: file listing and "Download completed"
to stdout/stderr, tqdm bars (redrawn with carriage returns) and errors to
stderr. ProgressParser turns that text into ProgressSnapshot objects.

The patterns below track gdown >= 4.7 output. When the tool's wording
changes, only this module needs updating.
"""
import math
import os
import re
from collections import deque
from enum import Enum
from typing import Deque, List, Optional, Union

from pydantic import BaseModel, ConfigDict

from drivefetch.state.models import Phase, ProgressSnapshot

ITEM_DISCOVERED_RE = re.compile(r"^Processing file\s+(\S+)\s+(.+?)\s*$")
DISCOVERY_DONE_RE = re.compile(
    r"Retrieving folder contents completed|Building directory structure completed"
)
TRANSFER_TARGET_RE = re.compile(r"^To:\s+(.+?)\s*$")
TRANSFER_PERCENT_RE = re.compile(r"(\d{1,3})%\|")
ITEM_SKIPPED_RE = re.compile(r"^Skipping already downloaded file\s+(.+?)\s*$")
ALL_DONE_RE = re.compile(r"^Download completed")
QUOTA_RE = re.compile(r"Too many users have viewed or downloaded this file recently")
PERMISSION_RE = re.compile(
    r"Cannot retrieve the public link of the file|permission to 'Anyone with the link'"
)

DIAGNOSTIC_TAIL_LINES = 50
MAX_ITEM_FRACTION = 0.99
MAX_PARTIAL_PERCENT = 99


class Stream(str, Enum):
    primary = "primary"
    diagnostic = "diagnostic"


class WarningKind(str, Enum):
    quota_exceeded = "quota_exceeded"
    permission_denied = "permission_denied"


WARNING_MESSAGES = {
    WarningKind.quota_exceeded: (
        "Google Drive access volume exceeded: too many users have viewed or "
        "downloaded this file recently. Try again later."
    ),
    WarningKind.permission_denied: (
        "Cannot retrieve the public link of the file. Sharing may need to be "
        "set to 'Anyone with the link'."
    ),
}


class ParserWarning(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: WarningKind
    message: str


class ExitOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    error: Optional[str] = None


ParserEvent = Union[ProgressSnapshot, ParserWarning]


def _label(path: str) -> str:
    return os.path.basename(path.rstrip("/\\")) or path


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class ProgressParser:
    """Per-job parser state. Feed it chunks, collect the events it returns."""

    def __init__(self) -> None:
        self._buffers = {Stream.primary: "", Stream.diagnostic: ""}
        self._known: List[str] = []
        self._known_set = set()
        self._finished_labels = set()
        self.completed = 0
        self.current_file = ""
        self.fraction = 0.0
        self.discovery_done = False
        self.finished_marker = False
        self._current_counted = False
        self._percent = 0
        self.warnings: List[WarningKind] = []
        self._diagnostic_tail: Deque[str] = deque(maxlen=DIAGNOSTIC_TAIL_LINES)
        self.snapshot: Optional[ProgressSnapshot] = None

    @property
    def total(self) -> int:
        return len(self._known)

    def feed(self, chunk: str, stream: Stream = Stream.primary) -> List[ParserEvent]:
        data = self._buffers[stream] + chunk
        # tqdm redraws with \r, everything else ends with \n
        parts = re.split(r"\r\n|\r|\n", data)
        self._buffers[stream] = parts.pop()
        events: List[ParserEvent] = []
        for line in parts:
            events.extend(self._handle_line(line, stream))
        return events

    def finish(self) -> List[ParserEvent]:
        """Flush partial lines left in the buffers at end of stream."""
        events: List[ParserEvent] = []
        for stream in (Stream.primary, Stream.diagnostic):
            rest, self._buffers[stream] = self._buffers[stream], ""
            if rest:
                events.extend(self._handle_line(rest, stream))
        return events

    def _handle_line(self, raw: str, stream: Stream) -> List[ParserEvent]:
        line = raw.strip()
        if not line:
            return []

        warning = self._match_warning(line)
        if warning is not None:
            self._diagnostic_tail.append(line)
            if warning in self.warnings:
                return []
            self.warnings.append(warning)
            return [ParserWarning(kind=warning, message=WARNING_MESSAGES[warning])]

        match = ITEM_DISCOVERED_RE.match(line)
        if match:
            self._add_known(match.group(2))
            return self._emit()

        if DISCOVERY_DONE_RE.search(line):
            self.discovery_done = True
            return self._emit()

        match = ITEM_SKIPPED_RE.match(line)
        if match:
            label = _label(match.group(1))
            self._add_known(label)
            self._mark_finished(label)
            self.current_file = f"{label} (skipped)"
            self.fraction = 0.0
            self._current_counted = True
            return self._emit()

        match = TRANSFER_TARGET_RE.match(line)
        if match:
            label = _label(match.group(1))
            self._add_known(label)
            self.current_file = label
            self.fraction = 0.0
            self._current_counted = label in self._finished_labels
            return self._emit()

        match = TRANSFER_PERCENT_RE.search(line)
        if match:
            self.discovery_done = True
            value = min(int(match.group(1)), 100)
            if value >= 100:
                if not self._current_counted:
                    self._current_counted = True
                    if self.current_file:
                        self._mark_finished(self.current_file)
                    else:
                        self.completed += 1
                self.fraction = 0.0
            elif not self._current_counted:
                self.fraction = value / 100.0
            return self._emit()

        if ALL_DONE_RE.match(line):
            self.finished_marker = True
            self.discovery_done = True
            # gdown may still exit non-zero on trailing warnings after this
            if self.completed < self.total:
                self.completed = self.total
            self.fraction = 0.0
            return self._emit()

        if stream is Stream.diagnostic:
            self._diagnostic_tail.append(line)
        return []

    def _match_warning(self, line: str) -> Optional[WarningKind]:
        if QUOTA_RE.search(line):
            return WarningKind.quota_exceeded
        if PERMISSION_RE.search(line):
            return WarningKind.permission_denied
        return None

    def _add_known(self, label: str) -> None:
        if self._percent >= 100:
            # total is frozen once 100 has been reported
            return
        if label not in self._known_set:
            self._known_set.add(label)
            self._known.append(label)

    def _mark_finished(self, label: str) -> None:
        if label not in self._finished_labels:
            self._finished_labels.add(label)
            self.completed += 1

    def _compute(self) -> ProgressSnapshot:
        total = self.total
        if not self.discovery_done:
            return ProgressSnapshot(
                completed=self.completed,
                total=total,
                current_file=self.current_file,
                percent=0,
                phase=Phase.discovering,
            )
        if total > 0 and self.completed >= total:
            percent = 100
            phase = Phase.done
        else:
            percent = 0
            if total > 0:
                partial = self.completed + min(self.fraction, MAX_ITEM_FRACTION)
                percent = min(MAX_PARTIAL_PERCENT, _round_half_up(100 * partial / total))
            percent = max(percent, self._percent)
            phase = Phase.transferring
        self._percent = percent
        return ProgressSnapshot(
            completed=min(self.completed, total) if total else self.completed,
            total=total,
            current_file=self.current_file,
            percent=percent,
            phase=phase,
        )

    def _emit(self) -> List[ParserEvent]:
        snapshot = self._compute()
        if snapshot == self.snapshot:
            return []
        self.snapshot = snapshot
        return [snapshot]

    @property
    def diagnostic_text(self) -> str:
        return "\n".join(self._diagnostic_tail)

    def classify_exit(self, returncode: Optional[int]) -> ExitOutcome:
        total = self.total
        all_done = total > 0 and self.completed >= total
        if returncode == 0 or (all_done and not self.warnings):
            return ExitOutcome(success=True)
        if self.warnings:
            return ExitOutcome(success=False, error=WARNING_MESSAGES[self.warnings[0]])
        text = self.diagnostic_text
        return ExitOutcome(success=False, error=text or f"Process exited with code {returncode}")
