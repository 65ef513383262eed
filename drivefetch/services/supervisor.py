"""gdown process supervision."""
import asyncio
import codecs
import logging
import re
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence

from drivefetch.state.models import ProgressSnapshot
from .progress import ParserEvent, ParserWarning, ProgressParser, Stream

logger = logging.getLogger("drivefetch")

READ_CHUNK_SIZE = 4096

_FOLDER_PATH_RE = re.compile(r"folders/([A-Za-z0-9_-]+)")
_ID_PARAM_RE = re.compile(r"[?&]id=([A-Za-z0-9_-]+)")


class DownloadListener(Protocol):
    def on_progress(self, task_id: str, snapshot: ProgressSnapshot) -> None: ...

    def on_warning(self, task_id: str, warning: ParserWarning) -> None: ...

    def on_complete(self, task_id: str, output_dir: str) -> None: ...

    def on_error(self, task_id: str, message: str) -> None: ...


def extract_folder_id(url: str) -> str:
    """Return the Drive folder ID from a folder URL; bare IDs pass through."""
    url = url.strip()
    if "http" not in url:
        return url
    match = _FOLDER_PATH_RE.search(url) or _ID_PARAM_RE.search(url)
    if match:
        return match.group(1)
    return url


class DownloadHandle:
    """One running gdown process and the parser fed by its output."""

    def __init__(self, task_id: str, output_dir: Path):
        self.task_id = task_id
        self.output_dir = output_dir
        self.parser = ProgressParser()
        self.process: Optional[asyncio.subprocess.Process] = None
        self.monitor: Optional[asyncio.Task] = None
        self.cancelled = False

    async def wait(self) -> None:
        if self.monitor is not None:
            await self.monitor


class ProcessSupervisor:
    """Starts, watches and kills one gdown process per task."""

    def __init__(self, tool_command: Sequence[str]):
        self.tool_command = list(tool_command)
        self._handles: Dict[str, DownloadHandle] = {}

    def build_command(self, url: str, output_dir: Path) -> List[str]:
        return [
            *self.tool_command,
            "--folder",
            extract_folder_id(url),
            "-O",
            str(output_dir),
            "--continue",
            "--remaining-ok",
        ]

    async def start(self, task_id: str, url: str, output_dir: str, listener: DownloadListener) -> DownloadHandle:
        if task_id in self._handles:
            logger.warning("Replacing live process task_id=%s", task_id)
            self.cancel(task_id)

        job_dir = Path(output_dir) / task_id
        handle = DownloadHandle(task_id, job_dir)
        self._handles[task_id] = handle
        cmd = self.build_command(url, job_dir)
        logger.info("Starting gdown task_id=%s cmd=%s", task_id, cmd)
        try:
            job_dir.mkdir(parents=True, exist_ok=True)
            handle.process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (OSError, ValueError) as exc:
            logger.exception("Failed to start gdown task_id=%s", task_id)
            if self._handles.get(task_id) is handle:
                del self._handles[task_id]
            if not handle.cancelled:
                listener.on_error(task_id, f"Failed to start gdown: {exc}")
            return handle

        if handle.cancelled:
            # cancel() arrived while the process was being spawned
            handle.process.kill()
        handle.monitor = asyncio.create_task(self._monitor(handle, listener))
        return handle

    def cancel(self, task_id: str) -> bool:
        handle = self._handles.pop(task_id, None)
        if handle is None:
            return False
        handle.cancelled = True
        proc = handle.process
        if proc is not None and proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                # exited between the returncode check and kill()
                pass
        logger.info("Cancelled gdown task_id=%s", task_id)
        return True

    def current_progress(self, task_id: str) -> Optional[ProgressSnapshot]:
        handle = self._handles.get(task_id)
        if handle is None:
            return None
        return handle.parser.snapshot

    def active_ids(self) -> List[str]:
        return list(self._handles)

    async def shutdown(self) -> None:
        handles = list(self._handles.values())
        for handle in handles:
            self.cancel(handle.task_id)
        monitors = [h.monitor for h in handles if h.monitor is not None]
        if monitors:
            await asyncio.gather(*monitors, return_exceptions=True)

    async def _monitor(self, handle: DownloadHandle, listener: DownloadListener) -> None:
        proc = handle.process
        assert proc is not None
        try:
            await asyncio.gather(
                self._pump(handle, proc.stdout, Stream.primary, listener),
                self._pump(handle, proc.stderr, Stream.diagnostic, listener),
            )
            returncode = await proc.wait()
            if handle.cancelled:
                logger.info("gdown exited after cancel task_id=%s returncode=%s", handle.task_id, returncode)
                return

            self._dispatch(handle, handle.parser.finish(), listener)
            if self._handles.get(handle.task_id) is handle:
                del self._handles[handle.task_id]

            outcome = handle.parser.classify_exit(returncode)
            logger.info(
                "gdown exited task_id=%s returncode=%s success=%s completed=%d total=%d",
                handle.task_id,
                returncode,
                outcome.success,
                handle.parser.completed,
                handle.parser.total,
            )
            if outcome.success:
                listener.on_complete(handle.task_id, str(handle.output_dir))
            else:
                listener.on_error(handle.task_id, outcome.error or f"Process exited with code {returncode}")
        except Exception:
            logger.exception("Process monitor failed task_id=%s", handle.task_id)

    async def _pump(
        self,
        handle: DownloadHandle,
        reader: Optional[asyncio.StreamReader],
        stream: Stream,
        listener: DownloadListener,
    ) -> None:
        if reader is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            data = await reader.read(READ_CHUNK_SIZE)
            if not data:
                break
            if handle.cancelled:
                continue
            text = decoder.decode(data)
            logger.debug("gdown output task_id=%s stream=%s text=%r", handle.task_id, stream.value, text)
            self._dispatch(handle, handle.parser.feed(text, stream), listener)
        tail = decoder.decode(b"", final=True)
        if tail and not handle.cancelled:
            self._dispatch(handle, handle.parser.feed(tail, stream), listener)

    def _dispatch(self, handle: DownloadHandle, events: List[ParserEvent], listener: DownloadListener) -> None:
        if handle.cancelled:
            return
        for event in events:
            if isinstance(event, ProgressSnapshot):
                listener.on_progress(handle.task_id, event)
            else:
                logger.warning("gdown warning task_id=%s kind=%s", handle.task_id, event.kind.value)
                listener.on_warning(handle.task_id, event)
