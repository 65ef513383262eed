"""Tests for gdown process supervision, using tests/fake_gdown.py as the tool."""

import asyncio
from pathlib import Path

import pytest

from conftest import FAKE_TOOL_COMMAND, wait_for
from drivefetch.services import ProcessSupervisor, extract_folder_id
from drivefetch.state import Phase


class RecordingListener:
    def __init__(self):
        self.progress = []
        self.warnings = []
        self.completed = []
        self.errors = []

    def on_progress(self, task_id, snapshot):
        self.progress.append((task_id, snapshot))

    def on_warning(self, task_id, warning):
        self.warnings.append((task_id, warning))

    def on_complete(self, task_id, output_dir):
        self.completed.append((task_id, output_dir))

    def on_error(self, task_id, message):
        self.errors.append((task_id, message))

    @property
    def terminal_count(self):
        return len(self.completed) + len(self.errors)


@pytest.fixture
def listener() -> RecordingListener:
    return RecordingListener()


class TestExtractFolderId:
    @pytest.mark.parametrize(
        "url, expected",
        [
            ("https://drive.google.com/drive/folders/1AbC_d-EF?usp=sharing", "1AbC_d-EF"),
            ("https://drive.google.com/drive/u/0/folders/XYZ123", "XYZ123"),
            ("https://drive.google.com/open?id=abcDEF123", "abcDEF123"),
            ("1AbCdEfGhIjKlMnOpQrStUvWx", "1AbCdEfGhIjKlMnOpQrStUvWx"),
            ("https://example.com/nothing", "https://example.com/nothing"),
        ],
    )
    def test_extract(self, url, expected):
        assert extract_folder_id(url) == expected


def test_build_command_contract(supervisor: ProcessSupervisor):
    cmd = supervisor.build_command("https://drive.google.com/drive/folders/ABC", Path("/data/ABC"))
    assert cmd[: len(FAKE_TOOL_COMMAND)] == FAKE_TOOL_COMMAND
    assert cmd[len(FAKE_TOOL_COMMAND):] == ["--folder", "ABC", "-O", "/data/ABC", "--continue", "--remaining-ok"]


async def test_successful_download(supervisor, listener, download_root):
    handle = await supervisor.start("ok_task_000000000000000", "ok_0000000000000000000", str(download_root), listener)
    await asyncio.wait_for(handle.wait(), 10)

    job_dir = download_root / "ok_task_000000000000000"
    assert listener.errors == []
    assert listener.completed == [("ok_task_000000000000000", str(job_dir))]
    assert sorted(p.name for p in job_dir.iterdir()) == ["a.txt", "b.txt", "c.txt"]

    snaps = [s for _, s in listener.progress]
    assert snaps[0].phase == Phase.discovering
    assert snaps[-1].percent == 100
    assert snaps[-1].completed == snaps[-1].total == 3
    percents = [s.percent for s in snaps]
    assert percents == sorted(percents)
    # finished processes are forgotten
    assert supervisor.current_progress("ok_task_000000000000000") is None


async def test_skipped_items_scenario(supervisor, listener, download_root):
    handle = await supervisor.start("skiptask", "skip_000000000000000000", str(download_root), listener)
    await asyncio.wait_for(handle.wait(), 10)
    last = listener.progress[-1][1]
    assert last.completed == 5
    assert last.percent == 100
    assert len(listener.completed) == 1
    assert listener.errors == []


async def test_warning_then_success(supervisor, listener, download_root):
    handle = await supervisor.start("quotatask", "quota_00000000000000000", str(download_root), listener)
    await asyncio.wait_for(handle.wait(), 10)
    assert len(listener.warnings) == 1
    assert listener.warnings[0][1].kind.value == "quota_exceeded"
    assert len(listener.completed) == 1
    assert listener.errors == []


async def test_warning_promoted_on_failed_exit(supervisor, listener, download_root):
    handle = await supervisor.start("qf", "quotafail_0000000000000", str(download_root), listener)
    await asyncio.wait_for(handle.wait(), 10)
    assert listener.completed == []
    (task_id, message), = listener.errors
    assert "access volume exceeded" in message


async def test_generic_failure_reports_diagnostics(supervisor, listener, download_root):
    handle = await supervisor.start("failtask", "fail_000000000000000000", str(download_root), listener)
    await asyncio.wait_for(handle.wait(), 10)
    assert listener.completed == []
    (task_id, message), = listener.errors
    assert "connection reset" in message


async def test_trailing_error_after_full_download_is_success(supervisor, listener, download_root):
    handle = await supervisor.start("trail", "trailing_00000000000000", str(download_root), listener)
    await asyncio.wait_for(handle.wait(), 10)
    assert len(listener.completed) == 1
    assert listener.errors == []


async def test_cancel_is_silent(supervisor, listener, download_root):
    handle = await supervisor.start("hangtask", "hang_000000000000000000", str(download_root), listener)
    await wait_for(lambda: supervisor.current_progress("hangtask") is not None)

    assert supervisor.cancel("hangtask")
    assert supervisor.current_progress("hangtask") is None
    assert not supervisor.cancel("hangtask")

    await asyncio.wait_for(handle.wait(), 10)
    assert handle.process.returncode is not None
    assert listener.terminal_count == 0


async def test_spawn_failure_reported_as_error(listener, download_root):
    supervisor = ProcessSupervisor([str(download_root / "no-such-tool")])
    await supervisor.start("missing", "whatever_0000000000000", str(download_root), listener)
    (task_id, message), = listener.errors
    assert task_id == "missing"
    assert message.startswith("Failed to start gdown")
    assert supervisor.active_ids() == []


async def test_shutdown_kills_everything(supervisor, listener, download_root):
    await supervisor.start("h1", "hang_111111111111111111", str(download_root), listener)
    await supervisor.start("h2", "hang_222222222222222222", str(download_root), listener)
    assert sorted(supervisor.active_ids()) == ["h1", "h2"]
    await asyncio.wait_for(supervisor.shutdown(), 10)
    assert supervisor.active_ids() == []
    assert listener.terminal_count == 0
