"""Tests for the watch driver."""

from __future__ import annotations

import asyncio
import contextlib
import signal
import sys
from collections.abc import AsyncIterator
from pathlib import Path
from unittest.mock import patch

import pytest
from watchfiles import Change

from rerunner.errors import WatchError
from rerunner.plan import WatchTarget
from rerunner.watcher import WatchDriver

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="loop signal handlers are POSIX-only")


def _target(tmp_path: Path, name: str = "build.sh") -> WatchTarget:
    path = tmp_path / name
    path.write_text("#!/bin/sh\n")
    return WatchTarget(path=path)


@pytest.fixture
async def driver(tmp_path: Path) -> AsyncIterator[WatchDriver]:
    drv = WatchDriver(_target(tmp_path), debounce_ms=10, step_ms=10)
    yield drv
    await drv.stop()


class TestFilter:
    def test_accepts_target_only(self, tmp_path: Path) -> None:
        drv = WatchDriver(_target(tmp_path))
        assert drv.accepts(Change.modified, str(tmp_path / "build.sh")) is True
        assert drv.accepts(Change.added, str(tmp_path / "build.sh")) is True
        assert drv.accepts(Change.modified, str(tmp_path / "other.sh")) is False
        assert drv.accepts(Change.modified, str(tmp_path / "build.sh.swp")) is False

    def test_watches_parent_directory(self, tmp_path: Path) -> None:
        assert WatchDriver(_target(tmp_path)).watch_dir == tmp_path


class TestQueue:
    async def test_changes_become_batch(self, driver: WatchDriver, tmp_path: Path) -> None:
        driver.deliver_changes({(Change.modified, str(tmp_path / "build.sh"))})
        batch = await driver.next_batch()
        assert batch.has_changes is True
        assert batch.requests_shutdown is False

    async def test_empty_changes_ignored(self, driver: WatchDriver) -> None:
        driver.deliver_changes(set())
        driver.deliver_signal(signal.SIGINT)
        batch = await driver.next_batch()
        assert batch.has_changes is False

    async def test_queued_batches_are_merged(self, driver: WatchDriver, tmp_path: Path) -> None:
        driver.deliver_changes({(Change.modified, str(tmp_path / "build.sh"))})
        driver.deliver_signal(signal.SIGINT)
        batch = await driver.next_batch()
        assert batch.has_changes is True
        assert batch.requests_shutdown is True

    async def test_batches_in_arrival_order(self, driver: WatchDriver, tmp_path: Path) -> None:
        driver.deliver_changes({(Change.modified, str(tmp_path / "build.sh"))})
        first = await driver.next_batch()
        driver.deliver_signal(signal.SIGTERM)
        second = await driver.next_batch()
        assert first.requests_shutdown is False
        assert second.requests_shutdown is True


class TestWatching:
    async def test_watcher_failure_raises(self, tmp_path: Path) -> None:
        def broken_awatch(*_args: object, **_kwargs: object) -> AsyncIterator[object]:
            raise FileNotFoundError("directory vanished")

        drv = WatchDriver(_target(tmp_path))
        with patch("rerunner.watcher.awatch", broken_awatch):
            await drv.start()
            with pytest.raises(WatchError, match="directory vanished"):
                await asyncio.wait_for(drv.next_batch(), timeout=5)
            await drv.stop()

    async def test_detects_file_change(self, tmp_path: Path) -> None:
        target = _target(tmp_path)
        drv = WatchDriver(target, debounce_ms=10, step_ms=10)
        await drv.start()

        async def _touch_repeatedly() -> None:
            for i in range(50):
                target.path.write_text(f"#!/bin/sh\n# {i}\n")
                await asyncio.sleep(0.1)

        toucher = asyncio.create_task(_touch_repeatedly())
        try:
            batch = await asyncio.wait_for(drv.next_batch(), timeout=10)
        finally:
            toucher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await toucher
            await drv.stop()

        assert batch.has_changes is True
        assert {Path(path).name for _, path in batch.changes} == {"build.sh"}

    @posix_only
    async def test_signal_handlers_installed_and_removed(self, tmp_path: Path) -> None:
        drv = WatchDriver(_target(tmp_path))
        loop = asyncio.get_running_loop()
        await drv.start()
        try:
            assert loop.remove_signal_handler(signal.SIGINT) is True
            loop.add_signal_handler(signal.SIGINT, drv.deliver_signal, signal.SIGINT)
        finally:
            await drv.stop()
        assert loop.remove_signal_handler(signal.SIGINT) is False
