"""Watch driver: turns file changes and OS signals into trigger batches.

The target's parent directory is watched non-recursively with watchfiles
and only events naming the target file are kept, so editors that save by
writing a new file and renaming it over the old one still trigger a run.
Shutdown signals are delivered through the same queue as changes.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from watchfiles import Change, awatch

from rerunner.batch import SHUTDOWN_SIGNALS, FileChange, TriggerBatch
from rerunner.errors import WatchError

if TYPE_CHECKING:
    from rerunner.plan import WatchTarget

logger = logging.getLogger(__name__)

_IS_WINDOWS = sys.platform == "win32"

DEFAULT_DEBOUNCE_MS = 50
DEFAULT_STEP_MS = 50


class WatchDriver:
    """Supplies `TriggerBatch` objects for a single watched file."""

    def __init__(
        self,
        target: WatchTarget,
        *,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        step_ms: int = DEFAULT_STEP_MS,
    ) -> None:
        self._target = target
        self._watch_dir = target.path.parent
        self._debounce_ms = debounce_ms
        self._step_ms = step_ms
        self._queue: asyncio.Queue[TriggerBatch] = asyncio.Queue()
        self._stop_event = asyncio.Event()
        self._watch_task: asyncio.Task[None] | None = None
        self._installed_signals: list[signal.Signals] = []

    @property
    def watch_dir(self) -> Path:
        return self._watch_dir

    def accepts(self, _change: Change, path: str) -> bool:
        """watchfiles filter: keep events for the target file only."""
        return Path(path).name == self._target.path.name

    async def start(self) -> None:
        """Install signal handlers and begin watching."""
        loop = asyncio.get_running_loop()
        if not _IS_WINDOWS:
            for sig in SHUTDOWN_SIGNALS:
                loop.add_signal_handler(sig, self.deliver_signal, sig)
                self._installed_signals.append(sig)
        self._watch_task = asyncio.create_task(self._watch_loop())
        logger.info("Watching %s (dir=%s)", self._target.path, self._watch_dir)

    async def stop(self) -> None:
        """Stop watching and restore default signal handling."""
        self._stop_event.set()
        if self._installed_signals:
            loop = asyncio.get_running_loop()
            for sig in self._installed_signals:
                loop.remove_signal_handler(sig)
            self._installed_signals.clear()
        if self._watch_task:
            task = self._watch_task
            self._watch_task = None
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                # Already surfaced to the consumer by next_batch().
                logger.debug("Watcher task ended with an error", exc_info=True)
        logger.debug("Watch driver stopped")

    def deliver_signal(self, sig: signal.Signals) -> None:
        logger.debug("Signal received: %s", sig.name)
        self._queue.put_nowait(TriggerBatch.from_signal(sig))

    def deliver_changes(self, changes: set[FileChange] | frozenset[FileChange]) -> None:
        if not changes:
            return
        self._queue.put_nowait(TriggerBatch.from_changes(changes))

    async def next_batch(self) -> TriggerBatch:
        """Wait for the next batch, merging everything already queued behind it.

        Raises:
            WatchError: the file watcher stopped while we were waiting.
        """
        getter = asyncio.create_task(self._queue.get())
        waiters: set[asyncio.Future[object]] = {getter}
        if self._watch_task is not None:
            waiters.add(self._watch_task)
        done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)

        if getter not in done:
            getter.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await getter
            raise self._watch_failure()

        batch = getter.result()
        while not self._queue.empty():
            batch = batch.merge(self._queue.get_nowait())
        return batch

    async def _watch_loop(self) -> None:
        async for changes in awatch(
            self._watch_dir,
            watch_filter=self.accepts,
            recursive=False,
            debounce=self._debounce_ms,
            step=self._step_ms,
            stop_event=self._stop_event,
        ):
            names = sorted({Path(p).name for _, p in changes})
            logger.debug("File change detected: %s", ", ".join(names))
            self.deliver_changes(changes)

    def _watch_failure(self) -> WatchError:
        task = self._watch_task
        cause = None
        if task is not None and task.done() and not task.cancelled():
            cause = task.exception()
        if cause is None:
            return WatchError(f"Stopped watching {self._target.path}")
        error = WatchError(f"Cannot watch {self._target.path}: {cause}")
        error.__cause__ = cause
        return error
