"""Job handle: one supervised process invocation."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from dataclasses import dataclass
from enum import Enum, StrEnum
from pathlib import Path

from rerunner.errors import DirectoryChangeError, SpawnError
from rerunner.plan import CommandSpec

logger = logging.getLogger(__name__)

_SIGTERM_GRACE_SECONDS = 2.0
_REAP_TIMEOUT_SECONDS = 5.0

_IS_WINDOWS = sys.platform == "win32"


class JobState(Enum):
    UNSTARTED = "unstarted"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Outcome(StrEnum):
    SUCCESS = "success"
    FAILURE = "failure"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class ExitOutcome:
    """How a job ended. *returncode* is None when no exit code was observed."""

    status: Outcome
    returncode: int | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is Outcome.SUCCESS

    @property
    def cancelled(self) -> bool:
        return self.status is Outcome.CANCELLED


def _check_working_directory(directory: Path | None) -> Path | None:
    """Return *directory* if it can be used as a cwd, else raise."""
    if directory is None:
        return None
    if not directory.exists():
        msg = f"Working directory does not exist: {directory}"
        raise DirectoryChangeError(msg)
    if not directory.is_dir():
        msg = f"Working directory is not a directory: {directory}"
        raise DirectoryChangeError(msg)
    if not os.access(directory, os.X_OK):
        msg = f"Working directory is not accessible: {directory}"
        raise DirectoryChangeError(msg)
    return directory


def _send_sigterm(process: asyncio.subprocess.Process) -> bool:
    """Terminate the job's process group. Returns True if a signal was sent."""
    if process.returncode is not None:
        return False
    try:
        if _IS_WINDOWS:
            process.terminate()
        else:
            os.killpg(process.pid, signal.SIGTERM)
    except (ProcessLookupError, PermissionError):
        return False
    logger.debug("Terminate sent: pid=%s", process.pid)
    return True


def _send_sigkill(process: asyncio.subprocess.Process) -> None:
    """Force-kill the job's process group if still alive after the grace period."""
    if process.returncode is not None:
        return
    try:
        if _IS_WINDOWS:
            process.kill()
        else:
            os.killpg(process.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        return
    logger.debug("SIGKILL sent: pid=%s", process.pid)


class JobHandle:
    """Zero or one OS process running a `CommandSpec`.

    Lifecycle: ``UNSTARTED -> RUNNING -> {SUCCEEDED, FAILED, CANCELLED}``.
    `cancel()` moves the state to CANCELLED immediately and leaves the
    SIGTERM -> grace -> SIGKILL handshake to a background task, so callers
    never block on a slow child. `is_dead()` only turns true once the
    process has actually been reaped.
    """

    def __init__(
        self,
        spec: CommandSpec,
        *,
        generation: int = 0,
        grace_seconds: float = _SIGTERM_GRACE_SECONDS,
        reap_timeout: float = _REAP_TIMEOUT_SECONDS,
    ) -> None:
        self.spec = spec
        self.generation = generation
        self._grace_seconds = grace_seconds
        self._reap_timeout = reap_timeout
        self._process: asyncio.subprocess.Process | None = None
        self._state = JobState.UNSTARTED
        self._outcome: ExitOutcome | None = None
        self._kill_task: asyncio.Task[None] | None = None

    @classmethod
    async def start(
        cls,
        spec: CommandSpec,
        *,
        generation: int = 0,
        grace_seconds: float = _SIGTERM_GRACE_SECONDS,
        reap_timeout: float = _REAP_TIMEOUT_SECONDS,
    ) -> JobHandle:
        """Spawn *spec* and return its running handle without waiting for exit."""
        job = cls(
            spec,
            generation=generation,
            grace_seconds=grace_seconds,
            reap_timeout=reap_timeout,
        )
        await job.spawn()
        return job

    @property
    def state(self) -> JobState:
        return self._state

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    @property
    def label(self) -> str:
        return self.spec.label

    def __repr__(self) -> str:
        return (
            f"JobHandle(label={self.label!r}, generation={self.generation}, "
            f"state={self._state.value}, pid={self.pid})"
        )

    async def spawn(self) -> None:
        """Create the process in the spec's working directory.

        Raises:
            DirectoryChangeError: the working directory is missing or unusable.
            SpawnError: the process could not be created.
        """
        if self._state is not JobState.UNSTARTED:
            msg = f"Job {self.label} already started"
            raise RuntimeError(msg)

        cwd = _check_working_directory(self.spec.working_directory)
        argv = self.spec.argv()
        if not argv:
            self._state = JobState.FAILED
            msg = "Empty command"
            raise SpawnError(msg)

        try:
            self._process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(cwd) if cwd is not None else None,
                start_new_session=not _IS_WINDOWS,
            )
        except OSError as exc:
            self._state = JobState.FAILED
            msg = f"Cannot start {self.label}: {exc.strerror or exc}"
            raise SpawnError(msg) from exc

        self._state = JobState.RUNNING
        logger.debug(
            "Job started: label=%s pid=%d cwd=%s generation=%d",
            self.label,
            self._process.pid,
            cwd,
            self.generation,
        )

    def is_running(self) -> bool:
        return self._state is JobState.RUNNING

    def is_dead(self) -> bool:
        """True once no process is alive for this handle."""
        if self._process is None:
            return True
        return self._process.returncode is not None

    def cancel(self) -> None:
        """Request termination. Idempotent, never blocks, no-op once finished."""
        if self._state is JobState.UNSTARTED:
            self._state = JobState.CANCELLED
            self._outcome = ExitOutcome(Outcome.CANCELLED)
            return
        if self._state is not JobState.RUNNING or self._process is None:
            return
        if self._process.returncode is not None:
            # Exited on its own; only the completion has not been observed yet.
            self._settle(self._process.returncode)
            return

        self._state = JobState.CANCELLED
        logger.info("Cancelling job: label=%s pid=%s", self.label, self._process.pid)
        if _send_sigterm(self._process):
            self._kill_task = asyncio.create_task(self._escalate(self._process))

    async def _escalate(self, process: asyncio.subprocess.Process) -> None:
        """Wait out the grace period, then SIGKILL and reap."""
        try:
            await asyncio.wait_for(process.wait(), timeout=self._grace_seconds)
        except TimeoutError:
            logger.warning(
                "Job did not exit %.1fs after SIGTERM, killing: pid=%s label=%s",
                self._grace_seconds,
                process.pid,
                self.label,
            )
        else:
            return
        _send_sigkill(process)
        try:
            await asyncio.wait_for(process.wait(), timeout=self._reap_timeout)
        except TimeoutError:
            logger.warning("Process did not exit after SIGKILL: pid=%s", process.pid)

    async def await_completion(self) -> ExitOutcome:
        """Suspend until the process exits; report how it ended."""
        if self._outcome is not None:
            return self._outcome
        if self._process is None:
            msg = f"Job {self.label} was never started"
            raise RuntimeError(msg)
        returncode = await self._process.wait()
        return self._settle(returncode)

    async def cancel_and_wait(self) -> ExitOutcome:
        """Cancel and wait until the process has been reaped (or given up on)."""
        self.cancel()
        if self._kill_task is not None:
            await self._kill_task
        if self._outcome is not None:
            return self._outcome
        if self._process is not None and self._process.returncode is not None:
            return self._settle(self._process.returncode)
        return ExitOutcome(Outcome.CANCELLED)

    def _settle(self, returncode: int) -> ExitOutcome:
        if self._outcome is not None:
            return self._outcome
        if self._state is JobState.CANCELLED:
            outcome = ExitOutcome(Outcome.CANCELLED, returncode)
        elif returncode == 0:
            self._state = JobState.SUCCEEDED
            outcome = ExitOutcome(Outcome.SUCCESS, 0)
        else:
            self._state = JobState.FAILED
            outcome = ExitOutcome(Outcome.FAILURE, returncode)
        self._outcome = outcome
        logger.debug(
            "Job finished: label=%s pid=%s status=%s returncode=%s",
            self.label,
            self.pid,
            outcome.status,
            returncode,
        )
        return outcome
