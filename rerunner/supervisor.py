"""Action supervisor: decides what happens to the current job on each batch.

Single-flight: at most one primary job is running. A change batch cancels
the running job (latest wins, nothing is queued) and starts a fresh one.
Completion is awaited in a separate task so the next batch can preempt a
run without waiting for it. A completion only reports, or chains the
follow-up ("then") command, while its job is still the current one.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from rerunner.errors import DirectoryChangeError, SpawnError
from rerunner.job import ExitOutcome, JobHandle
from rerunner.log_context import set_log_context
from rerunner.report import ReportEmitter, RunReport

if TYPE_CHECKING:
    from rerunner.batch import TriggerBatch
    from rerunner.config import SupervisorConfig
    from rerunner.plan import CommandSpec, RunPlan

logger = logging.getLogger(__name__)

# Signature of JobHandle.start: (spec, *, generation, grace_seconds, reap_timeout)
JobFactory = Callable[..., Awaitable[JobHandle]]


@dataclass(slots=True)
class SupervisorContext:
    """Everything the supervisor needs, owned by it for its lifetime."""

    plan: RunPlan
    config: SupervisorConfig
    emitter: ReportEmitter
    job_factory: JobFactory = field(default=JobHandle.start)


class ActionSupervisor:
    """Sole owner of the current job and the pending then-job."""

    def __init__(self, context: SupervisorContext) -> None:
        self._ctx = context
        self._current_job: JobHandle | None = None
        self._pending_then_job: JobHandle | None = None
        self._generation = 0
        self._shutting_down = False
        self._completions: set[asyncio.Task[None]] = set()

    @property
    def current_job(self) -> JobHandle | None:
        return self._current_job

    @property
    def pending_then_job(self) -> JobHandle | None:
        return self._pending_then_job

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    async def handle_batch(self, batch: TriggerBatch) -> bool:
        """Apply one batch. Returns False once no further batches are accepted."""
        if self._shutting_down:
            logger.debug("Batch ignored during shutdown: %s", batch.describe())
            return False

        if batch.requests_shutdown:
            logger.info("Shutdown requested: %s", batch.describe())
            await self.shutdown()
            return False

        if not batch.has_changes:
            return True

        logger.debug("Change batch: %s", batch.describe())
        self._preempt()
        await self._launch_primary()
        return True

    async def wait_idle(self) -> None:
        """Wait for every outstanding completion handler to finish."""
        while self._completions:
            await asyncio.gather(*list(self._completions), return_exceptions=True)

    async def shutdown(self) -> None:
        """Stop accepting batches, cancel both job slots and wait for them.

        Idempotent. No then-command is started once this has begun.
        """
        if self._shutting_down:
            return
        self._shutting_down = True
        set_log_context(operation="stop")

        jobs = [job for job in (self._current_job, self._pending_then_job) if job is not None]
        self._pending_then_job = None
        if jobs:
            await asyncio.gather(*(job.cancel_and_wait() for job in jobs))
        await self.wait_idle()
        logger.info("Supervisor stopped after %d run(s)", self._generation)

    # -- Primary job --

    def _preempt(self) -> None:
        """Cancel and drop whatever the previous trigger started."""
        job = self._current_job
        if job is not None and not job.is_dead():
            logger.info("Preempting %s", job)
            job.cancel()
        self._current_job = None

        then_job = self._pending_then_job
        if then_job is not None and not then_job.is_dead():
            logger.info("Preempting follow-up %s", then_job)
            then_job.cancel()
        self._pending_then_job = None

    async def _launch_primary(self) -> None:
        self._generation += 1
        generation = self._generation
        set_log_context(operation="run", generation=generation)
        spec = self._ctx.plan.primary

        self._ctx.emitter.run_starting()
        started_at = datetime.now().astimezone()
        t0 = time.monotonic()
        job = await self._start_job(spec, generation)
        if job is None:
            return

        self._current_job = job
        task = asyncio.create_task(self._complete_primary(job, started_at, t0))
        self._completions.add(task)
        task.add_done_callback(self._on_completion_done)

    async def _complete_primary(self, job: JobHandle, started_at: datetime, t0: float) -> None:
        outcome = await job.await_completion()
        elapsed = timedelta(seconds=time.monotonic() - t0)

        if not self._is_current(job):
            logger.debug("Discarding stale completion of %s", job)
            return
        if outcome.cancelled:
            logger.debug("Run cancelled: %s", job)
            return

        self._report(job.spec, started_at, elapsed, outcome)

        then_spec = self._ctx.plan.then
        if then_spec is None:
            return
        if not outcome.succeeded:
            logger.info("Skipping follow-up: primary exited with code %s", outcome.returncode)
            return
        if self._shutting_down:
            return
        await self._run_then(then_spec, job.generation)

    # -- Follow-up job --

    async def _run_then(self, spec: CommandSpec, generation: int) -> None:
        set_log_context(operation="then")
        started_at = datetime.now().astimezone()
        t0 = time.monotonic()
        job = await self._start_job(spec, generation)
        if job is None:
            return
        if generation != self._generation or self._shutting_down:
            logger.debug("Follow-up superseded before it was tracked: %s", job)
            await job.cancel_and_wait()
            return

        self._pending_then_job = job
        outcome = await job.await_completion()
        elapsed = timedelta(seconds=time.monotonic() - t0)

        if self._pending_then_job is not job:
            logger.debug("Discarding stale follow-up completion of %s", job)
            return
        self._pending_then_job = None
        if outcome.cancelled:
            return
        self._report(spec, started_at, elapsed, outcome)

    # -- Helpers --

    async def _start_job(self, spec: CommandSpec, generation: int) -> JobHandle | None:
        """Start *spec*; run-level failures are reported here and never propagate."""
        config = self._ctx.config
        try:
            return await self._ctx.job_factory(
                spec,
                generation=generation,
                grace_seconds=config.grace_seconds,
                reap_timeout=config.reap_timeout_seconds,
            )
        except DirectoryChangeError as exc:
            logger.error("Run abandoned: %s", exc)
        except SpawnError as exc:
            logger.error("Run failed to start: %s", exc)
            self._ctx.emitter.spawn_failed(spec.label, exc)
        return None

    def _is_current(self, job: JobHandle) -> bool:
        return self._current_job is job and job.generation == self._generation

    def _report(
        self,
        spec: CommandSpec,
        started_at: datetime,
        elapsed: timedelta,
        outcome: ExitOutcome,
    ) -> None:
        report = RunReport(
            started_at=started_at,
            elapsed=elapsed,
            directory=spec.working_directory,
            command_label=spec.label,
            status=outcome.status,
            returncode=outcome.returncode,
        )
        logger.info(
            "Run finished: command=%s status=%s returncode=%s duration_ms=%d",
            spec.label,
            outcome.status,
            outcome.returncode,
            report.elapsed_ms,
        )
        self._ctx.emitter.emit(report)

    def _on_completion_done(self, task: asyncio.Task[None]) -> None:
        self._completions.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Completion handler crashed", exc_info=exc)
