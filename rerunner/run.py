"""Main loop: feeds trigger batches from the watch driver to the supervisor.

Batches are handled strictly one at a time, in arrival order. The loop ends
when the supervisor refuses a batch (shutdown signal) or the watcher fails.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from watchfiles import Change

from rerunner.log_context import set_log_context
from rerunner.report import ReportEmitter
from rerunner.supervisor import ActionSupervisor, SupervisorContext
from rerunner.watcher import WatchDriver

if TYPE_CHECKING:
    from rich.console import Console

    from rerunner.config import SupervisorConfig
    from rerunner.plan import RunPlan, WatchTarget

logger = logging.getLogger(__name__)

EXIT_CLEAN = 0
EXIT_FAILURE = 1


async def drive(supervisor: ActionSupervisor, driver: WatchDriver) -> int:
    """Consume batches until the supervisor stops accepting them."""
    while True:
        batch = await driver.next_batch()
        if not await supervisor.handle_batch(batch):
            return EXIT_CLEAN


async def run_supervisor(
    target: WatchTarget,
    plan: RunPlan,
    config: SupervisorConfig,
    *,
    console: Console,
) -> int:
    """Watch *target* and run *plan* on every change until interrupted.

    Returns the process exit code. Watcher failures propagate as `WatchError`.
    """
    set_log_context(operation="watch")
    emitter = ReportEmitter(
        console,
        start_directory=Path.cwd(),
        quiet=config.quiet,
        clear_screen=config.clear_screen,
    )
    supervisor = ActionSupervisor(SupervisorContext(plan=plan, config=config, emitter=emitter))
    driver = WatchDriver(target, debounce_ms=config.debounce_ms)

    emitter.watching(target.path)
    await driver.start()
    if config.run_on_start:
        driver.deliver_changes({(Change.modified, str(target.path))})

    try:
        return await drive(supervisor, driver)
    finally:
        await supervisor.shutdown()
        await driver.stop()
        logger.info("Stopped watching %s", target.path)
