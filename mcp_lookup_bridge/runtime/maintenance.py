"""Periodic maintenance sweeps.

The orchestrator never schedules itself; the serving layer owns a
:class:`MaintenanceScheduler` that triggers
:meth:`BridgeOrchestrator.perform_maintenance` at a fixed interval.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from mcp_lookup_bridge.runtime.models import MaintenanceReport

logger = logging.getLogger(__name__)

Sweep = Callable[[], Awaitable[MaintenanceReport]]


class MaintenanceScheduler:
    """Runs *sweep* every *interval* seconds in a background task.

    Parameters
    ----------
    sweep:
        Coroutine function performing one sweep.
    interval:
        Seconds between sweeps (the first sweep runs after one interval).
    """

    def __init__(self, sweep: Sweep, interval: float) -> None:
        if interval <= 0:
            raise ValueError("Maintenance interval must be positive")
        self._sweep = sweep
        self._interval = interval
        self._task: Optional[asyncio.Task[None]] = None
        self._stopped = asyncio.Event()
        self.last_report: Optional[MaintenanceReport] = None
        self.sweep_count = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ── Public API ───────────────────────────────────────────────────────

    def start(self) -> None:
        """Launch the background sweep loop."""
        if self.running:
            logger.warning("Maintenance scheduler already running.")
            return
        self._stopped.clear()
        self._task = asyncio.create_task(self._run(), name="bridge-maintenance")
        logger.info("Maintenance scheduler started (interval=%.0fs).", self._interval)

    async def stop(self) -> None:
        """Signal the loop to stop and wait for it."""
        self._stopped.set()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Maintenance scheduler stopped.")

    # ── Background loop ─────────────────────────────────────────────────

    async def _run(self) -> None:
        while not self._stopped.is_set():
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self._interval)
                break  # stopped was set
            except asyncio.TimeoutError:
                pass  # interval elapsed, sweep
            try:
                self.last_report = await self._sweep()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("Maintenance sweep failed: %s", exc, exc_info=True)
            self.sweep_count += 1
