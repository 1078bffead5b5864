"""
Background provider health-check loop.
"""

from __future__ import annotations

import asyncio

from callcenter.shared.logging import get_logger
from callcenter.telephony.records import HealthCheckResult
from callcenter.telephony.router import TelephonyRouter

logger = get_logger(__name__)


class ProviderHealthMonitor:
    """Runs ``router.health_check_all()`` every ``interval_seconds``.

    ``stop()`` cancels the loop and waits for it, so no sweep (and no vendor
    request) outlives the monitor.
    """

    def __init__(self, router: TelephonyRouter, interval_seconds: float = 60.0) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._router = router
        self._interval = interval_seconds
        self._task: asyncio.Task[None] | None = None
        self._sweeps = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def sweeps(self) -> int:
        return self._sweeps

    async def run_once(self) -> list[HealthCheckResult]:
        results = await self._router.health_check_all()
        self._sweeps += 1
        return results

    async def _run(self) -> None:
        logger.info(
            "Provider health monitor starting",
            extra={"interval_seconds": self._interval},
        )
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Provider health sweep failed")

            await asyncio.sleep(self._interval)

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name="provider-health-monitor")

    async def stop(self) -> None:
        task = self._task
        if task is None:
            return
        self._task = None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Provider health monitor stopped", extra={"sweeps": self._sweeps})
