"""
Background task: reconcile local subscription statuses with Twitch.

Runs once at startup (optional) and then every `interval` seconds.
"""

from __future__ import annotations

import asyncio

import structlog

from app.services.subscriptions import ReconcileReport, SubscriptionRegistry

log = structlog.get_logger()


class ReconcileScheduler:
    def __init__(
        self,
        registry: SubscriptionRegistry,
        interval: float = 3600,
        run_on_start: bool = True,
    ):
        self._registry = registry
        self._interval = interval
        self._run_on_start = run_on_start
        self._task: asyncio.Task | None = None
        self.last_report: ReconcileReport | None = None

    async def run_once(self) -> ReconcileReport | None:
        """Reconcile now. Returns None if the pass failed (the error is logged)."""
        try:
            report = await self._registry.reconcile()
        except Exception:
            log.exception("reconcile.failed")
            return None
        self.last_report = report
        return report

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._loop())
            log.info("reconcile.scheduled", interval=self._interval, run_on_start=self._run_on_start)

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _loop(self) -> None:
        if self._run_on_start:
            await self.run_once()
        while True:
            await asyncio.sleep(self._interval)
            await self.run_once()
