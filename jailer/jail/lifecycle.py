"""Process-wide lifecycle of the jail: construction, reconciliation, scheduling, shutdown."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Any

from jailer.core.config import Settings
from jailer.core.exceptions import StoreOperationError
from jailer.integration.redis_store import InfractionStore
from jailer.ip.ipset import IpSet
from jailer.ip.keys import IPAddress, parse_ip
from jailer.jail.ban_engine import BanEngine, Clock
from jailer.jail.scanner import MaintenanceScanner, ScanSummary

logger = logging.getLogger(__name__)

SHUTDOWN_DRAIN_SECONDS = 3


class ServiceJailer:
    """
    One instance per process.

    Instances across a fleet share nothing but the Redis store; there is no
    leader and no lock. Every decision is recomputed from the stored logs,
    so concurrent scans and reconciliations converge.
    """

    def __init__(
        self,
        store: InfractionStore,
        enforcer: Any,
        settings: Settings,
        clock: Clock = time.time,
        rng: random.Random | None = None,
    ):
        self.store = store
        self.enforcer = enforcer
        self.settings = settings
        self.rng = rng or random.Random()
        self.engine = BanEngine(
            store,
            enforcer,
            max_retry=settings.MAX_RETRY,
            ban_time=settings.BAN_TIME,
            key_ttl=settings.key_ttl_seconds,
            key_prefix=settings.KEY_PREFIX,
            clock=clock,
        )
        self.scanner = MaintenanceScanner(
            self.engine,
            find_time=settings.FIND_TIME,
            batch_start=settings.SCAN_BATCH_START,
            batch_max=settings.SCAN_BATCH_MAX,
        )
        self.period: float | None = None
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None

    @classmethod
    async def create(cls, settings: Settings, start: bool = True) -> "ServiceJailer":
        """
        Connect collaborators, reconcile the ipset against the store and start the scan loop.

        Raises ConfigurationError for an unusable ipset and StoreUnreachableError
        when Redis does not answer.
        """
        settings.validate_limits()
        enforcer = await IpSet.open(settings.IPSET_NAME)
        store = await InfractionStore.connect(settings.REDIS_URL)

        jailer = cls(store, enforcer, settings)
        if start:
            try:
                await jailer.startup()
            except BaseException:
                await jailer.close()
                raise
        return jailer

    async def startup(self) -> None:
        delay = self.rng.uniform(0, self.settings.STARTUP_JITTER_SECONDS)
        if delay > 0:
            logger.info("Delaying startup reconciliation by %.1fs", delay)
            await asyncio.sleep(delay)

        await self.reconcile()
        self.start()

    async def reconcile(self) -> int:
        """
        Top up the log of every ipset member to MAX_RETRY infractions.

        Members whose log was lost (e.g. Redis restarted) would otherwise never
        reach the unban check. Returns the number of synthetic infractions added.
        """
        members = await self.enforcer.list_members()
        added = 0
        for ip in members:
            key = self.engine.key_for(ip)
            try:
                length = await self.store.length(key)
            except StoreOperationError:
                logger.exception("Failed to read infraction count for ip=%s", ip.compressed)
                continue

            for _ in range(length, self.settings.MAX_RETRY):
                try:
                    await self.engine.add_infraction(ip)
                    added += 1
                except StoreOperationError:
                    logger.exception("Failed to add infraction for ip=%s", ip.compressed)

        logger.info("Reconciled %d ipset member(s), %d infraction(s) added", len(members), added)
        return added

    def start(self) -> asyncio.Task:
        if self._task is None:
            # Drawn once so the cadence is stable for this process
            self.period = self.rng.uniform(
                self.settings.SCAN_PERIOD_MIN_SECONDS,
                self.settings.SCAN_PERIOD_MAX_SECONDS,
            )
            self._stop.clear()
            self._task = asyncio.create_task(self._run_periodic(self.period), name="jailer-maintenance")
            logger.info("Maintenance scheduled every %.1fs", self.period)
        return self._task

    async def _run_periodic(self, period: float) -> None:
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=period)
            except asyncio.TimeoutError:
                pass
            else:
                break

            try:
                await self.scanner.run()
            except Exception:
                logger.exception("Maintenance scan crashed")

    async def run_maintenance(self) -> ScanSummary:
        return await self.scanner.run()

    async def add_infraction(self, ip: IPAddress | str) -> int:
        if isinstance(ip, str):
            ip = parse_ip(ip)
        return await self.engine.add_infraction(ip)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def close(self) -> None:
        """Stop the scan loop, flush pending enforcement calls and release the store."""
        self._stop.set()
        if self._task is not None:
            # A scan in progress runs to completion
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None

        await self.engine.drain(timeout=SHUTDOWN_DRAIN_SECONDS)
        await self.store.close()
        logger.info("Jailer stopped")
