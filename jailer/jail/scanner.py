"""Periodic garbage collection of infraction logs and unban detection."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from jailer.core.exceptions import InfractionParseError, StoreOperationError
from jailer.ip.keys import IPAddress, key_pattern, key_to_ip
from jailer.jail.ban_engine import BanEngine, banned_until, format_time, parse_infractions

logger = logging.getLogger(__name__)


def _plural(value: int) -> str:
    return "" if value == 1 else "s"


@dataclass(slots=True)
class ScanSummary:
    keys_evaluated: int = 0
    scan_iterations: int = 0
    ips_deleted: int = 0
    ips_affected: int = 0
    infractions_deleted: int = 0
    ips_unbanned: int = 0
    completed: bool = False
    elapsed_ms: float = 0.0


class MaintenanceScanner:
    """
    Walks every infraction key once and reconciles it against the window.

    Entries older than FIND_TIME are stale, except the newest MAX_RETRY
    entries of an address whose ban is still running. Logs that become
    fully stale are deleted; a banned address whose log drops below the
    threshold is unbanned.
    """

    def __init__(
        self,
        engine: BanEngine,
        find_time: int,
        batch_start: int = 100,
        batch_max: int = 1000,
    ):
        self.engine = engine
        self.store = engine.store
        self.find_time = find_time
        self.batch_start = batch_start
        self.batch_max = batch_max

    @property
    def max_retry(self) -> int:
        return self.engine.max_retry

    async def run(self) -> ScanSummary:
        summary = ScanSummary()
        start = time.monotonic()
        pattern = key_pattern(self.engine.key_prefix)

        cursor = 0
        count = self.batch_start
        while True:
            try:
                keys, cursor = await self.store.scan_keys(cursor, pattern, count)
            except StoreOperationError:
                logger.exception("Key scan aborted after %d iteration%s", summary.scan_iterations, _plural(summary.scan_iterations))
                break

            for key in keys:
                await self._evaluate_key(key, summary)

            summary.keys_evaluated += len(keys)
            summary.scan_iterations += 1

            if cursor == 0:
                summary.completed = True
                break

            if count < self.batch_max:
                count = min(count * 2, self.batch_max)

        summary.elapsed_ms = (time.monotonic() - start) * 1000
        self._log_summary(summary)
        return summary

    async def _evaluate_key(self, key: str, summary: ScanSummary) -> None:
        try:
            ip = key_to_ip(key, self.engine.key_prefix)
        except InfractionParseError:
            logger.error("unable to parse ip from %s", key)
            return

        try:
            entries = await self.store.read_all(key)
        except StoreOperationError:
            logger.exception("Failed to read infractions for ip=%s", ip.compressed)
            return

        positions: list[int] = []
        infractions = parse_infractions(entries, positions)
        now = self.engine.clock()
        size = len(infractions)
        limit = size

        until = banned_until(infractions, self.max_retry, self.engine.ban_time)
        if until is not None and now < until:
            # The newest MAX_RETRY entries justify the running ban
            limit = size - self.max_retry
            logger.debug("%s banned until %s", ip.compressed, format_time(until))

        i = 0
        while i < limit and now - infractions[i] >= self.find_time:
            i += 1

        if i == size:
            if size >= self.max_retry:
                self._unban(ip, summary)
            try:
                await self.store.delete(key)
            except StoreOperationError:
                logger.exception("Failed to delete infractions for ip=%s", ip.compressed)
                return
            summary.ips_deleted += 1

        elif i > 0:
            if size >= self.max_retry and size - i < self.max_retry:
                self._unban(ip, summary)
            try:
                await self.store.trim_keep_suffix(key, positions[i])
            except StoreOperationError:
                logger.exception("Failed to trim infractions for ip=%s", ip.compressed)
                return
            summary.ips_affected += 1
            summary.infractions_deleted += i

    def _unban(self, ip: IPAddress, summary: ScanSummary) -> None:
        summary.ips_unbanned += 1
        logger.info("%s is unbanned", ip.compressed)
        self.engine.unban(ip)

    @staticmethod
    def _log_summary(summary: ScanSummary) -> None:
        logger.info(
            "maintenance: %d key%s evaluated in %d scan iteration%s / %.0fms",
            summary.keys_evaluated,
            _plural(summary.keys_evaluated),
            summary.scan_iterations,
            _plural(summary.scan_iterations),
            summary.elapsed_ms,
        )
        if summary.ips_unbanned:
            logger.info("maintenance: %d ip%s unbanned", summary.ips_unbanned, _plural(summary.ips_unbanned))
        if summary.ips_deleted:
            logger.info("maintenance: %d ip%s deleted", summary.ips_deleted, _plural(summary.ips_deleted))
        if summary.ips_affected:
            logger.info(
                "maintenance: %d infraction%s deleted from %d ip%s",
                summary.infractions_deleted,
                _plural(summary.infractions_deleted),
                summary.ips_affected,
                _plural(summary.ips_affected),
            )
