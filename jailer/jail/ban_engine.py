"""Infraction log bookkeeping and ban/unban dispatch."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable

from jailer.core.exceptions import InfractionParseError
from jailer.integration.redis_store import InfractionStore
from jailer.ip.keys import DEFAULT_KEY_PREFIX, IPAddress, ip_to_key

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


def format_time(ts: float) -> str:
    return datetime.fromtimestamp(ts, timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")


def parse_infraction(raw: str) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise InfractionParseError(str(raw), "infraction time") from exc


def parse_infractions(entries: list[str], positions: list[int] | None = None) -> list[int]:
    """
    Decode a stored log, dropping entries that are not UNIX timestamps.

    When ``positions`` is given, the stored index of every kept entry is
    appended to it.
    """
    infractions: list[int] = []
    for offset, raw in enumerate(entries):
        try:
            infractions.append(parse_infraction(raw))
            if positions is not None:
                positions.append(offset)
        except InfractionParseError:
            logger.warning("unable to parse time %s", raw)
    return infractions


def banned_until(infractions: list[int], max_retry: int, ban_time: int) -> int | None:
    if len(infractions) < max_retry:
        return None
    return infractions[-1] + ban_time


class BanEngine:
    """
    Appends infractions and fires enforcement when the threshold is crossed.

    Ban state is never stored; it is always derived from the log. Calls to
    the enforcement point are detached tasks whose failures are only logged.
    """

    def __init__(
        self,
        store: InfractionStore,
        enforcer: Any,
        max_retry: int,
        ban_time: int,
        key_ttl: int,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        clock: Clock = time.time,
    ):
        self.store = store
        self.enforcer = enforcer
        self.max_retry = max_retry
        self.ban_time = ban_time
        self.key_ttl = key_ttl
        self.key_prefix = key_prefix
        self.clock = clock
        self._pending: set[asyncio.Task] = set()

    def key_for(self, ip: IPAddress) -> str:
        return ip_to_key(ip, self.key_prefix)

    async def add_infraction(self, ip: IPAddress) -> int:
        """
        Record one infraction for ``ip`` and return the log length after the append.

        Raises StoreOperationError when a store command fails; no retry is made.
        """
        key = self.key_for(ip)
        now = int(self.clock())

        length = await self.store.append(key, str(now))
        logger.debug("%s infraction at %s", ip.compressed, format_time(now))

        if length >= self.max_retry:
            logger.info("%s banned due to %d infractions", ip.compressed, length)
            self.ban(ip)

            if length > self.max_retry:
                await self.store.trim_keep_suffix(key, length - self.max_retry)

        await self.store.set_ttl(key, self.key_ttl)
        return length

    def ban(self, ip: IPAddress) -> None:
        self._dispatch(self.enforcer.add, ip, "ban")

    def unban(self, ip: IPAddress) -> None:
        self._dispatch(self.enforcer.remove, ip, "unban")

    def _dispatch(self, action: Callable[[IPAddress], Any], ip: IPAddress, label: str) -> None:
        task = asyncio.create_task(self._enforce(action, ip, label), name=f"{label}-{ip.compressed}")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _enforce(self, action: Callable[[IPAddress], Any], ip: IPAddress, label: str) -> None:
        try:
            await action(ip)
        except Exception:
            logger.exception("Failed to %s ip=%s", label, ip.compressed)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight enforcement tasks (used at shutdown and in tests)."""
        if not self._pending:
            return
        done, pending = await asyncio.wait(set(self._pending), timeout=timeout)
        if pending:
            logger.warning("%d enforcement call(s) still running at shutdown", len(pending))
