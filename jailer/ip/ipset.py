"""
Enforcement point backed by an ``ipset`` address set.

The set itself (and the iptables rule that references it) is provisioned
outside this service; we only add, remove and list members. ``-exist``
makes add/remove idempotent so callers never check membership first.
"""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
from typing import List

from fastapi.concurrency import run_in_threadpool

from jailer.core.exceptions import ConfigurationError, EnforcementError, InfractionParseError
from jailer.ip.keys import IPAddress, parse_ip

logger = logging.getLogger(__name__)

IPSET_BIN = shutil.which("ipset") or "/sbin/ipset"
# ipset limits set names to 31 characters
VALID_SET_NAME_RE = re.compile(r"^[A-Za-z0-9_.:-]{1,31}$")


def run_command(command: List[str]) -> str:
    try:
        completed = subprocess.run(command, capture_output=True, text=True, check=False)
    except OSError as exc:
        raise EnforcementError(command, -1, str(exc)) from exc
    if completed.returncode != 0:
        raise EnforcementError(command, completed.returncode, (completed.stderr or "").strip())
    return completed.stdout or ""


def parse_members(listing: str) -> list[IPAddress]:
    """Extract addresses from ``ipset list`` output, skipping anything unparseable."""
    members: list[IPAddress] = []
    in_members = False
    for line in listing.splitlines():
        if not in_members:
            in_members = line.strip() == "Members:"
            continue

        entry = line.strip()
        if not entry:
            continue
        # Entries may carry options, e.g. "10.0.0.1 timeout 300"
        try:
            members.append(parse_ip(entry.split()[0]))
        except InfractionParseError:
            logger.error("unable to parse ipset member %s", entry)
    return members


class IpSet:
    def __init__(self, name: str, binary: str = IPSET_BIN):
        if not VALID_SET_NAME_RE.match(name or ""):
            raise ConfigurationError(f"Invalid ipset name: {name!r}")
        self.name = name
        self.binary = binary

    @classmethod
    async def open(cls, name: str, binary: str = IPSET_BIN) -> "IpSet":
        """Validate the name and ensure the set exists."""
        ipset = cls(name, binary)
        try:
            await run_in_threadpool(run_command, [binary, "list", "-n", name])
        except EnforcementError as exc:
            raise ConfigurationError(f"ipset {name} is not usable: {exc}") from exc
        return ipset

    async def add(self, ip: IPAddress) -> None:
        await run_in_threadpool(run_command, [self.binary, "add", self.name, ip.compressed, "-exist"])

    async def remove(self, ip: IPAddress) -> None:
        await run_in_threadpool(run_command, [self.binary, "del", self.name, ip.compressed, "-exist"])

    async def list_members(self) -> list[IPAddress]:
        listing = await run_in_threadpool(run_command, [self.binary, "list", self.name])
        return parse_members(listing)
