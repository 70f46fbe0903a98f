"""Mapping between addresses and infraction store keys."""

from __future__ import annotations

import ipaddress
import re

from jailer.core.exceptions import InfractionParseError

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address

DEFAULT_KEY_PREFIX = "aws-fail2ban-"
# Redis MATCH is a glob; these must be backslash-escaped to match literally
GLOB_SPECIAL_RE = re.compile(r"([*?\[\]\\])")


def parse_ip(raw: str) -> IPAddress:
    try:
        return ipaddress.ip_address(raw.strip())
    except ValueError as exc:
        raise InfractionParseError(raw, "ip address") from exc


def ip_to_key(ip: IPAddress, prefix: str = DEFAULT_KEY_PREFIX) -> str:
    return f"{prefix}{ip.compressed}"


def key_to_ip(key: str, prefix: str = DEFAULT_KEY_PREFIX) -> IPAddress:
    # Keys are only ever written by ip_to_key, a mismatch means foreign data
    if not key.startswith(prefix):
        raise InfractionParseError(key, "ip address")
    return parse_ip(key[len(prefix):])


def key_pattern(prefix: str = DEFAULT_KEY_PREFIX) -> str:
    escaped = GLOB_SPECIAL_RE.sub(r"\\\1", prefix)
    return escaped + "*"
