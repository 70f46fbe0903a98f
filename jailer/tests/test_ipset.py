"""Tests for the ipset enforcement point and key mapping."""

from __future__ import annotations

import asyncio
import ipaddress
import subprocess
from unittest.mock import patch

import pytest

from jailer.core.exceptions import ConfigurationError, EnforcementError, InfractionParseError
from jailer.ip.ipset import IpSet, parse_members, run_command
from jailer.ip.keys import ip_to_key, key_pattern, key_to_ip

LISTING = """Name: fail2ban
Type: hash:ip
Revision: 4
Header: family inet hashsize 1024 maxelem 65536
Size in memory: 168
References: 1
Number of entries: 3
Members:
10.0.0.1
10.0.0.2 timeout 300
bogus-entry
"""


def completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class TestKeys:
    def test_round_trip_ipv4(self):
        ip = ipaddress.ip_address("10.1.2.3")
        assert ip_to_key(ip) == "aws-fail2ban-10.1.2.3"
        assert key_to_ip("aws-fail2ban-10.1.2.3") == ip

    def test_ipv6_uses_compressed_form(self):
        ip = ipaddress.ip_address("2001:0db8:0000:0000:0000:0000:0000:0001")
        assert ip_to_key(ip, "j-") == "j-2001:db8::1"

    def test_key_with_wrong_prefix_rejected(self):
        with pytest.raises(InfractionParseError):
            key_to_ip("other-10.1.2.3")

    def test_pattern(self):
        assert key_pattern("j-") == "j-*"

    def test_pattern_escapes_glob_characters(self):
        assert key_pattern("j*?[x]\\-") == r"j\*\?\[x\]\\-*"


class TestParseMembers:
    def test_members_section_parsed(self, caplog):
        members = parse_members(LISTING)

        assert members == [ipaddress.ip_address("10.0.0.1"), ipaddress.ip_address("10.0.0.2")]
        assert "unable to parse ipset member bogus-entry" in caplog.text

    def test_empty_set(self):
        assert parse_members("Name: fail2ban\nMembers:\n") == []


class TestRunCommand:
    def test_non_zero_exit_raises(self):
        with patch("jailer.ip.ipset.subprocess.run", return_value=completed(1, stderr="The set with the given name does not exist")):
            with pytest.raises(EnforcementError) as exc_info:
                run_command(["ipset", "list", "nope"])

        assert exc_info.value.returncode == 1
        assert "does not exist" in str(exc_info.value)

    def test_missing_binary_raises(self):
        with patch("jailer.ip.ipset.subprocess.run", side_effect=FileNotFoundError("ipset")):
            with pytest.raises(EnforcementError):
                run_command(["ipset", "list"])


class TestIpSet:
    def test_invalid_name_rejected(self):
        with pytest.raises(ConfigurationError):
            IpSet("bad name")
        with pytest.raises(ConfigurationError):
            IpSet("x" * 32)

    def test_open_requires_existing_set(self):
        with patch("jailer.ip.ipset.subprocess.run", return_value=completed(1, stderr="missing")):
            with pytest.raises(ConfigurationError):
                asyncio.run(IpSet.open("fail2ban", binary="ipset"))

    def test_add_and_remove_are_idempotent_commands(self):
        ip = ipaddress.ip_address("10.0.0.9")
        ipset = IpSet("fail2ban", binary="ipset")

        with patch("jailer.ip.ipset.subprocess.run", return_value=completed()) as run:
            asyncio.run(ipset.add(ip))
            asyncio.run(ipset.remove(ip))

        commands = [c.args[0] for c in run.call_args_list]
        assert commands == [
            ["ipset", "add", "fail2ban", "10.0.0.9", "-exist"],
            ["ipset", "del", "fail2ban", "10.0.0.9", "-exist"],
        ]

    def test_list_members(self):
        ipset = IpSet("fail2ban", binary="ipset")
        with patch("jailer.ip.ipset.subprocess.run", return_value=completed(stdout=LISTING)):
            members = asyncio.run(ipset.list_members())

        assert len(members) == 2
