#!/usr/bin/env python3
"""
Validated run parameters for connStatus, plus the unprivileged ICMP
platform check that has to pass before any socket is created.
"""

import ipaddress
import os
import re
import sys
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

DEFAULT_PEER = "75.75.75.75"
DEFAULT_COUNT = 1
DEFAULT_DELAY = 1.0

PING_GROUP_RANGE = "/proc/sys/net/ipv4/ping_group_range"

DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_NUMBER = re.compile(r"\d+(?:\.\d*)?|\.\d+")
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


class ConfigError(ValueError):
    """Invalid run parameters; the run must not start"""


class UnsupportedPlatformError(ConfigError):
    pass


@dataclass(frozen=True)
class ConnectionParameters:
    peer: str
    count: Optional[int] = DEFAULT_COUNT     # None: ping forever
    delay: float = DEFAULT_DELAY             # seconds between attempts
    verbose: bool = False
    identifier: int = 0                      # echo id, pid & 0xffff
    listen_network: str = "udp4"
    listen_address: str = "0.0.0.0"
    mtu: int = 1500
    iface: str = "en0"

    @property
    def forever(self) -> bool:
        return self.count is None


def check_peer(peer: str) -> str:
    """Return peer in canonical dotted-decimal form, or raise ConfigError"""
    try:
        return str(ipaddress.IPv4Address(peer))
    except ValueError:
        raise ConfigError(f"invalid ipv4 address: {peer}") from None


def check_count(count: int) -> Optional[int]:
    """Map a CLI repeat count to an attempt limit, 0 meaning no limit"""
    if count < 0:
        raise ConfigError(f"invalid negative count: {count}")
    return count or None


def check_delay(delay: float) -> float:
    if delay < 0:
        raise ConfigError(f"invalid negative delay: {delay}")
    return delay


def parse_duration(text: str) -> float:
    """
    Parse a duration string into seconds.

    Accepts unit sequences like "1s", "500ms", "1m30s", "1.5h" and a bare
    number, which is taken as seconds.

    Raises:
        ValueError: text is not a duration
    """
    text = text.strip()
    if not text:
        raise ValueError("empty duration")

    sign = 1.0
    if text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]

    if _NUMBER.fullmatch(text):
        return sign * float(text)

    total = 0.0
    pos = 0
    while pos < len(text):
        match = _DURATION_PART.match(text, pos)
        if match is None:
            raise ValueError(f"invalid duration: {text!r}")
        total += float(match.group(1)) * DURATION_UNITS[match.group(2)]
        pos = match.end()
    return sign * total


def init_parameters(peer: str = DEFAULT_PEER,
                    count: int = DEFAULT_COUNT,
                    delay: float = DEFAULT_DELAY,
                    verbose: bool = False,
                    pid: Optional[int] = None) -> ConnectionParameters:
    """
    Validate raw CLI values and build the immutable run parameters.

    Args:
        peer: ping target, dotted-decimal IPv4
        count: repeat count, 0 pings forever
        delay: seconds between pings
        verbose: print every matched reply
        pid: process id for the echo identifier, os.getpid() when None

    Raises:
        ConfigError: invalid address, negative count or negative delay
    """
    if pid is None:
        pid = os.getpid()
    return ConnectionParameters(peer=check_peer(peer),
                                count=check_count(count),
                                delay=check_delay(delay),
                                verbose=verbose,
                                identifier=pid & 0xffff)


def ping_group_range(path: str = PING_GROUP_RANGE) -> Optional[Tuple[int, int]]:
    """Read linux's ping_group_range, None if it can't be read"""
    try:
        with open(path, 'r') as f:
            low, high = f.read().split()
        return int(low), int(high)
    except (OSError, ValueError):
        return None


def check_platform(platform: Optional[str] = None,
                   groups: Optional[Iterable[int]] = None,
                   range_path: str = PING_GROUP_RANGE) -> None:
    """
    Check that this OS supports unprivileged ICMP.

    Raises:
        UnsupportedPlatformError: no datagram ICMP sockets on this platform
    """
    platform = platform or sys.platform
    if platform == "darwin":
        print("unprivileged ICMP enabled")
    elif platform.startswith("linux"):
        group_range = ping_group_range(range_path)
        if groups is None:
            groups = [os.getgid(), *os.getgroups()]
        # the kernel accepts any of the caller's groups, supplementary included
        gid = next((g for g in groups
                    if group_range and group_range[0] <= g <= group_range[1]), None)
        if gid is not None:
            print(f"unprivileged ICMP enabled for group {gid} "
                  f"(ping_group_range {group_range[0]} {group_range[1]})")
        else:
            print("you may need to adjust the net.ipv4.ping_group_range kernel state")
    else:
        raise UnsupportedPlatformError(f"unprivileged ICMP not supported on {platform}")
