#!/usr/bin/env python3
"""
ICMP message codec for connStatus.

Builds outgoing Echo Request bytes and decodes whatever comes back on the
datagram ICMP socket into a ReplyMessage. Packets are built and echo
messages dissected with Scapy's ICMP layer; everything else is classified
from its type byte alone.
"""

import struct
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Optional

from scapy.all import ICMP, Raw
from scapy.error import Scapy_Exception
from scapy.layers.inet import icmptypes

PAYLOAD = b"hello-sailor"

ICMP_HEADER_LEN = 4     # type, code, checksum
ECHO_HEADER_LEN = 8     # + identifier, sequence


class DecodeError(ValueError):
    """Received bytes could not be decoded as an ICMP message"""


class ICMPType(IntEnum):
    """IPv4 ICMP message types a ping client can expect to see"""
    ECHO_REPLY = 0
    DESTINATION_UNREACHABLE = 3
    REDIRECT = 5
    ECHO = 8
    ROUTER_ADVERTISEMENT = 9
    ROUTER_SOLICITATION = 10
    TIME_EXCEEDED = 11
    PARAMETER_PROBLEM = 12
    TIMESTAMP = 13
    TIMESTAMP_REPLY = 14
    PHOTURIS = 40
    EXTENDED_ECHO_REQUEST = 42
    EXTENDED_ECHO_REPLY = 43


class ReplyKind(Enum):
    """Classification bucket of a decoded reply"""
    ECHO_REPLY = "echo-reply"
    UNEXPECTED = "unexpected"
    UNKNOWN = "unknown"


ECHO_TYPES = (ICMPType.ECHO_REPLY, ICMPType.ECHO)
RECOGNIZED_TYPES = frozenset(int(t) for t in ICMPType)


def type_name(icmp_type: int) -> str:
    """
    Human readable name for an ICMP type number.

    Scapy's icmptypes table is used where it has an entry; recognized types
    Scapy doesn't name fall back to the enum member name, anything else is
    shown as the bare number.
    """
    if icmp_type in icmptypes:
        return icmptypes[icmp_type]
    try:
        return ICMPType(icmp_type).name.lower().replace('_', '-')
    except ValueError:
        return str(icmp_type)


def classify(icmp_type: int) -> ReplyKind:
    if icmp_type == ICMPType.ECHO_REPLY:
        return ReplyKind.ECHO_REPLY
    if icmp_type in RECOGNIZED_TYPES:
        return ReplyKind.UNEXPECTED
    return ReplyKind.UNKNOWN


@dataclass(frozen=True)
class EchoMessage:
    """One outgoing ICMP Echo Request"""
    identifier: int
    sequence: int
    payload: bytes = PAYLOAD

    def build(self) -> bytes:
        """Serialize to wire bytes, checksum filled in by Scapy"""
        pkt = ICMP(type=int(ICMPType.ECHO),
                   code=0,
                   id=self.identifier & 0xffff,
                   seq=self.sequence & 0xffff) / Raw(load=self.payload)
        return bytes(pkt)


@dataclass(frozen=True)
class ReplyMessage:
    """
    One decoded ICMP datagram.

    identifier, sequence and payload are only set for the echo types
    (Echo Reply and Echo Request); for everything else they are None.
    """
    type: int
    code: int
    kind: ReplyKind
    identifier: Optional[int] = None
    sequence: Optional[int] = None
    payload: Optional[bytes] = None

    @property
    def has_body(self) -> bool:
        return self.sequence is not None


def encode_echo_request(identifier: int, sequence: int, payload: bytes = PAYLOAD) -> bytes:
    return EchoMessage(identifier, sequence, payload).build()


def decode(data: bytes, ip_version: int = 4) -> ReplyMessage:
    """
    Decode a received ICMP message.

    Args:
        data: ICMP message bytes, without any IP header
        ip_version: IP version the message arrived over; only 4 is supported

    Returns:
        ReplyMessage with its classification bucket set

    Raises:
        DecodeError: unsupported IP version, truncated or malformed message
    """
    if ip_version != 4:
        raise DecodeError(f"unsupported ip version: {ip_version}")
    data = bytes(data)
    if len(data) < ICMP_HEADER_LEN:
        raise DecodeError(f"message too short: {len(data)} bytes")

    icmp_type, code = data[0], data[1]
    if icmp_type not in ECHO_TYPES:
        # body layout differs per type and isn't needed to classify it
        return ReplyMessage(type=icmp_type, code=code, kind=classify(icmp_type))

    if len(data) < ECHO_HEADER_LEN:
        raise DecodeError(f"echo message too short: {len(data)} bytes")
    try:
        pkt = ICMP(data)
    except (struct.error, Scapy_Exception) as e:
        raise DecodeError(f"malformed icmp message: {e}") from e

    return ReplyMessage(type=pkt.type,
                        code=pkt.code,
                        kind=classify(pkt.type),
                        identifier=pkt.id,
                        sequence=pkt.seq,
                        payload=bytes(pkt.payload))
