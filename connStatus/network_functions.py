#!/usr/bin/env python3
"""
Transport for connStatus: one unprivileged (datagram) ICMP socket.

The socket is opened once per run, used for every ping attempt and closed at
the end. Each failure is raised as an ICMPConnectionError subclass naming the
connection stage that failed, so the caller can print it and keep going.
"""

import logging
import socket
import sys
from datetime import datetime
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

# listen network name -> (family, type, proto)
NETWORKS = {
    "udp4": (socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_ICMP),
}


class ICMPConnectionError(Exception):
    """Base class for every transport failure"""
    stage = "connection"

    def __init__(self, message, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class BindError(ICMPConnectionError):
    stage = "open"


class SendError(ICMPConnectionError):
    stage = "send"


class TimeoutConfigError(ICMPConnectionError):
    stage = "set_read_timeout"


class ReceiveError(ICMPConnectionError):
    stage = "receive"


class ReadTimeoutError(ReceiveError):
    """No data before the read deadline; not fatal, just no reply this round"""


def timestamp(now: Optional[datetime] = None) -> str:
    """RFC3339 timestamp, local time with offset"""
    now = now or datetime.now().astimezone()
    return now.isoformat(timespec="seconds")


def print_err(stage, err):
    """Print a timestamped connection error"""
    print(f"{timestamp()} connection.{stage}(): {err}")


def strip_ip_header(buffer, nbytes: int) -> int:
    """
    Drop a leading IPv4 header from the first nbytes of buffer, in place.

    darwin hands the IP header to datagram ICMP sockets, linux doesn't.
    Returns the number of ICMP bytes left at the start of buffer.
    """
    if nbytes < 20 or buffer[0] >> 4 != 4:
        return nbytes
    header_len = (buffer[0] & 0x0F) * 4
    if header_len < 20 or header_len > nbytes:
        return nbytes
    remaining = nbytes - header_len
    buffer[:remaining] = buffer[header_len:nbytes]
    return remaining


class ICMPConnection:
    """Datagram ICMP endpoint owned by a single ping run"""

    def __init__(self, sock, strip_ip=None):
        self.sock = sock
        self.strip_ip = sys.platform == "darwin" if strip_ip is None else strip_ip
        self.closed = False

    @classmethod
    def open(cls, network: str, address: str) -> "ICMPConnection":
        """
        Create the ICMP socket and bind it to the local address.

        Raises:
            BindError: unknown network, or the OS refused socket()/bind()
        """
        if network not in NETWORKS:
            raise BindError(f"unsupported network: {network}")
        family, sock_type, proto = NETWORKS[network]

        try:
            sock = socket.socket(family, sock_type, proto)
        except OSError as e:
            raise BindError(f"cannot create {network} socket: {e}", e) from e

        try:
            sock.bind((address, 0))
        except OSError as e:
            sock.close()
            raise BindError(f"cannot bind {address}: {e}", e) from e

        logger.debug("listening on %s %s", network, address)
        return cls(sock)

    def send(self, data: bytes, peer: str) -> None:
        try:
            self.sock.sendto(data, (peer, 0))
        except OSError as e:
            raise SendError(e, e) from e

    def set_read_timeout(self, seconds: float) -> None:
        """Arm the deadline for the next receive()"""
        try:
            self.sock.settimeout(seconds)
        except (OSError, ValueError) as e:
            raise TimeoutConfigError(e, e) from e

    def receive(self, buffer) -> Tuple[int, str]:
        """
        Receive one datagram into buffer.

        Returns:
            (nbytes, peer address) with the ICMP message at the start of buffer

        Raises:
            ReadTimeoutError: deadline expired
            ReceiveError: any other socket failure
        """
        try:
            nbytes, addr = self.sock.recvfrom_into(buffer)
        except socket.timeout as e:
            raise ReadTimeoutError("i/o timeout", e) from e
        except OSError as e:
            raise ReceiveError(e, e) from e

        if self.strip_ip:
            nbytes = strip_ip_header(buffer, nbytes)
        return nbytes, addr[0]

    def close(self) -> None:
        """Release the socket; failures are reported, never raised"""
        if self.closed:
            return
        self.closed = True
        try:
            self.sock.close()
        except OSError as e:
            print_err("close", e)
            return
        logger.debug("connection closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
