#!/usr/bin/env python3
"""
Ping request/response loop.

Each attempt sends one sequenced Echo Request, waits at most READ_TIMEOUT for
one reply and yields what happened as an AttemptResult. Nothing is retried
within an attempt; loss, duplicates and reordering show up in the printed
classification.
"""

import itertools
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, Optional, Union

from connStatus.layers import DecodeError, ReplyKind, decode, encode_echo_request, type_name
from connStatus.network_functions import (
    ICMPConnection,
    ICMPConnectionError,
    ReadTimeoutError,
    timestamp,
)
from connStatus.parameters import ConnectionParameters

READ_TIMEOUT = 1.0  # seconds to wait for each reply


@dataclass(frozen=True)
class Success:
    sequence: int
    peer: str
    type: int = 0


@dataclass(frozen=True)
class Timeout:
    detail: str = "i/o timeout"
    stage: str = "receive"


@dataclass(frozen=True)
class TransportError:
    stage: str
    detail: str


@dataclass(frozen=True)
class UnexpectedType:
    type: int
    peer: str


@dataclass(frozen=True)
class UnknownType:
    type: int


AttemptResult = Union[Success, Timeout, TransportError, UnexpectedType, UnknownType]


def attempt_numbers(parameters: ConnectionParameters) -> Iterator[int]:
    if parameters.forever:
        # stopped only by a signal
        return itertools.count()
    return iter(range(parameters.count))


def ping_once(parameters: ConnectionParameters,
              connection: ICMPConnection,
              sequence: int,
              buffer: bytearray,
              read_timeout: float = READ_TIMEOUT) -> AttemptResult:
    """Send one echo request and classify the single reply, if any"""
    msg_tx = encode_echo_request(parameters.identifier, sequence)
    try:
        connection.send(msg_tx, parameters.peer)
        connection.set_read_timeout(read_timeout)
        nbytes, peer = connection.receive(buffer)
    except ReadTimeoutError as e:
        return Timeout(str(e))
    except ICMPConnectionError as e:
        return TransportError(e.stage, str(e))

    try:
        reply = decode(buffer[:nbytes], ip_version=4)
    except DecodeError as e:
        return TransportError("decode", str(e))

    if reply.kind is ReplyKind.ECHO_REPLY and reply.has_body:
        return Success(reply.sequence, peer, reply.type)
    if reply.kind is ReplyKind.UNKNOWN:
        return UnknownType(reply.type)
    return UnexpectedType(reply.type, peer)


def exchange(parameters: ConnectionParameters,
             connection: ICMPConnection,
             sleep=time.sleep,
             read_timeout: float = READ_TIMEOUT) -> Iterator[AttemptResult]:
    """
    Run the ping attempts, yielding one result per attempt.

    The delay is only slept between attempts, never before the first one.
    The sequence number is the attempt number, so it advances exactly once
    per attempt whatever the outcome. With count None this never ends.
    """
    buffer = bytearray(parameters.mtu)
    for sequence in attempt_numbers(parameters):
        if sequence:
            sleep(parameters.delay)
        yield ping_once(parameters, connection, sequence, buffer, read_timeout)


def format_result(result: AttemptResult, verbose: bool = False,
                  now: Optional[datetime] = None) -> Optional[str]:
    """
    Console line for one attempt, or None when there's nothing to print.

    Matched replies are only printed in verbose mode; everything else always is.
    """
    ts = timestamp(now)
    if isinstance(result, Success):
        if not verbose:
            return None
        return f"{ts} received {type_name(result.type)} {result.sequence} from {result.peer}"
    if isinstance(result, UnexpectedType):
        return f"{ts} received unexpected response {type_name(result.type)} from {result.peer}"
    if isinstance(result, UnknownType):
        return f"{ts} received unknown response {type_name(result.type)}"
    return f"{ts} connection.{result.stage}(): {result.detail}"


def conn_status(parameters: ConnectionParameters, sleep=time.sleep) -> int:
    """
    Open the ICMP connection and ping the peer.

    Returns:
        number of attempts made

    Raises:
        BindError: the ICMP socket could not be opened
    """
    attempts = 0
    with ICMPConnection.open(parameters.listen_network, parameters.listen_address) as connection:
        for result in exchange(parameters, connection, sleep=sleep):
            attempts += 1
            line = format_result(result, parameters.verbose)
            if line:
                print(line, flush=True)
    return attempts
