#!/usr/bin/env python3
"""
ping.py - check connection status to a host with unprivileged ICMP echo.

Usage examples:
  connstatus
  connstatus --peer 8.8.8.8 --count 5 --delay 500ms -v
  connstatus --peer 1.1.1.1 --count 0      # ping until Ctrl-C

Notes:
- No root needed: uses the datagram ICMP socket (darwin, or linux with a
  suitable net.ipv4.ping_group_range).
"""

import argparse
import logging

from scapy.all import conf

from connStatus.conn_status import conn_status
from connStatus.network_functions import BindError
from connStatus.parameters import (
    DEFAULT_COUNT,
    DEFAULT_PEER,
    ConfigError,
    check_platform,
    init_parameters,
    parse_duration,
)


def duration(text):
    try:
        return parse_duration(text)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def build_parser():
    parser = argparse.ArgumentParser(prog="connstatus",
                                     description="Ping one IPv4 host over an unprivileged ICMP socket.")
    parser.add_argument("--peer", default=DEFAULT_PEER,
                        help=f"ping target ipv4 address (default: {DEFAULT_PEER})")
    parser.add_argument("--count", type=int, default=DEFAULT_COUNT,
                        help="non-negative ping repeat count, 0 pings forever (default: 1)")
    parser.add_argument("--delay", type=duration, default="1s",
                        help="delay between pings, e.g. 1s, 250ms, 1m30s (default: 1s)")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="enable verbose output")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(name)s: %(message)s")

    # Keep Scapy quiet
    conf.verb = 0

    try:
        check_platform()
        parameters = init_parameters(peer=args.peer,
                                     count=args.count,
                                     delay=args.delay,
                                     verbose=args.verbose)
        if parameters.verbose:
            print(f"processed and validated parameters: {parameters}")
        conn_status(parameters)
    except ConfigError as e:
        print(f"Error: {e}")
        return 1
    except BindError as e:
        print(f"Error: {e}")
        print("Check net.ipv4.ping_group_range, or run with administrator/root privileges.")
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted by user.")
        return 130
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
