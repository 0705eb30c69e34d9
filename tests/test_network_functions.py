import errno
import socket

import pytest
from scapy.all import ICMP, IP, Raw

from connStatus import network_functions
from connStatus.network_functions import (
    BindError,
    ICMPConnection,
    ReadTimeoutError,
    ReceiveError,
    SendError,
    TimeoutConfigError,
    strip_ip_header,
)


class StubSocket:
    def __init__(self, fail_with=None):
        self.fail_with = fail_with
        self.sent = []
        self.bound = None
        self.timeout = None
        self.close_calls = 0

    def sendto(self, data, addr):
        if self.fail_with:
            raise self.fail_with
        self.sent.append((data, addr))
        return len(data)

    def bind(self, addr):
        if self.fail_with:
            raise self.fail_with
        self.bound = addr

    def settimeout(self, value):
        self.timeout = value

    def recvfrom_into(self, buffer):
        raise self.fail_with

    def close(self):
        self.close_calls += 1


@pytest.fixture
def udp_pair():
    receiver = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    receiver.bind(("127.0.0.1", 0))
    sender = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    yield receiver, sender
    sender.close()
    receiver.close()


def test_send_goes_to_peer_port_zero():
    sock = StubSocket()
    ICMPConnection(sock).send(b"ping", "192.0.2.1")

    assert sock.sent == [(b"ping", ("192.0.2.1", 0))]


def test_send_error_carries_cause():
    cause = OSError(errno.ENETUNREACH, "Network is unreachable")
    with pytest.raises(SendError) as info:
        ICMPConnection(StubSocket(fail_with=cause)).send(b"ping", "192.0.2.1")

    assert info.value.cause is cause
    assert info.value.stage == "send"


def test_set_read_timeout_rejected():
    conn = ICMPConnection(socket.socket(socket.AF_INET, socket.SOCK_DGRAM))
    with conn:
        with pytest.raises(TimeoutConfigError):
            conn.set_read_timeout(-1)


def test_receive_returns_bytes_and_peer(udp_pair):
    receiver, sender = udp_pair
    conn = ICMPConnection(receiver, strip_ip=False)
    sender.sendto(b"\x00\x00hello", receiver.getsockname())

    buffer = bytearray(1500)
    conn.set_read_timeout(1.0)
    nbytes, peer = conn.receive(buffer)

    assert buffer[:nbytes] == b"\x00\x00hello"
    assert peer == "127.0.0.1"


def test_receive_timeout(udp_pair):
    receiver, _ = udp_pair
    conn = ICMPConnection(receiver, strip_ip=False)
    conn.set_read_timeout(0.05)

    with pytest.raises(ReadTimeoutError) as info:
        conn.receive(bytearray(64))
    assert info.value.stage == "receive"


def test_receive_error():
    conn = ICMPConnection(StubSocket(fail_with=OSError(errno.EBADF, "Bad file descriptor")))

    with pytest.raises(ReceiveError) as info:
        conn.receive(bytearray(64))
    assert not isinstance(info.value, ReadTimeoutError)


def test_receive_strips_ip_header(udp_pair):
    receiver, sender = udp_pair
    icmp = bytes(ICMP(type=0, id=1, seq=5) / Raw(load=b"hello-sailor"))
    datagram = bytes(IP(src="192.0.2.1", dst="192.0.2.2", proto=1) / Raw(load=icmp))
    sender.sendto(datagram, receiver.getsockname())

    conn = ICMPConnection(receiver, strip_ip=True)
    conn.set_read_timeout(1.0)
    buffer = bytearray(1500)
    nbytes, _ = conn.receive(buffer)

    assert bytes(buffer[:nbytes]) == icmp


def test_strip_ip_header_leaves_bare_icmp_alone():
    icmp = bytearray(bytes(ICMP(type=0, id=1, seq=5) / Raw(load=b"x" * 30)))
    assert strip_ip_header(icmp, len(icmp)) == len(icmp)


def test_strip_ip_header_with_options():
    # ihl 6: 20 byte header plus one word of options
    datagram = bytearray(b"\x46" + bytes(23) + bytes(ICMP(type=0)))
    assert strip_ip_header(datagram, len(datagram)) == 8
    assert datagram[0] == 0


def test_open_unsupported_network():
    with pytest.raises(BindError):
        ICMPConnection.open("ip4:icmp", "0.0.0.0")


def test_open_permission_denied(monkeypatch):
    def refuse(*args):
        raise PermissionError(errno.EACCES, "Permission denied")

    monkeypatch.setattr(network_functions.socket, "socket", refuse)
    with pytest.raises(BindError) as info:
        ICMPConnection.open("udp4", "0.0.0.0")
    assert isinstance(info.value.cause, PermissionError)


def test_open_bind_failure_closes_socket(monkeypatch):
    stub = StubSocket(fail_with=OSError(errno.EADDRNOTAVAIL, "Cannot assign requested address"))
    monkeypatch.setattr(network_functions.socket, "socket", lambda *args: stub)

    with pytest.raises(BindError):
        ICMPConnection.open("udp4", "203.0.113.9")
    assert stub.close_calls == 1


def test_open_binds_to_address(monkeypatch):
    stub = StubSocket()
    created = []

    def make(*args):
        created.append(args)
        return stub

    monkeypatch.setattr(network_functions.socket, "socket", make)
    conn = ICMPConnection.open("udp4", "0.0.0.0")

    assert created == [(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_ICMP)]
    assert stub.bound == ("0.0.0.0", 0)
    assert conn.sock is stub


def test_context_manager_closes_once():
    stub = StubSocket()
    with ICMPConnection(stub) as conn:
        pass
    conn.close()

    assert stub.close_calls == 1


def test_close_failure_is_reported(capsys):
    class BadClose(StubSocket):
        def close(self):
            raise OSError(errno.EIO, "Input/output error")

    ICMPConnection(BadClose()).close()

    assert "connection.close(): " in capsys.readouterr().out
