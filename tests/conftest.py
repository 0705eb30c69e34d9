import pytest

from connStatus.network_functions import ReceiveError, SendError
from connStatus.parameters import ConnectionParameters

from fakes import PEER, Sleeper


@pytest.fixture
def parameters():
    return ConnectionParameters(peer=PEER, count=4, delay=0.25, identifier=0x1234)


@pytest.fixture
def sleeper():
    return Sleeper()


@pytest.fixture
def send_error():
    return SendError("network is unreachable")


@pytest.fixture
def receive_error():
    return ReceiveError("connection refused")
