import logging
import socket
import typing as tp

import pytest
from _pytest.logging import LogCaptureFixture

from minicluster.cluster_management import errors
from minicluster.utils import configuration
from minicluster.utils import deadline
from minicluster.utils import port_probe


@pytest.fixture
def listening_socket() -> tp.Generator[socket.socket, None, None]:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen(8)
    yield sock
    sock.close()


@pytest.fixture
def closed_address() -> port_probe.HostPort:
    """Return address that nobody listens on."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port_probe.HostPort("127.0.0.1", port)


class FakeTime:
    """Clock and sleep function sharing the same fake time."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def clock(self) -> float:
        return self.now

    def sleep(self, secs: float) -> None:
        self.sleeps.append(secs)
        self.now += secs


def test_parse():
    assert port_probe.HostPort.parse("localhost:80") == ("localhost", 80)
    assert str(port_probe.HostPort("127.0.0.1", 7051)) == "127.0.0.1:7051"


@pytest.mark.parametrize("value", ("localhost", ":80", "localhost:", "localhost:http"))
def test_parse_invalid(value: str):
    with pytest.raises(ValueError, match="expected 'host:port'"):
        port_probe.HostPort.parse(value)


def test_is_port_open(listening_socket: socket.socket, closed_address: port_probe.HostPort):
    address = port_probe.HostPort("127.0.0.1", listening_socket.getsockname()[1])
    assert port_probe.is_port_open(address)
    assert not port_probe.is_port_open(closed_address)


def test_wait_for_open(listening_socket: socket.socket):
    address = port_probe.HostPort("127.0.0.1", listening_socket.getsockname()[1])
    fake_time = FakeTime()
    port_probe.wait_for_open(
        address,
        deadline=5,
        tracker=deadline.DeadlineTracker(now_fn=fake_time.clock),
        sleep_fn=fake_time.sleep,
    )
    assert fake_time.sleeps == []


def test_wait_for_closed(closed_address: port_probe.HostPort):
    port_probe.wait_for_closed(closed_address, deadline=1)


def test_wait_timeout(closed_address: port_probe.HostPort):
    """The wait gives up after the deadline and never sleeps past it."""
    fake_time = FakeTime()
    with pytest.raises(errors.ClusterTimeoutError, match="still closed after 1"):
        port_probe.wait_for_open(
            closed_address,
            deadline=1,
            poll_interval=0.25,
            tracker=deadline.DeadlineTracker(now_fn=fake_time.clock),
            sleep_fn=fake_time.sleep,
        )

    assert fake_time.sleeps == [0.25, 0.25, 0.25, 0.25]
    assert fake_time.now == 1


def test_wait_check_fn(closed_address: port_probe.HostPort):
    """The check function can abort the wait."""
    calls = []

    def _check() -> None:
        calls.append(1)
        if len(calls) == 2:
            msg = "process died"
            raise errors.LaunchFailureError(msg)

    fake_time = FakeTime()
    with pytest.raises(errors.LaunchFailureError):
        port_probe.wait_for_open(
            closed_address,
            deadline=10,
            tracker=deadline.DeadlineTracker(now_fn=fake_time.clock),
            sleep_fn=fake_time.sleep,
            check_fn=_check,
        )
    assert len(calls) == 2


def test_poll_interval_too_large(caplog: LogCaptureFixture, closed_address: port_probe.HostPort):
    with caplog.at_level(logging.WARNING, logger=port_probe.__name__):
        port_probe.wait_for_closed(closed_address, deadline=1, poll_interval=0.25)
    assert "Poll interval 0.25s is too large for deadline 1s" in caplog.text


def test_default_poll_interval(caplog: LogCaptureFixture, closed_address: port_probe.HostPort):
    """The default poll interval is small enough for the default start and stop deadlines."""
    with caplog.at_level(logging.WARNING, logger=port_probe.__name__):
        port_probe.wait_for_closed(closed_address, deadline=configuration.STOP_TIMEOUT)
        port_probe.wait_for_closed(closed_address, deadline=configuration.START_TIMEOUT)
    assert "too large" not in caplog.text
