"""Detection of node startup, death and recovery through TCP connectability.

The only externally observable sign of a bound (or released) listener is whether a TCP connection
to it succeeds, so readiness is checked by bounded polling.
"""

import logging
import socket
import time
import typing as tp

from minicluster.cluster_management import errors
from minicluster.utils import configuration
from minicluster.utils import deadline as deadline_mod

LOGGER = logging.getLogger(__name__)

# Minimal ratio between the deadline and the poll interval
MIN_DEADLINE_RATIO = 100


class HostPort(tp.NamedTuple):
    host: str
    port: int

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"

    @classmethod
    def parse(cls, value: str) -> "HostPort":
        """Parse `host:port` string.

        >>> HostPort.parse("127.0.0.1:7051")
        HostPort(host='127.0.0.1', port=7051)
        """
        host, sep, port_str = value.rpartition(":")
        if not (sep and host and port_str.isdigit()):
            msg = f"Invalid address '{value}', expected 'host:port'."
            raise ValueError(msg)
        return cls(host=host, port=int(port_str))


def is_port_open(address: HostPort, connect_timeout: float | None = None) -> bool:
    """Check if a TCP connection to the `address` can be established."""
    connect_timeout = connect_timeout or configuration.CONNECT_TIMEOUT
    try:
        with socket.create_connection(address, timeout=connect_timeout):
            return True
    except OSError:
        return False


def wait_for_state(
    address: HostPort,
    *,
    desired_open: bool,
    deadline: float,
    poll_interval: float | None = None,
    tracker: deadline_mod.DeadlineTracker | None = None,
    sleep_fn: tp.Callable[[float], None] = time.sleep,
    check_fn: tp.Callable[[], None] | None = None,
) -> None:
    """Wait until the port on `address` is open (or closed).

    Raise `ClusterTimeoutError` when the desired state is not observed in `deadline` seconds.
    The `check_fn` is called on every poll and can abort the wait by raising an exception.
    """
    poll_interval = poll_interval or configuration.PROBE_INTERVAL
    if poll_interval * MIN_DEADLINE_RATIO > deadline:
        LOGGER.warning(
            f"Poll interval {poll_interval}s is too large for deadline {deadline}s, "
            f"expected ratio at least 1:{MIN_DEADLINE_RATIO}."
        )

    tracker = tracker or deadline_mod.DeadlineTracker()
    connect_timeout = min(configuration.CONNECT_TIMEOUT, deadline) or configuration.CONNECT_TIMEOUT
    while True:
        if is_port_open(address, connect_timeout=connect_timeout) == desired_open:
            LOGGER.debug(
                f"Port on {address} is {'open' if desired_open else 'closed'} "
                f"after {tracker.elapsed():.3f}s."
            )
            return
        if check_fn:
            check_fn()
        if tracker.expired(deadline):
            break
        sleep_fn(min(poll_interval, tracker.remaining(deadline)) or poll_interval)

    msg = f"Address {address} is still {'closed' if desired_open else 'open'} after {deadline}s."
    raise errors.ClusterTimeoutError(msg)


def wait_for_open(address: HostPort, *, deadline: float, **kwargs: tp.Any) -> None:
    wait_for_state(address, desired_open=True, deadline=deadline, **kwargs)


def wait_for_closed(address: HostPort, *, deadline: float, **kwargs: tp.Any) -> None:
    wait_for_state(address, desired_open=False, deadline=deadline, **kwargs)
