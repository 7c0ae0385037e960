"""Reservation of node ports.

A port is reserved by a socket that is bound to the port with `SO_REUSEPORT`, but never listens.
The reservation is held by the supervisor for the whole lifetime of the cluster, so the port can't
be handed out to anybody else while a node is stopped, and a restarted node can bind the same
port again. The managed processes must bind their port with `SO_REUSEPORT` as well.

A bound socket that doesn't listen refuses incoming connections, so the reservation is invisible
to the readiness probe.
"""

import logging
import socket

from minicluster.utils import configuration
from minicluster.utils import port_probe

LOGGER = logging.getLogger(__name__)

HAS_REUSEPORT = hasattr(socket, "SO_REUSEPORT")


class PortReservation:
    """Port held by the supervisor on behalf of a node."""

    def __init__(self, host: str = configuration.LOCALHOST) -> None:
        self.host = host
        self._sock: socket.socket | None = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if HAS_REUSEPORT:
                self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
            self._sock.bind((host, 0))
        except OSError:
            self._sock.close()
            raise
        self.port: int = self._sock.getsockname()[1]

        if not HAS_REUSEPORT:
            # Fall back to just remembering the port number
            LOGGER.warning(
                f"SO_REUSEPORT is not available, port {self.port} is not held while nodes "
                "are stopped."
            )
            self.release()

    def __repr__(self) -> str:
        held = "held" if self.is_held else "released"
        return f"<{self.__class__.__name__} {self.address} {held}>"

    @property
    def address(self) -> port_probe.HostPort:
        return port_probe.HostPort(host=self.host, port=self.port)

    @property
    def is_held(self) -> bool:
        return self._sock is not None

    def release(self) -> None:
        """Release the reservation. Calling it repeatedly is a no-op."""
        if self._sock is None:
            return
        self._sock.close()
        self._sock = None


def reserve_ports(
    num: int, host: str = configuration.LOCALHOST, max_attempts: int = 0
) -> list[PortReservation]:
    """Reserve `num` distinct ports.

    The OS can hand out a port that is already reserved, because all the reservations are bound
    with `SO_REUSEPORT`. Such reservations are thrown away and another port is requested.
    """
    max_attempts = max_attempts or num * 10
    reservations: dict[int, PortReservation] = {}
    attempts = 0
    try:
        while len(reservations) < num:
            attempts += 1
            if attempts > max_attempts:
                msg = f"Failed to reserve {num} distinct ports in {max_attempts} attempts."
                raise RuntimeError(msg)
            reservation = PortReservation(host=host)
            if reservation.port in reservations:
                LOGGER.debug(f"Port {reservation.port} was handed out twice, trying again.")
                reservation.release()
                continue
            reservations[reservation.port] = reservation
    except (OSError, RuntimeError):
        for r in reservations.values():
            r.release()
        raise

    return list(reservations.values())
