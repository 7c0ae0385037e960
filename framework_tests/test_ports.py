import socket

import pytest
from _pytest.monkeypatch import MonkeyPatch

from minicluster.cluster_management import ports as ports_mod
from minicluster.utils import port_probe


class FakeReservation:
    ports: list[int] = []
    released: list[int] = []

    def __init__(self, host: str = "127.0.0.1") -> None:
        self.host = host
        self.port = self.ports.pop(0)

    def release(self) -> None:
        self.released.append(self.port)


@pytest.fixture
def fake_reservation(monkeypatch: MonkeyPatch) -> type[FakeReservation]:
    monkeypatch.setattr(FakeReservation, "ports", [])
    monkeypatch.setattr(FakeReservation, "released", [])
    monkeypatch.setattr(ports_mod, "PortReservation", FakeReservation)
    return FakeReservation


def test_reservation_refuses_connections():
    reservation = ports_mod.PortReservation()
    try:
        assert reservation.port > 0
        assert not port_probe.is_port_open(reservation.address)
    finally:
        reservation.release()


def test_reserve_distinct_ports():
    reservations = ports_mod.reserve_ports(10)
    try:
        assert len({r.port for r in reservations}) == 10
        assert all(r.is_held for r in reservations) == ports_mod.HAS_REUSEPORT
    finally:
        for r in reservations:
            r.release()


def test_release_idempotent():
    reservation = ports_mod.PortReservation()
    reservation.release()
    reservation.release()
    assert not reservation.is_held


@pytest.mark.skipif(not ports_mod.HAS_REUSEPORT, reason="needs SO_REUSEPORT")
def test_node_can_bind_reserved_port():
    """A node binds the reserved port while the reservation is held, and can do so repeatedly."""
    reservation = ports_mod.PortReservation()
    try:
        for __ in range(2):
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
            sock.bind(reservation.address)
            sock.listen()
            assert port_probe.is_port_open(reservation.address)
            sock.close()
            assert not port_probe.is_port_open(reservation.address)
        assert reservation.is_held
    finally:
        reservation.release()


def test_duplicate_port_retried(fake_reservation: type[FakeReservation]):
    fake_reservation.ports = [5000, 5000, 5001]
    reservations = ports_mod.reserve_ports(2)
    assert [r.port for r in reservations] == [5000, 5001]
    assert fake_reservation.released == [5000]


def test_too_many_duplicates(fake_reservation: type[FakeReservation]):
    fake_reservation.ports = [5000] * 4
    with pytest.raises(RuntimeError, match="distinct ports"):
        ports_mod.reserve_ports(2, max_attempts=4)
    assert fake_reservation.released == [5000] * 4
