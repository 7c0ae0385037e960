"""Tests for cluster handle bookkeeping that don't need running processes."""

import pathlib as pl
import typing as tp

import pytest

from minicluster.cluster_management import errors
from minicluster.cluster_management import nodes
from minicluster.cluster_management import ports as ports_mod
from minicluster.cluster_management import supervisor
from minicluster.utils import process_control


def _get_node(
    role: nodes.NodeRole, name: str, reservation: ports_mod.PortReservation, tmp_path: pl.Path
) -> nodes.NodeProcess:
    recipe = nodes.LaunchRecipe(
        command=tmp_path / role.value, args=(), env={}, workdir=tmp_path / name
    )
    return nodes.NodeProcess(
        role=role,
        name=name,
        reservation=reservation,
        recipe=recipe,
        controller=process_control.ProcessController(name=name),
    )


@pytest.fixture
def reservations() -> tp.Generator[list[ports_mod.PortReservation], None, None]:
    reserved = ports_mod.reserve_ports(3)
    yield reserved
    for r in reserved:
        r.release()


def test_handle_nodes(tmp_path: pl.Path, reservations: list[ports_mod.PortReservation]):
    """The handle exposes its nodes and their addresses by role."""
    cluster_nodes = [
        _get_node(nodes.NodeRole.MASTER, "master-0", reservations[0], tmp_path),
        _get_node(nodes.NodeRole.WORKER, "worker-0", reservations[1], tmp_path),
        _get_node(nodes.NodeRole.WORKER, "worker-1", reservations[2], tmp_path),
    ]
    handle = supervisor.ClusterHandle(
        spec=nodes.ClusterSpec(num_masters=1, num_workers=2),
        cluster_nodes=cluster_nodes,
        scratch_dir=tmp_path,
        log_func=lambda msg: None,
    )

    assert handle.nodes == cluster_nodes
    # The returned list is a copy
    handle.nodes.clear()
    assert len(handle.nodes) == 3

    assert handle.master_addresses == [reservations[0].address]
    assert handle.worker_addresses == [reservations[1].address, reservations[2].address]
    assert handle.get_node(str(reservations[2].address)).name == "worker-1"
    assert all(n.state == nodes.LifecycleState.STOPPED for n in handle.nodes)


def test_duplicate_address(tmp_path: pl.Path, reservations: list[ports_mod.PortReservation]):
    cluster_nodes = [
        _get_node(nodes.NodeRole.MASTER, "master-0", reservations[0], tmp_path),
        _get_node(nodes.NodeRole.WORKER, "worker-0", reservations[0], tmp_path),
    ]
    with pytest.raises(errors.ClusterConfigError, match="Duplicate address"):
        supervisor.ClusterHandle(
            spec=nodes.ClusterSpec(num_masters=1, num_workers=1),
            cluster_nodes=cluster_nodes,
            scratch_dir=tmp_path,
            log_func=lambda msg: None,
        )
