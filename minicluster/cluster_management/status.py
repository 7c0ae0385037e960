"""Read-only status snapshot of cluster nodes, for debug and status tooling."""

import dataclasses
import logging
import time
import typing as tp

import psutil

from minicluster.cluster_management import nodes

LOGGER = logging.getLogger(__name__)

# Returns arbitrary status fields for a running node; the values are not interpreted
StatusReporter = tp.Callable[[nodes.NodeProcess], dict[str, tp.Any]]


@dataclasses.dataclass(frozen=True, order=True)
class NodeStatus:
    name: str
    role: str
    address: str
    state: str
    pid: int | None
    uptime: float | None
    fields: dict[str, tp.Any] = dataclasses.field(default_factory=dict, compare=False)

    def to_dict(self) -> dict[str, tp.Any]:
        return dataclasses.asdict(self)


def process_reporter(node: nodes.NodeProcess) -> dict[str, tp.Any]:
    """Report OS level info about the node process."""
    if node.pid is None:
        return {}

    try:
        proc = psutil.Process(node.pid)
        with proc.oneshot():
            return {
                "process_status": proc.status(),
                "cpu_times_user": proc.cpu_times().user,
                "memory_rss": proc.memory_info().rss,
                "num_threads": proc.num_threads(),
                "create_time": proc.create_time(),
            }
    except (psutil.NoSuchProcess, psutil.ZombieProcess):
        return {}
    except psutil.AccessDenied as exc:
        LOGGER.debug(f"Access denied to process info of '{node.name}': {exc}")
        return {}


def _get_uptime(pid: int | None) -> float | None:
    if pid is None:
        return None
    try:
        return round(time.time() - psutil.Process(pid).create_time(), 3)
    except psutil.Error:
        return None


def get_node_status(
    node: nodes.NodeProcess, reporter: StatusReporter | None = None
) -> NodeStatus:
    reporter = reporter or process_reporter
    pid = node.pid if node.state != nodes.LifecycleState.STOPPED else None
    fields = reporter(node) if pid is not None else {}
    return NodeStatus(
        name=node.name,
        role=str(node.role),
        address=str(node.address),
        state=str(node.state),
        pid=pid,
        uptime=_get_uptime(pid),
        fields=fields,
    )


def get_snapshot(
    cluster_nodes: tp.Iterable[nodes.NodeProcess], reporter: StatusReporter | None = None
) -> list[NodeStatus]:
    """Return status of all the nodes, in spawn order."""
    return [get_node_status(node=n, reporter=reporter) for n in cluster_nodes]
