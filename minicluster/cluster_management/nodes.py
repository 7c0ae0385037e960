"""Data model of a cluster: cluster specification and the supervised nodes."""

import dataclasses
import enum
import pathlib as pl

import minicluster.utils.types as ttypes
from minicluster.cluster_management import errors
from minicluster.cluster_management import ports as ports_mod
from minicluster.utils import configuration
from minicluster.utils import port_probe
from minicluster.utils import process_control
from minicluster.utils import security as security_mod

NodeAddress = port_probe.HostPort


class NodeRole(enum.StrEnum):
    MASTER = "master"
    WORKER = "worker"
    METADATA_SERVICE = "metadata_service"


class LifecycleState(enum.StrEnum):
    STOPPED = "stopped"
    RUNNING = "running"
    PAUSED = "paused"


@dataclasses.dataclass(frozen=True)
class ClusterSpec:
    """Specification of a cluster to build."""

    num_masters: int = 1
    num_workers: int = 0
    enable_kerberos: bool = False
    security: security_mod.SecurityConfig | None = None
    enable_metadata_service: bool = False
    notification_log_ttl: float = configuration.NOTIFICATION_LOG_TTL
    start_timeout: float = configuration.START_TIMEOUT
    extra_master_flags: tuple[str, ...] = ()
    extra_worker_flags: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.num_masters < 0 or self.num_workers < 0:
            msg = (
                f"Number of nodes must not be negative: masters={self.num_masters}, "
                f"workers={self.num_workers}"
            )
            raise errors.ClusterConfigError(msg)
        if self.enable_kerberos and not self.security:
            msg = "Kerberos is enabled, but no security settings were provided."
            raise errors.ClusterConfigError(msg)
        if self.start_timeout <= 0:
            msg = f"Invalid start timeout: {self.start_timeout}"
            raise errors.ClusterConfigError(msg)

    @property
    def effective_security(self) -> security_mod.SecurityConfig | None:
        """Return security settings if Kerberos is enabled."""
        return self.security if self.enable_kerberos else None


@dataclasses.dataclass(frozen=True)
class LaunchRecipe:
    """Everything needed to (re)start a node. Computed once, when the cluster is built."""

    command: pl.Path
    args: tuple[str, ...]
    env: ttypes.EnvType
    workdir: pl.Path


@dataclasses.dataclass(eq=False)
class NodeProcess:
    """A single supervised node."""

    role: NodeRole
    name: str
    reservation: ports_mod.PortReservation
    recipe: LaunchRecipe
    controller: process_control.ProcessController
    state: LifecycleState = LifecycleState.STOPPED

    @property
    def address(self) -> NodeAddress:
        return self.reservation.address

    @property
    def pid(self) -> int | None:
        return self.controller.pid
