"""Functionality for building a cluster of local processes and disrupting its nodes.

The `ClusterSupervisor` builds a cluster from a `ClusterSpec` and returns a `ClusterHandle`. All
the lifecycle operations on nodes are addressed by the node's `host:port` address, which never
changes for the lifetime of the cluster, not even when a node is killed and restarted.

Every operation blocks until the node reached the desired state (port open, process exited), or
until the deadline elapsed.
"""

import contextlib
import logging
import os
import pathlib as pl
import shutil
import typing as tp

import minicluster.utils.types as ttypes
from minicluster.cluster_management import errors
from minicluster.cluster_management import leftovers
from minicluster.cluster_management import nodes as nodes_mod
from minicluster.cluster_management import ports as ports_mod
from minicluster.cluster_management import status
from minicluster.utils import configuration
from minicluster.utils import helpers
from minicluster.utils import port_probe
from minicluster.utils import process_control
from minicluster.utils import security as security_mod
from minicluster.utils import site_config
from minicluster.utils import temptools

LOGGER = logging.getLogger(__name__)

AddressType = nodes_mod.NodeAddress | str

HMS_PLUGIN_JAR = "hms-plugin.jar"
METADATA_SERVICE_JAVA_OPTS = "-Dhive.log.level=WARN -Dhive.root.logger=console"


def _to_address(addr: AddressType) -> nodes_mod.NodeAddress:
    if isinstance(addr, str):
        return nodes_mod.NodeAddress.parse(addr)
    return nodes_mod.NodeAddress(host=addr[0], port=int(addr[1]))


def _resolve_binary(path: pl.Path) -> pl.Path:
    if not (path.is_file() and os.access(path, os.X_OK)):
        msg = f"Executable '{path}' doesn't exist."
        raise errors.NotFoundError(msg)
    return path


def _find_home_dir(name: str, bin_dir: pl.Path) -> pl.Path:
    try:
        return helpers.find_home_dir(name=name, bin_dir=bin_dir)
    except FileNotFoundError as exc:
        raise errors.NotFoundError(str(exc)) from exc


class ClusterHandle:
    """A running cluster. Owns all the node processes and the scratch directory.

    Closing the handle stops all the nodes. Use it as a context manager to make sure no process
    is leaked, even when a test fails early.
    """

    def __init__(
        self,
        *,
        spec: nodes_mod.ClusterSpec,
        cluster_nodes: tp.Sequence[nodes_mod.NodeProcess],
        scratch_dir: pl.Path,
        log_func: tp.Callable[[str], None],
    ) -> None:
        self.spec = spec
        self.scratch_dir = scratch_dir
        self.log = log_func
        self._nodes = list(cluster_nodes)
        self._closed = False

        self._by_address: dict[nodes_mod.NodeAddress, nodes_mod.NodeProcess] = {}
        for node in self._nodes:
            if node.address in self._by_address:
                msg = f"Duplicate address {node.address} of nodes in the cluster."
                raise errors.ClusterConfigError(msg)
            self._by_address[node.address] = node

    def __enter__(self) -> "ClusterHandle":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__} masters={self.master_addresses} "
            f"workers={self.worker_addresses} closed={self._closed}>"
        )

    @property
    def nodes(self) -> list[nodes_mod.NodeProcess]:
        return list(self._nodes)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def security(self) -> security_mod.SecurityConfig | None:
        return self.spec.effective_security

    def _get_addresses(self, role: nodes_mod.NodeRole) -> list[nodes_mod.NodeAddress]:
        return [n.address for n in self._nodes if n.role == role]

    @property
    def master_addresses(self) -> list[nodes_mod.NodeAddress]:
        return self._get_addresses(nodes_mod.NodeRole.MASTER)

    @property
    def worker_addresses(self) -> list[nodes_mod.NodeAddress]:
        return self._get_addresses(nodes_mod.NodeRole.WORKER)

    @property
    def master_addresses_str(self) -> str:
        """Return comma separated master addresses, the way clients expect them."""
        return ",".join(str(a) for a in self.master_addresses)

    @property
    def metadata_service_address(self) -> nodes_mod.NodeAddress | None:
        addrs = self._get_addresses(nodes_mod.NodeRole.METADATA_SERVICE)
        return addrs[0] if addrs else None

    def _sync_state(self, node: nodes_mod.NodeProcess) -> None:
        """Notice a node that exited on its own."""
        if node.state == nodes_mod.LifecycleState.STOPPED or node.controller.is_running:
            return
        returncode = node.controller.wait_for_exit()
        self.log(f"{node.name}: exited unexpectedly with {returncode}")
        node.state = nodes_mod.LifecycleState.STOPPED

    def get_node(
        self, addr: AddressType, *, role: nodes_mod.NodeRole | None = None
    ) -> nodes_mod.NodeProcess:
        """Return node with the given address."""
        address = _to_address(addr)
        node = self._by_address.get(address)
        if node is None or (role and node.role != role):
            role_str = f"{role} " if role else ""
            msg = f"No {role_str}node on address {address}."
            raise errors.NotFoundError(msg)
        self._sync_state(node)
        return node

    def _check_not_closed(self) -> None:
        if self._closed:
            msg = "The cluster was already closed."
            raise errors.InvalidStateError(msg)

    def _abort_start(self, node: nodes_mod.NodeProcess) -> None:
        """Stop a node that didn't start in time."""
        # The quit signal makes the process dump diagnostic info (core or thread dump)
        with contextlib.suppress(errors.InvalidStateError, errors.UnsupportedError):
            node.controller.signal(process_control.Signal.QUIT)
        node.controller.kill_and_wait(kind=process_control.Signal.KILL)
        node.state = nodes_mod.LifecycleState.STOPPED

    def _start_node(self, node: nodes_mod.NodeProcess, timeout: float) -> None:
        recipe = node.recipe

        def _check_alive() -> None:
            if node.controller.is_running:
                return
            returncode = node.controller.wait_for_exit()
            node.state = nodes_mod.LifecycleState.STOPPED
            msg = (
                f"Node '{node.name}' exited with {returncode} before listening on "
                f"{node.address}, see '{node.controller.log_file}'."
            )
            raise errors.LaunchFailureError(msg)

        with helpers.log_slow_execution(timeout / 2, f"Starting '{node.name}'"):
            node.controller.start(recipe.command, recipe.args, env=recipe.env, cwd=recipe.workdir)
            node.state = nodes_mod.LifecycleState.RUNNING
            try:
                port_probe.wait_for_open(node.address, deadline=timeout, check_fn=_check_alive)
            except errors.ClusterTimeoutError:
                self.log(f"{node.name}: failed to start in {timeout}s, aborting")
                self._abort_start(node)
                raise

        self.log(f"{node.name}: started on {node.address} with PID {node.pid}")

    def _stop_node(self, node: nodes_mod.NodeProcess) -> None:
        if node.state == nodes_mod.LifecycleState.PAUSED:
            # A stopped process doesn't handle the terminate signal until it is continued
            with contextlib.suppress(errors.InvalidStateError):
                node.controller.signal(process_control.Signal.CONTINUE)
        try:
            returncode = node.controller.kill_and_wait(kind=process_control.Signal.TERMINATE)
        except Exception as exc:
            msg = f"Failed to stop '{node.name}' on {node.address}: {exc}"
            raise errors.ClusterError(msg) from exc
        node.state = nodes_mod.LifecycleState.STOPPED
        self.log(f"{node.name}: stopped with {returncode}")

        # Socket teardown can lag behind the process exit
        port_probe.wait_for_closed(node.address, deadline=configuration.STOP_TIMEOUT)

    def kill_on_address(self, addr: AddressType, *, role: nodes_mod.NodeRole | None = None) -> None:
        """Stop the node with the given address. No-op when the node is already stopped."""
        self._check_not_closed()
        node = self.get_node(addr, role=role)
        if node.state == nodes_mod.LifecycleState.STOPPED:
            LOGGER.debug(f"Node '{node.name}' is already stopped.")
            return
        self._stop_node(node)

    def restart_dead_on_address(
        self,
        addr: AddressType,
        *,
        role: nodes_mod.NodeRole | None = None,
        timeout: float | None = None,
    ) -> None:
        """Start again a stopped node, on the same address and with the same configuration."""
        self._check_not_closed()
        node = self.get_node(addr, role=role)
        if node.state != nodes_mod.LifecycleState.STOPPED:
            msg = f"Cannot restart node '{node.name}' on {node.address}, it is {node.state}."
            raise errors.InvalidStateError(msg)
        self._start_node(node, timeout=timeout or self.spec.start_timeout)

    def pause_on_address(
        self, addr: AddressType, *, role: nodes_mod.NodeRole | None = None
    ) -> None:
        """Suspend the node process. The port stays bound."""
        self._check_not_closed()
        node = self.get_node(addr, role=role)
        if node.state != nodes_mod.LifecycleState.RUNNING:
            msg = f"Cannot pause node '{node.name}' on {node.address}, it is {node.state}."
            raise errors.InvalidStateError(msg)
        node.controller.signal(process_control.Signal.STOP)
        node.state = nodes_mod.LifecycleState.PAUSED
        self.log(f"{node.name}: paused")

    def resume_on_address(
        self, addr: AddressType, *, role: nodes_mod.NodeRole | None = None
    ) -> None:
        """Continue the suspended node process."""
        self._check_not_closed()
        node = self.get_node(addr, role=role)
        if node.state != nodes_mod.LifecycleState.PAUSED:
            msg = f"Cannot resume node '{node.name}' on {node.address}, it is {node.state}."
            raise errors.InvalidStateError(msg)
        node.controller.signal(process_control.Signal.CONTINUE)
        node.state = nodes_mod.LifecycleState.RUNNING
        self.log(f"{node.name}: resumed")

    def kill_master_on_address(self, addr: AddressType) -> None:
        self.kill_on_address(addr, role=nodes_mod.NodeRole.MASTER)

    def kill_worker_on_address(self, addr: AddressType) -> None:
        self.kill_on_address(addr, role=nodes_mod.NodeRole.WORKER)

    def restart_dead_master_on_address(self, addr: AddressType) -> None:
        self.restart_dead_on_address(addr, role=nodes_mod.NodeRole.MASTER)

    def restart_dead_worker_on_address(self, addr: AddressType) -> None:
        self.restart_dead_on_address(addr, role=nodes_mod.NodeRole.WORKER)

    def _get_metadata_service_address(self) -> nodes_mod.NodeAddress:
        address = self.metadata_service_address
        if address is None:
            msg = "The cluster has no metadata service."
            raise errors.NotFoundError(msg)
        return address

    def stop_metadata_service(self) -> None:
        self.kill_on_address(self._get_metadata_service_address())

    def start_metadata_service(self) -> None:
        """Start again the stopped metadata service, on the same port."""
        self.restart_dead_on_address(self._get_metadata_service_address())

    def pause_metadata_service(self) -> None:
        self.pause_on_address(self._get_metadata_service_address())

    def resume_metadata_service(self) -> None:
        self.resume_on_address(self._get_metadata_service_address())

    def snapshot(self, reporter: status.StatusReporter | None = None) -> list[status.NodeStatus]:
        """Return read-only status of all the nodes."""
        for node in self._nodes:
            self._sync_state(node)
        return status.get_snapshot(cluster_nodes=self._nodes, reporter=reporter)

    def write_snapshot(
        self, out_file: ttypes.FileType, reporter: status.StatusReporter | None = None
    ) -> ttypes.FileType:
        content = [s.to_dict() for s in self.snapshot(reporter=reporter)]
        return helpers.write_json(out_file=out_file, content=content)

    def close(self) -> None:
        """Stop all the nodes and release all the resources.

        Failures of individual nodes don't prevent stopping the rest of the nodes. All the
        failures are reported together in `TeardownError`. Calling `close` again is a no-op.
        """
        if self._closed:
            return
        self._closed = True

        stop_errors: list[Exception] = []
        with helpers.ignore_interrupt():
            for node in reversed(self._nodes):
                stopped = node.state == nodes_mod.LifecycleState.STOPPED
                if stopped and not node.controller.is_running:
                    continue
                try:
                    self._stop_node(node)
                except Exception as exc:  # noqa: PERF203
                    self.log(f"{node.name}: {exc}")
                    stop_errors.append(exc)

            try:
                leftovers.kill_leftover_listeners(
                    addresses=[n.address for n in self._nodes], log_func=self.log
                )
            except Exception as exc:
                self.log(f"failed to kill leftover processes: {exc}")
                stop_errors.append(exc)

            for node in self._nodes:
                node.reservation.release()

            if configuration.KEEP_SCRATCH_DIRS:
                LOGGER.info(f"Keeping scratch directory '{self.scratch_dir}'.")
            else:
                shutil.rmtree(self.scratch_dir, ignore_errors=True)

        self.log("cluster closed")
        if stop_errors:
            raise errors.TeardownError(stop_errors)


class ClusterSupervisor:
    """Builds clusters of local master, worker and metadata service processes."""

    def __init__(
        self,
        *,
        bin_dir: ttypes.FileType = "",
        log_func: tp.Callable[[str], None] | None = None,
    ) -> None:
        self.bin_dir = pl.Path(bin_dir) if bin_dir else configuration.BIN_DIR
        self.log_func = log_func

    def _get_log_func(self, scratch_dir: pl.Path) -> tp.Callable[[str], None]:
        prefix = scratch_dir.name
        log_func = self.log_func

        def _log(msg: str) -> None:
            LOGGER.info(f"{prefix}: {msg}")
            if log_func:
                log_func(f"{prefix}: {msg}")

        return _log

    def _get_base_env(self) -> ttypes.EnvType:
        return helpers.get_passthrough_env(configuration.ENV_PASSTHROUGH)

    def _get_metadata_service_recipe(
        self,
        spec: nodes_mod.ClusterSpec,
        node_dir: pl.Path,
        port: int,
    ) -> nodes_mod.LaunchRecipe:
        hive_home = _find_home_dir("hive", self.bin_dir)
        hadoop_home = _find_home_dir("hadoop", self.bin_dir)
        java_home = _find_home_dir("java", self.bin_dir)
        hive_bin = _resolve_binary(hive_home / "bin" / "hive")

        security = spec.effective_security
        site_config.write_site_docs(
            node_dir, notification_log_ttl=spec.notification_log_ttl, security=security
        )

        env = {
            **self._get_base_env(),
            "JAVA_HOME": str(java_home),
            "HADOOP_HOME": str(hadoop_home),
            "HIVE_AUX_JARS_PATH": str(self.bin_dir / HMS_PLUGIN_JAR),
            "HIVE_CONF_DIR": str(node_dir),
            "HADOOP_CONF_DIR": str(node_dir),
            "JAVA_TOOL_OPTIONS": METADATA_SERVICE_JAVA_OPTS,
        }
        env.update(security_mod.get_security_env(security, base_env=env))

        args = ("--service", "metastore", "-v", "-p", str(port))
        return nodes_mod.LaunchRecipe(command=hive_bin, args=args, env=env, workdir=node_dir)

    def _get_server_recipe(
        self,
        spec: nodes_mod.ClusterSpec,
        role: nodes_mod.NodeRole,
        node_dir: pl.Path,
        port: int,
        master_addresses: tp.Sequence[nodes_mod.NodeAddress],
        metadata_service_address: nodes_mod.NodeAddress | None,
    ) -> nodes_mod.LaunchRecipe:
        if role == nodes_mod.NodeRole.MASTER:
            binary = _resolve_binary(self.bin_dir / configuration.MASTER_BIN)
            extra_flags = spec.extra_master_flags
        else:
            binary = _resolve_binary(self.bin_dir / configuration.WORKER_BIN)
            extra_flags = spec.extra_worker_flags

        security = spec.effective_security
        args = [f"--data_dir={node_dir}"]
        if master_addresses:
            args.append(f"--master_addresses={','.join(str(a) for a in master_addresses)}")
        if metadata_service_address and role == nodes_mod.NodeRole.MASTER:
            args.append(f"--metadata_service_address={metadata_service_address}")
        args.extend(security_mod.get_security_flags(security))
        args.extend(extra_flags)
        args.append(f"--port={port}")

        env = {**self._get_base_env(), f"{role.upper()}_HOME": str(node_dir)}
        env.update(security_mod.get_security_env(security, base_env=env))

        return nodes_mod.LaunchRecipe(command=binary, args=tuple(args), env=env, workdir=node_dir)

    def _create_nodes(
        self, spec: nodes_mod.ClusterSpec, scratch_dir: pl.Path
    ) -> list[nodes_mod.NodeProcess]:
        """Reserve ports, generate configuration and prepare all the nodes (not started)."""
        roles = [
            *([nodes_mod.NodeRole.METADATA_SERVICE] if spec.enable_metadata_service else []),
            *([nodes_mod.NodeRole.MASTER] * spec.num_masters),
            *([nodes_mod.NodeRole.WORKER] * spec.num_workers),
        ]
        reservations = ports_mod.reserve_ports(len(roles))

        try:
            master_addresses = [
                r.address
                for role, r in zip(roles, reservations, strict=True)
                if role == nodes_mod.NodeRole.MASTER
            ]
            metadata_service_address = (
                reservations[0].address if spec.enable_metadata_service else None
            )

            role_counts: dict[nodes_mod.NodeRole, int] = {}
            cluster_nodes = []
            for role, reservation in zip(roles, reservations, strict=True):
                idx = role_counts.get(role, 0)
                role_counts[role] = idx + 1
                name = f"{role.replace('_', '-')}-{idx}"
                node_dir = scratch_dir / name
                node_dir.mkdir(parents=True)

                if role == nodes_mod.NodeRole.METADATA_SERVICE:
                    recipe = self._get_metadata_service_recipe(
                        spec=spec, node_dir=node_dir, port=reservation.port
                    )
                else:
                    recipe = self._get_server_recipe(
                        spec=spec,
                        role=role,
                        node_dir=node_dir,
                        port=reservation.port,
                        master_addresses=master_addresses,
                        metadata_service_address=metadata_service_address,
                    )

                controller = process_control.ProcessController(
                    name=name, log_file=scratch_dir / f"{name}.log"
                )
                cluster_nodes.append(
                    nodes_mod.NodeProcess(
                        role=role,
                        name=name,
                        reservation=reservation,
                        recipe=recipe,
                        controller=controller,
                    )
                )
        except BaseException:
            for r in reservations:
                r.release()
            raise

        return cluster_nodes

    def build(self, spec: nodes_mod.ClusterSpec) -> ClusterHandle:
        """Build and start a cluster.

        Return only when all the nodes are listening on their ports. When any node fails to
        start, the nodes that were already started are stopped before the error is raised.
        """
        scratch_dir = temptools.create_scratch_dir()
        log_func = self._get_log_func(scratch_dir)
        log_func(
            f"building cluster: masters={spec.num_masters}, workers={spec.num_workers}, "
            f"metadata_service={spec.enable_metadata_service}, "
            f"kerberos={spec.enable_kerberos}, bin_dir='{self.bin_dir}'"
        )

        cluster_nodes: list[nodes_mod.NodeProcess] = []
        try:
            cluster_nodes = self._create_nodes(spec=spec, scratch_dir=scratch_dir)
            handle = ClusterHandle(
                spec=spec, cluster_nodes=cluster_nodes, scratch_dir=scratch_dir, log_func=log_func
            )
        except BaseException:
            for node in cluster_nodes:
                node.reservation.release()
            shutil.rmtree(scratch_dir, ignore_errors=True)
            raise

        try:
            for node in cluster_nodes:
                handle._start_node(node, timeout=spec.start_timeout)
        except BaseException as exc:
            log_func(f"failed to build cluster: {exc}")
            try:
                handle.close()
            except errors.TeardownError as teardown_exc:
                log_func(f"failed to tear down the partially started cluster: {teardown_exc}")
            raise

        log_func("cluster is ready")
        return handle


def build_cluster(
    spec: nodes_mod.ClusterSpec,
    *,
    bin_dir: ttypes.FileType = "",
    log_func: tp.Callable[[str], None] | None = None,
) -> ClusterHandle:
    """Build and start a cluster using a default supervisor."""
    return ClusterSupervisor(bin_dir=bin_dir, log_func=log_func).build(spec)
