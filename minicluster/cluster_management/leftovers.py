"""Cleanup of processes left over by a cluster."""

import logging
import os
import typing as tp

import psutil

from minicluster.utils import port_probe

LOGGER = logging.getLogger(__name__)


def get_listening_pids(ports: tp.Iterable[int]) -> dict[int, set[int]]:
    """Return mapping of port -> PIDs of processes listening on the port."""
    port_set = set(ports)
    listening: dict[int, set[int]] = {}
    try:
        conns = psutil.net_connections(kind="tcp")
    except psutil.AccessDenied as excp:
        LOGGER.error(f"Failed to list TCP connections: {excp}")  # noqa: TRY400
        return listening

    for conn in conns:
        if conn.status != psutil.CONN_LISTEN or not conn.laddr or conn.pid is None:
            continue
        if conn.laddr.port in port_set:
            listening.setdefault(conn.laddr.port, set()).add(conn.pid)
    return listening


def kill_leftover_listeners(
    addresses: tp.Iterable[port_probe.HostPort], log_func: tp.Callable[[str], None]
) -> list[int]:
    """Kill processes still listening on cluster ports and return their PIDs.

    The supervisor's own process is never killed, it holds the port reservations.
    """

    def _get_proc_cmdline(proc: psutil.Process) -> str:
        try:
            return " ".join(proc.cmdline())
        except psutil.Error:
            return ""

    addresses = list(addresses)
    open_addrs = [a for a in addresses if port_probe.is_port_open(a)]
    if not open_addrs:
        return []

    own_pid = os.getpid()
    killed: list[psutil.Process] = []
    for port, pids in get_listening_pids(a.port for a in open_addrs).items():
        for pid in pids - {own_pid}:
            try:
                proc = psutil.Process(pid)
                log_func(
                    f"Killing leftover process on port {port}: PID {pid}; "
                    f"cmdline: {_get_proc_cmdline(proc)}"
                )
                proc.kill()
            except psutil.NoSuchProcess:
                continue
            except psutil.Error as excp:
                log_func(f"Failed to kill leftover process PID {pid}: {excp}")
                continue
            killed.append(proc)

    psutil.wait_procs(killed, timeout=5)
    return [p.pid for p in killed]
