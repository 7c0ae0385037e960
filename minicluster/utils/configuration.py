"""Cluster and test environment configuration."""

import os
import pathlib as pl
import shutil

LAUNCH_PATH = pl.Path.cwd()

LOCALHOST = "127.0.0.1"

MASTER_BIN = os.environ.get("MINICLUSTER_MASTER_BIN") or "master"
WORKER_BIN = os.environ.get("MINICLUSTER_WORKER_BIN") or "worker"


def _get_float(env_name: str, default: float) -> float:
    value = os.environ.get(env_name) or ""
    if not value:
        return default
    try:
        num = float(value)
    except ValueError as exc:
        msg = f"Invalid {env_name}: {value}"
        raise RuntimeError(msg) from exc
    if num <= 0:
        msg = f"Invalid {env_name} '{value}': must be > 0"
        raise RuntimeError(msg)
    return num


# Seconds to wait for a node to start listening on its port
START_TIMEOUT = _get_float("MINICLUSTER_START_TIMEOUT", 60.0)
# Seconds to wait for a node to exit after SIGTERM before escalating to SIGKILL
STOP_TIMEOUT = _get_float("MINICLUSTER_STOP_TIMEOUT", 20.0)
PROBE_INTERVAL = _get_float("MINICLUSTER_PROBE_INTERVAL", 0.2)
CONNECT_TIMEOUT = _get_float("MINICLUSTER_CONNECT_TIMEOUT", 0.5)
# Seconds the metadata service keeps notification log events
NOTIFICATION_LOG_TTL = _get_float("MINICLUSTER_NOTIFICATION_LOG_TTL", 86400.0)

# Variables copied from the ambient environment into the environment of every node.
# Nothing else leaks into the nodes.
ENV_PASSTHROUGH = tuple(
    v.strip()
    for v in (os.environ.get("MINICLUSTER_ENV_PASSTHROUGH") or "PATH,HOME,LANG,TMPDIR").split(",")
    if v.strip()
)

# Resolve MINICLUSTER_BIN_DIR
_bin_dir_env = os.environ.get("MINICLUSTER_BIN_DIR") or ""
if _bin_dir_env:
    BIN_DIR = pl.Path(_bin_dir_env).expanduser().resolve()
else:
    _master_exe = shutil.which(MASTER_BIN)
    BIN_DIR = pl.Path(_master_exe).resolve().parent if _master_exe else LAUNCH_PATH

# Scratch directories are kept after the cluster is closed
KEEP_SCRATCH_DIRS = bool(os.environ.get("KEEP_SCRATCH_DIRS"))
