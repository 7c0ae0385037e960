import pathlib as pl
import sys

import pytest
from _pytest.fixtures import FixtureRequest
from _pytest.monkeypatch import MonkeyPatch
from _pytest.tmpdir import TempPathFactory

from minicluster.cluster_management import supervisor
from minicluster.utils import configuration
from minicluster.utils import framework_log

FAKE_NODE = pl.Path(__file__).parent / "mocks" / "fake_node.py"


def _write_wrapper(path: pl.Path, role: str) -> pl.Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f'#!/bin/sh\nexec "{sys.executable}" "{FAKE_NODE}" --role={role} "$@"\n')
    path.chmod(0o755)
    return path


@pytest.fixture(scope="session")
def fake_bin_dir(tmp_path_factory: TempPathFactory) -> pl.Path:
    """Create directory with fake master, worker and metastore binaries and home directories."""
    bin_dir = tmp_path_factory.mktemp("fake_bin")
    _write_wrapper(bin_dir / configuration.MASTER_BIN, role="master")
    _write_wrapper(bin_dir / configuration.WORKER_BIN, role="worker")
    _write_wrapper(bin_dir / "hive-home" / "bin" / "hive", role="metadata_service")
    (bin_dir / "hadoop-home").mkdir()
    (bin_dir / "java-home").mkdir()
    return bin_dir


@pytest.fixture(autouse=True)
def clean_home_env(monkeypatch: MonkeyPatch) -> None:
    """Make sure the home dirs are searched in the fake bin dir."""
    for env_var in ("HIVE_HOME", "HADOOP_HOME", "JAVA_HOME"):
        monkeypatch.delenv(env_var, raising=False)


@pytest.fixture
def mini_cluster_supervisor(
    request: FixtureRequest, fake_bin_dir: pl.Path
) -> supervisor.ClusterSupervisor:
    """Return cluster supervisor that runs the fake binaries."""
    return supervisor.ClusterSupervisor(
        bin_dir=fake_bin_dir, log_func=framework_log.get_cluster_log_func(request.node.name)
    )

