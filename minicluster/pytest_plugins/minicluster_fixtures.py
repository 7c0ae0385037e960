"""Pytest fixtures for building clusters in tests.

Clusters built with `mini_cluster_factory` are closed when the test finishes, whatever the test
outcome was.
"""

import logging
import typing as tp

import pytest
from _pytest.fixtures import FixtureRequest
from _pytest.tmpdir import TempPathFactory

from minicluster.cluster_management import errors
from minicluster.cluster_management import nodes
from minicluster.cluster_management import supervisor
from minicluster.utils import framework_log
from minicluster.utils import helpers
from minicluster.utils import temptools

LOGGER = logging.getLogger(__name__)

BIN_DIR_ARG = "--minicluster-bin-dir"

ClusterFactory = tp.Callable[..., supervisor.ClusterHandle]


def pytest_addoption(parser: tp.Any) -> None:
    parser.addoption(
        BIN_DIR_ARG,
        action="store",
        type=helpers.check_dir_arg,
        default="",
        help="Path to directory with the master and worker binaries",
    )


@pytest.fixture(scope="session", autouse=True)
def init_pytest_temp_dirs(tmp_path_factory: TempPathFactory) -> None:
    """Init `PytestTempDirs`."""
    temptools.PytestTempDirs.init(tmp_path_factory=tmp_path_factory)


@pytest.fixture
def mini_cluster_supervisor(request: FixtureRequest) -> supervisor.ClusterSupervisor:
    """Return cluster supervisor that records cluster events to `framework.log`."""
    bin_dir = request.config.getoption(BIN_DIR_ARG) or ""
    return supervisor.ClusterSupervisor(
        bin_dir=bin_dir, log_func=framework_log.get_cluster_log_func(request.node.name)
    )


@pytest.fixture
def mini_cluster_factory(
    mini_cluster_supervisor: supervisor.ClusterSupervisor,
) -> tp.Generator[ClusterFactory, None, None]:
    """Return a function for building clusters.

    The function accepts either a `ClusterSpec`, or the `ClusterSpec` fields as keyword args.
    """
    handles: list[supervisor.ClusterHandle] = []

    def _build(spec: nodes.ClusterSpec | None = None, **kwargs: tp.Any) -> supervisor.ClusterHandle:
        spec = spec or nodes.ClusterSpec(**kwargs)
        handle = mini_cluster_supervisor.build(spec)
        handles.append(handle)
        return handle

    yield _build

    teardown_errors = []
    for handle in handles:
        try:
            handle.close()
        except errors.TeardownError as exc:  # noqa: PERF203
            LOGGER.error(f"Failed to close cluster: {exc}")  # noqa: TRY400
            teardown_errors.append(exc)
    if teardown_errors:
        raise errors.TeardownError(teardown_errors) from teardown_errors[0]
