"""Temporary directories used by the framework.

Every cluster gets its own scratch directory. Scratch directories are created inside the pytest
worker temp directory when running under pytest, and inside a base temp directory otherwise.
"""

import functools
import pathlib as pl
import tempfile

from _pytest.tmpdir import TempPathFactory


class PytestTempDirs:
    """Pytest temporary directories that are used accross the framework.

    The class is initialized by the `minicluster` pytest plugin where we have access to the
    `tmp_path_factory` fixture.
    """

    pytest_worker_tmp: pl.Path | None = None

    _err_init_str = "PytestTempDirs are not initialized"

    @classmethod
    def init(cls, tmp_path_factory: TempPathFactory) -> None:
        cls.pytest_worker_tmp = pl.Path(tmp_path_factory.getbasetemp())

    @classmethod
    def is_initialized(cls) -> bool:
        return cls.pytest_worker_tmp is not None


def get_pytest_worker_tmp() -> pl.Path:
    """Return Pytest temporary directory for the current worker.

    When running pytest with multiple workers, each worker has it's own base temporary
    directory inside the "root" temporary directory.
    """
    if PytestTempDirs.pytest_worker_tmp is None:
        raise RuntimeError(PytestTempDirs._err_init_str)
    return PytestTempDirs.pytest_worker_tmp


@functools.cache
def get_basetemp() -> pl.Path:
    """Return base temporary directory for scratch directories created outside of pytest."""
    basetemp = pl.Path(tempfile.gettempdir()) / "minicluster"
    basetemp.mkdir(mode=0o700, parents=True, exist_ok=True)
    return basetemp


def create_scratch_dir(prefix: str = "cluster") -> pl.Path:
    """Create a new, empty scratch directory owned by a single cluster."""
    parent = (
        get_pytest_worker_tmp() / "clusters"
        if PytestTempDirs.is_initialized()
        else get_basetemp()
    )
    parent.mkdir(parents=True, exist_ok=True)
    return pl.Path(tempfile.mkdtemp(prefix=f"{prefix}-", dir=parent))
