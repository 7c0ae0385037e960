import functools
import logging
import pathlib as pl
import time
import typing as tp

from minicluster.utils import temptools


@functools.cache
def get_framework_log_path() -> pl.Path:
    return temptools.get_pytest_worker_tmp() / "framework.log"


@functools.cache
def framework_logger() -> logging.Logger:
    """Get logger for the `framework.log` file.

    The logger is configured per worker. It is used for logging (and later reporting) cluster
    lifecycle events like a node that failed to start, or a node that had to be force-killed.
    """

    class UTCFormatter(logging.Formatter):
        converter = time.gmtime  # type: ignore[assignment]

    formatter = UTCFormatter("%(asctime)s %(levelname)s %(message)s")
    handler = logging.FileHandler(get_framework_log_path())
    handler.setFormatter(formatter)

    logger = logging.getLogger("minicluster.framework")
    logger.setLevel(logging.INFO)
    logger.addHandler(handler)

    return logger


def get_cluster_log_func(prefix: str) -> tp.Callable[[str], None]:
    """Return a `log_func` that records cluster events to `framework.log` with a given prefix."""
    logger = framework_logger()

    def _log(msg: str) -> None:
        logger.info(f"{prefix}: {msg}")

    return _log
