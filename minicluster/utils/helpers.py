import argparse
import contextlib
import json
import logging
import os
import pathlib as pl
import signal
import time
import typing as tp

import minicluster.utils.types as ttypes

LOGGER = logging.getLogger(__name__)


@contextlib.contextmanager
def ignore_interrupt() -> tp.Iterator[None]:
    """Ignore the KeyboardInterrupt signal."""
    orig_handler = None
    try:
        orig_handler = signal.signal(signal.SIGINT, signal.SIG_IGN)
    except ValueError as exc:
        if "signal only works in main thread" not in str(exc):
            raise

    if orig_handler is None:
        yield
        return

    try:
        yield
    finally:
        signal.signal(signal.SIGINT, orig_handler)


@contextlib.contextmanager
def log_slow_execution(threshold: float, what: str) -> tp.Iterator[None]:
    """Log a warning when the wrapped block runs for longer than `threshold` seconds."""
    start = time.monotonic()
    try:
        yield
    finally:
        elapsed = time.monotonic() - start
        if elapsed > threshold:
            LOGGER.warning(f"{what} took a long time: {elapsed:.3f}s (threshold {threshold:.3f}s)")


def get_passthrough_env(names: tp.Iterable[str]) -> ttypes.EnvType:
    """Return the subset of the current environment selected by `names`."""
    return {n: os.environ[n] for n in names if n in os.environ}


def find_home_dir(name: str, bin_dir: ttypes.FileType) -> pl.Path:
    """Return home directory of an external dependency.

    The `<NAME>_HOME` env variable takes precedence, `<bin_dir>/<name>-home` is used otherwise.

    >>> find_home_dir("nonexistent", "/nonexistent")
    Traceback (most recent call last):
    ...
    FileNotFoundError: NONEXISTENT_HOME directory does not exist: /nonexistent/nonexistent-home
    """
    env_var = f"{name.upper()}_HOME"
    env_value = os.environ.get(env_var)
    home_dir = pl.Path(env_value) if env_value else pl.Path(bin_dir) / f"{name}-home"

    if not home_dir.is_dir():
        msg = f"{env_var} directory does not exist: {home_dir}"
        raise FileNotFoundError(msg)
    return home_dir


def check_dir_arg(dir_path: str) -> pl.Path | None:
    """Check that the dir passed as argparse parameter is a valid existing dir."""
    if not dir_path:
        return None
    abs_path = pl.Path(dir_path).expanduser().resolve()
    if not (abs_path.exists() and abs_path.is_dir()):
        msg = f"check_dir_arg: directory '{dir_path}' doesn't exist"
        raise argparse.ArgumentTypeError(msg)
    return abs_path


def write_json(*, out_file: ttypes.FileType, content: dict | list) -> ttypes.FileType:
    """Write JSON content to file."""
    with open(pl.Path(out_file).expanduser(), "w", encoding="utf-8") as out_fp:
        out_fp.write(json.dumps(content, indent=4))
    return out_file
