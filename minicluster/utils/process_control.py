"""Control of a single external OS process."""

import enum
import logging
import os
import pathlib as pl
import signal
import subprocess
import typing as tp
import warnings

import minicluster.utils.types as ttypes
from minicluster.cluster_management import errors
from minicluster.utils import configuration

LOGGER = logging.getLogger(__name__)

HAS_KILLPG = hasattr(os, "killpg")


class Signal(enum.Enum):
    STOP = "SIGSTOP"
    CONTINUE = "SIGCONT"
    TERMINATE = "SIGTERM"
    QUIT = "SIGQUIT"
    KILL = "SIGKILL"

    def to_signum(self) -> signal.Signals:
        """Return the platform signal number."""
        signum = getattr(signal.Signals, self.value, None)
        if signum is None:
            msg = f"Signal {self.value} is not supported on this platform."
            raise errors.UnsupportedError(msg)
        return tp.cast(signal.Signals, signum)


class ProcessController:
    """Owner of exactly one external process.

    The process is started in a new session, so signals are delivered to the whole process
    group. This matters for wrapper scripts that start the actual server as a child process.
    """

    def __init__(self, name: str, *, log_file: ttypes.FileType | None = None) -> None:
        self.name = name
        self.log_file = pl.Path(log_file) if log_file else None
        self._proc: subprocess.Popen | None = None
        self._last_returncode: int | None = None

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r} pid={self.pid}>"

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc else None

    @property
    def is_running(self) -> bool:
        """Check if the process was started and didn't exit yet."""
        return self._proc is not None and self._proc.poll() is None

    @property
    def returncode(self) -> int | None:
        """Return exit status of the last process that was waited for."""
        return self._last_returncode

    def start(
        self,
        command: ttypes.FileType,
        args: tp.Iterable[str] = (),
        *,
        env: ttypes.EnvType | None = None,
        cwd: ttypes.FileType | None = None,
    ) -> int:
        """Start the process and return its PID.

        The `env` is the complete environment of the process, the current environment is not
        merged in.
        """
        if self._proc is not None:
            if self._proc.poll() is None:
                msg = f"Process '{self.name}' is already running with PID {self._proc.pid}."
                raise errors.InvalidStateError(msg)
            self.wait_for_exit()

        cmd = [str(command), *(str(a) for a in args)]
        cmd_str = " ".join(cmd)
        LOGGER.debug(f"Starting '{self.name}': `{cmd_str}`")

        log_fp: tp.BinaryIO | None = None
        if self.log_file:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            log_fp = open(self.log_file, "ab")  # noqa: SIM115
        try:
            self._proc = subprocess.Popen(
                cmd,
                env=dict(env or {}),
                cwd=cwd or None,
                stdin=subprocess.DEVNULL,
                stdout=log_fp if log_fp else subprocess.DEVNULL,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
        except OSError as exc:
            msg = f"Failed to start '{self.name}' with `{cmd_str}`: {exc}"
            raise errors.LaunchFailureError(msg) from exc
        finally:
            # The child process has its own copy of the file descriptor
            if log_fp:
                log_fp.close()

        self._last_returncode = None
        LOGGER.debug(f"Started '{self.name}' with PID {self._proc.pid}.")
        return self._proc.pid

    def _send(self, signum: signal.Signals) -> None:
        assert self._proc is not None
        try:
            if HAS_KILLPG:
                os.killpg(self._proc.pid, signum)
            else:
                self._proc.send_signal(signum)
        except ProcessLookupError:
            # The process exited in the meantime, it will be reaped by `wait_for_exit`
            LOGGER.debug(f"Process '{self.name}' is gone, {signum.name} not delivered.")

    def signal(self, kind: Signal) -> None:
        """Send signal to the process."""
        if not self.is_running:
            msg = f"Process '{self.name}' is not running, cannot send {kind.value}."
            raise errors.InvalidStateError(msg)
        signum = kind.to_signum()
        LOGGER.debug(f"Sending {signum.name} to '{self.name}' (PID {self.pid}).")
        self._send(signum)

    def wait_for_exit(self, timeout: float | None = None) -> int:
        """Wait for the process to exit and return its exit status."""
        if self._proc is None:
            if self._last_returncode is not None:
                return self._last_returncode
            msg = f"Process '{self.name}' was never started."
            raise errors.InvalidStateError(msg)

        try:
            returncode = self._proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired as exc:
            msg = f"Process '{self.name}' (PID {self._proc.pid}) didn't exit in {timeout}s."
            raise errors.ClusterTimeoutError(msg) from exc

        LOGGER.debug(f"Process '{self.name}' (PID {self._proc.pid}) exited with {returncode}.")
        self._proc = None
        self._last_returncode = returncode
        return returncode

    def kill_and_wait(
        self, kind: Signal = Signal.TERMINATE, timeout: float | None = None
    ) -> int | None:
        """Send signal and wait for the process to exit.

        When the process doesn't exit in `timeout` seconds, it is killed and `ForcedKillWarning`
        is issued. The configured stop timeout is used when `timeout` is not given. Return the
        exit status, or `None` when the process was never started.
        """
        timeout = configuration.STOP_TIMEOUT if timeout is None else timeout
        if self._proc is None:
            return self._last_returncode
        if self._proc.poll() is not None:
            return self.wait_for_exit()

        self.signal(kind)
        try:
            return self.wait_for_exit(timeout=timeout)
        except errors.ClusterTimeoutError:
            pass

        msg = f"Process '{self.name}' (PID {self.pid}) didn't exit after {kind.value}, killing it."
        LOGGER.warning(msg)
        warnings.warn(msg, errors.ForcedKillWarning, stacklevel=2)
        self._send(Signal.KILL.to_signum())
        return self.wait_for_exit()
