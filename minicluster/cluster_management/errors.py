"""Exceptions raised by the cluster management framework."""

import typing as tp


class ClusterError(Exception):
    """Base class for all cluster management errors."""


class NotFoundError(ClusterError):
    """A required directory, binary or node address doesn't exist."""


class ClusterTimeoutError(ClusterError, TimeoutError):
    """The expected port state was not observed before the deadline."""


class LaunchFailureError(ClusterError):
    """The process could not be started."""


class InvalidStateError(ClusterError):
    """The operation is not allowed in the current lifecycle state of the node."""


class UnsupportedError(ClusterError):
    """The operation is not supported on this platform."""


class ClusterConfigError(ClusterError, ValueError):
    """The cluster specification is not valid."""


class TeardownError(ClusterError):
    """One or more nodes failed to stop.

    All the per-node errors are collected in `errors`.
    """

    def __init__(self, errors: tp.Sequence[Exception]) -> None:
        self.errors = list(errors)
        errors_str = "\n".join(f"  {e}" for e in self.errors)
        super().__init__(f"Failed to stop {len(self.errors)} node(s):\n{errors_str}")


class ForcedKillWarning(UserWarning):
    """Graceful stop didn't finish in time and the process was killed."""
