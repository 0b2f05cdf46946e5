"""Error taxonomy shared by every rancherctl component.

Errors fall into three families which map onto CLI exit codes:

* :class:`UsageError` for invalid invocations (bad flags, config, tags).
* :class:`PreconditionError` when the host or instance is not in a state
  that allows the requested action.
* :class:`OperationError` when a step fails while the action is running.

Advisory warnings are never raised; they are recorded on the active
operation scope instead.
"""
from __future__ import annotations

from collections.abc import Iterable

from .exit_codes import ExitCode


class LifecycleError(RuntimeError):
    """Base class for errors raised by rancherctl."""

    exit_code: ExitCode = ExitCode.FAILURE

    def __init__(self, message: str, *, completed: Iterable[str] | None = None) -> None:
        """Store *message* and the steps that completed before the failure."""
        super().__init__(message)
        self.completed: list[str] = list(completed or [])


class UsageError(LifecycleError):
    """Raised for invalid invocations."""

    exit_code = ExitCode.USAGE


class NoActionSpecified(UsageError):
    """Raised when no action flag was supplied."""


class InvalidActionCombination(UsageError):
    """Raised when action flags are combined in an unsupported way."""


class InvalidVersionTag(UsageError):
    """Raised when a requested image tag cannot be parsed."""


class ConfigError(UsageError):
    """Raised when configuration parsing fails."""


class PreconditionError(LifecycleError):
    """Raised when an action cannot run against the current state."""

    exit_code = ExitCode.PRECONDITION


class RuntimeUnavailable(PreconditionError):
    """Raised when the container runtime binary or daemon is unreachable."""


class AlreadyProvisioned(PreconditionError):
    """Raised when install runs against an existing container."""


class PathNotWritable(PreconditionError):
    """Raised when a data or log location cannot be prepared."""


class OperationError(LifecycleError):
    """Raised when a step of a running action fails."""

    exit_code = ExitCode.OPERATION


class DependencyInstallFailed(OperationError):
    """Raised when a host dependency cannot be installed or configured."""


class BackupFailed(OperationError):
    """Raised when the data directory cannot be copied for a snapshot."""


class DataDeletionFailed(OperationError):
    """Raised when the data directory cannot be removed."""


class RuntimeOperationFailed(OperationError):
    """Raised when a container runtime command fails."""


class InstanceNotRunning(OperationError):
    """Raised when the managed container is not running after verification."""


class OfflineImageUnavailable(OperationError):
    """Raised when offline mode needs an image that is not present locally."""


class StateFileError(OperationError):
    """Raised when the version cache or credential file cannot be written or removed."""


__all__ = [
    "AlreadyProvisioned",
    "BackupFailed",
    "ConfigError",
    "DataDeletionFailed",
    "DependencyInstallFailed",
    "InstanceNotRunning",
    "InvalidActionCombination",
    "InvalidVersionTag",
    "LifecycleError",
    "NoActionSpecified",
    "OfflineImageUnavailable",
    "OperationError",
    "PathNotWritable",
    "PreconditionError",
    "RuntimeOperationFailed",
    "RuntimeUnavailable",
    "StateFileError",
    "UsageError",
]
