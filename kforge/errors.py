"""
Error classes for kforge.

Every failure raised by the orchestration core derives from KforgeError so
the CLI can report it uniformly and exit non-zero:

- ExecutionError: the infrastructure tool exited unsuccessfully
- VersionMismatchError / BinaryNotFoundError: the tool cannot be used at all
- ReadinessError: the cluster did not become healthy within the retry budget
- ReleaseError: a control-plane or component release failed
- RolloutError: a workload did not converge after a restart
- StageError: wraps any of the above with the orchestrator stage name

Declining a confirmation prompt is not an error; orchestrators return a
cancelled result instead.
"""

from pathlib import Path
from typing import Optional, Sequence


class KforgeError(Exception):
    """Base exception for kforge."""
    pass


class ConfigError(KforgeError):
    """Configuration loading or validation error."""
    pass


class ExecutionError(KforgeError):
    """
    The infrastructure tool exited with a non-success status.

    Carries the log file, argument list and working directory so the
    operator can find the full output of the failed invocation.
    """

    def __init__(
        self,
        message: str,
        log_path: Optional[Path] = None,
        args: Sequence[str] = (),
        working_dir: Optional[Path] = None,
    ):
        self.log_path = log_path
        self.command_args = list(args)
        self.working_dir = working_dir

        details = []
        if log_path is not None:
            details.append(f"check {log_path} for details")
        if self.command_args:
            details.append(f"args: {' '.join(self.command_args)}")
        if working_dir is not None:
            details.append(f"working dir: {working_dir}")

        full = message if not details else f"{message} ({'; '.join(details)})"
        super().__init__(full)


class BinaryNotFoundError(KforgeError):
    """Terraform binary was not found next to the executable, in cwd, nor in PATH."""
    pass


class VersionMismatchError(KforgeError):
    """Installed Terraform version is outside the supported range."""
    pass


class ReadinessError(KforgeError):
    """Cluster did not become reachable or ready within the retry budget."""
    pass


class ReleaseError(KforgeError):
    """Installing, upgrading or removing a release failed."""

    def __init__(self, component: str, message: str):
        self.component = component
        super().__init__(f"{component}: {message}")


class RolloutError(KforgeError):
    """A restarted workload failed to converge."""
    pass


class KubectlError(KforgeError):
    """kubectl exited with a non-zero status."""
    pass


class HelmError(KforgeError):
    """helm exited with a non-zero status."""
    pass


class OperationCancelled(KforgeError):
    """
    The operator interrupted a running operation.

    Raised from polling loops and from the executor once the cancellation
    token has been triggered.
    """
    pass


class StageError(KforgeError):
    """An orchestrator stage failed; the message is prefixed with the stage name."""

    def __init__(self, stage: str, cause: BaseException):
        self.stage = stage
        self.cause = cause
        super().__init__(f"{stage}: {cause}")
