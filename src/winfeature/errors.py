"""
Error taxonomy for winfeature.

Every failure surfaced to the caller of a provisioning run is a
``ProvisioningError``. Transient failures are raised inside retried
operations and only escape once the retry budget is spent, at which point
they arrive wrapped in ``RetryTimeoutError``.
"""

from __future__ import annotations

from typing import Optional


class ProvisioningError(Exception):
    """Base class for all winfeature errors."""


class ConfigError(ProvisioningError):
    """Raised when provisioner configuration fails validation."""

    def __init__(self, problems: list[str]):
        self.problems = list(problems)
        super().__init__("; ".join(self.problems) or "invalid configuration")


class TemplateError(ProvisioningError):
    """Raised when a script template is malformed or missing a parameter."""


class CommunicatorError(ProvisioningError):
    """Raised by a communicator when the transport itself fails."""


class UploadError(ProvisioningError):
    """Raised when a script cannot be uploaded to the remote machine."""

    def __init__(self, destination: str, message: str):
        self.destination = destination
        super().__init__(message)


class RemoteCommandError(ProvisioningError):
    """A remote command ran but reported an unusable exit status."""

    def __init__(self, command: str, exit_status: int, message: Optional[str] = None):
        self.command = command
        self.exit_status = exit_status
        super().__init__(
            message or f"command exited with non-zero exit status: {exit_status}"
        )


class ClassificationError(RemoteCommandError):
    """A remote script exited with a status outside the 0/101 convention."""


class RetryTimeoutError(ProvisioningError):
    """The retry budget (attempts or start timeout) was exhausted."""

    def __init__(
        self,
        last_error: Optional[BaseException],
        attempts: int,
        reason: str,
    ):
        self.last_error = last_error
        self.attempts = attempts
        self.reason = reason
        if reason == "tries":
            detail = f"retry budget exhausted after {attempts} attempts"
        else:
            detail = f"start timeout elapsed after {attempts} attempts"
        if last_error is not None:
            detail = f"{detail}: {last_error}"
        super().__init__(detail)

    @property
    def exit_status(self) -> Optional[int]:
        """Exit status of the last failed remote command, if any."""
        return getattr(self.last_error, "exit_status", None)


class CancelledError(ProvisioningError):
    """External cancellation was observed."""


class InvalidTransitionError(ProvisioningError):
    """The orchestrator attempted a transition outside its state table."""
