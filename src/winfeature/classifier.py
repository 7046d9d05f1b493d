"""
Remote command result classifier.

Both the feature installation script and the pending-reboot check script
report through their exit status: 0 means done (or no reboot pending),
101 means a reboot is required, anything else is a hard failure.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from winfeature.contracts.timeouts import EXIT_REBOOT_PENDING, EXIT_SUCCESS
from winfeature.errors import ClassificationError


class RemoteOutcome(str, Enum):
    """Semantic outcome of a remote script run."""

    SUCCESS = "success"
    REBOOT_PENDING = "reboot_pending"
    FAILED = "failed"


@dataclass(frozen=True)
class Classification:
    outcome: RemoteOutcome
    exit_status: int
    message: str = ""

    @property
    def reboot_pending(self) -> bool:
        return self.outcome == RemoteOutcome.REBOOT_PENDING

    def raise_for_failure(self, command: str = "") -> "Classification":
        """Raise ``ClassificationError`` if the outcome is FAILED."""
        if self.outcome == RemoteOutcome.FAILED:
            raise ClassificationError(command, self.exit_status, self.message)
        return self


def classify(exit_status: int, *, context: str = "windows feature script") -> Classification:
    """Map a raw exit status to a ``Classification``."""
    if exit_status == EXIT_SUCCESS:
        return Classification(RemoteOutcome.SUCCESS, exit_status)
    if exit_status == EXIT_REBOOT_PENDING:
        return Classification(RemoteOutcome.REBOOT_PENDING, exit_status)
    return Classification(
        RemoteOutcome.FAILED,
        exit_status,
        f"{context} exited with non-zero exit status: {exit_status}",
    )
