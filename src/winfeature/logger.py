"""
Structured logging for provisioning runs.

Outputs JSON-formatted lines on the ``winfeature.provisioning`` logger so
long-running, rebooting installs can be followed by a log collector. Only
state-changing events are logged here; command output goes to the Ui.

Logged events:
- run.started
- phase.changed
- restart.issued
- run.completed
- run.failed

Usage:
    from winfeature.logger import ProvisionLogger

    logger = ProvisionLogger(run_id="packer-windows-feature-...")
    logger.log_run_started(features=["IIS-WebServer"], capabilities=[])
    logger.log_phase_changed(from_phase="uploading", to_phase="installing")
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

_event_logger = logging.getLogger("winfeature.provisioning")
_event_logger.setLevel(logging.INFO)
# Stdout only, never repeated through the CLI handler
_event_logger.propagate = False

# Default handler outputs JSON to stdout
if not _event_logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(message)s"))
    _event_logger.addHandler(handler)


class ProvisionLogger:
    """
    Structured logger for provisioning events.

    Each entry carries the run id and service name so several runs in one
    log stream can be told apart.
    """

    def __init__(
        self,
        run_id: str,
        service_name: str = "winfeature",
        extra_labels: Optional[Dict[str, str]] = None,
    ):
        self.run_id = run_id
        self.service_name = service_name
        self.extra_labels = extra_labels or {}
        self._logger = _event_logger

    def _emit(self, event: str, level: str = "info", **extra_fields: Any) -> None:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "event": event,
            "service": self.service_name,
            "run_id": self.run_id,
        }
        entry.update(extra_fields)
        if self.extra_labels:
            entry["labels"] = self.extra_labels

        log_line = json.dumps(entry, default=str)

        if level == "error":
            self._logger.error(log_line)
        elif level == "warn":
            self._logger.warning(log_line)
        else:
            self._logger.info(log_line)

    def log_run_started(
        self,
        features: List[str],
        capabilities: List[str],
        username: Optional[str] = None,
    ) -> None:
        self._emit(
            "run.started",
            features=features,
            capabilities=capabilities,
            username=username,
        )

    def log_phase_changed(
        self,
        from_phase: str,
        to_phase: str,
        outcome: Optional[str] = None,
    ) -> None:
        fields: Dict[str, Any] = {"from_phase": from_phase, "to_phase": to_phase}
        if outcome:
            fields["outcome"] = outcome
        self._emit("phase.changed", **fields)

    def log_restart_issued(self, restart_number: int) -> None:
        self._emit("restart.issued", restart_number=restart_number)

    def log_run_completed(self, restarts: int, commands_run: int) -> None:
        self._emit("run.completed", restarts=restarts, commands_run=commands_run)

    def log_run_failed(
        self,
        phase: str,
        error: BaseException,
        exit_status: Optional[int] = None,
    ) -> None:
        fields: Dict[str, Any] = {
            "phase": phase,
            "error": str(error),
            "error_type": type(error).__name__,
        }
        if exit_status is not None:
            fields["exit_status"] = exit_status
        self._emit("run.failed", level="error", **fields)
