"""
Provisioning orchestrator.

Installs Windows features and capabilities on a remote machine and drives
the restart cycle until the machine reports no pending reboot:

    uploading -> installing -> [restarting -> waiting_for_availability
              -> checking_reboot_pending]* -> done

Each phase is a handler that performs its remote work (wrapped in the
retry engine) and returns the classification it observed, if any. The
pure ``next_phase`` function decides where the run goes next, so the
restart loop is only entered on a reboot-pending classification and the
run only finishes on a success classification.

Usage::

    from winfeature.config import prepare
    from winfeature.provisioner import Provisioner

    provisioner = Provisioner(prepare({"features": ["IIS-WebServer"]}), communicator, ui)
    session = provisioner.provision()
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, TypeVar

from winfeature import retry
from winfeature.classifier import Classification, RemoteOutcome, classify
from winfeature.communicator import Communicator, RemoteCmd
from winfeature.config import ProvisionerConfig
from winfeature.contracts.timeouts import (
    ABORT_TEST_RESTART_COMMAND,
    ELEVATED_COMMAND,
    ELEVATED_PATH,
    INSTALL_MAX_TRIES,
    PENDING_REBOOT_ELEVATED_COMMAND,
    PENDING_REBOOT_ELEVATED_PATH,
    PENDING_REBOOT_TASK_DESCRIPTION,
    PENDING_REBOOT_TASK_NAME_PREFIX,
    RESTART_COMMAND,
    RETRYABLE_DELAY_S,
    TASK_DESCRIPTION,
    TASK_NAME_PREFIX,
    TEST_RESTART_COMMAND,
    UPLOAD_TIMEOUT_S,
    WINDOWS_FEATURE_PATH,
)
from winfeature.errors import (
    CommunicatorError,
    InvalidTransitionError,
    RemoteCommandError,
    UploadError,
)
from winfeature.logger import ProvisionLogger
from winfeature.otel import (
    emit_classified,
    emit_phase_changed,
    emit_retry_attempt,
    mark_run_result,
    provision_span,
)
from winfeature.retry import CancellationToken, RetryPolicy
from winfeature.scripts import (
    ELEVATED_TEMPLATE,
    WINDOWS_FEATURE_SCRIPT,
    ElevatedOptions,
    ScriptTemplate,
    load_template,
    new_task_name,
    pending_reboot_check_command,
    read_script,
    render_elevated,
    time_ordered_uuid,
    windows_feature_command,
)
from winfeature.ui import Ui

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Phase(str, Enum):
    UPLOADING = "uploading"
    INSTALLING = "installing"
    CHECKING_REBOOT_PENDING = "checking_reboot_pending"
    RESTARTING = "restarting"
    WAITING_FOR_AVAILABILITY = "waiting_for_availability"
    DONE = "done"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (Phase.DONE, Phase.FAILED)


_TRANSITIONS: Dict[tuple, Phase] = {
    (Phase.UPLOADING, None): Phase.INSTALLING,
    (Phase.INSTALLING, RemoteOutcome.SUCCESS): Phase.DONE,
    (Phase.INSTALLING, RemoteOutcome.REBOOT_PENDING): Phase.RESTARTING,
    (Phase.RESTARTING, None): Phase.WAITING_FOR_AVAILABILITY,
    (Phase.WAITING_FOR_AVAILABILITY, None): Phase.CHECKING_REBOOT_PENDING,
    (Phase.CHECKING_REBOOT_PENDING, RemoteOutcome.SUCCESS): Phase.DONE,
    (Phase.CHECKING_REBOOT_PENDING, RemoteOutcome.REBOOT_PENDING): Phase.RESTARTING,
}


def next_phase(phase: Phase, outcome: Optional[RemoteOutcome] = None) -> Phase:
    """
    Transition function of the provisioning state machine.

    Args:
        phase: Current, non-terminal phase.
        outcome: Classification observed by the phase, or None for phases
            that do not classify anything.

    Raises:
        InvalidTransitionError: For terminal phases or pairs outside the table.
    """
    if phase.terminal:
        raise InvalidTransitionError(f"no transition out of terminal phase {phase.value}")
    if outcome == RemoteOutcome.FAILED:
        return Phase.FAILED
    try:
        return _TRANSITIONS[(phase, outcome)]
    except KeyError:
        label = outcome.value if outcome is not None else "none"
        raise InvalidTransitionError(
            f"no transition from {phase.value} on outcome {label}"
        ) from None


@dataclass
class Session:
    """Ephemeral state of one provisioning run."""

    run_id: str
    phase: Phase = Phase.UPLOADING
    last_outcome: Optional[Classification] = None
    restarts: int = 0
    commands_run: int = 0
    history: List[Phase] = field(default_factory=lambda: [Phase.UPLOADING])
    error: Optional[BaseException] = None

    def advance(self, outcome: Optional[RemoteOutcome] = None) -> Phase:
        self.phase = next_phase(self.phase, outcome)
        self.history.append(self.phase)
        return self.phase


@dataclass(frozen=True)
class ProvisionTemplates:
    """Script artifacts the orchestrator uploads."""

    elevated: ScriptTemplate
    payload: bytes

    @classmethod
    def load(cls) -> "ProvisionTemplates":
        return cls(
            elevated=load_template(ELEVATED_TEMPLATE),
            payload=read_script(WINDOWS_FEATURE_SCRIPT).encode("utf-8"),
        )


class Provisioner:
    """
    Runs one provisioning session against one remote machine.

    The communicator is owned exclusively by this provisioner for the
    duration of ``provision()``.

    Args:
        config: Validated provisioner configuration.
        communicator: Remote execution channel.
        ui: Receives progress and command output.
        token: Cancellation token; cancelling it aborts the run at the next
            retry boundary.
        templates: Script artifacts; the packaged ones by default.
        retry_delay: Seconds between retries of any remote operation.
        clock: Monotonic time source used for start timeouts.
    """

    def __init__(
        self,
        config: ProvisionerConfig,
        communicator: Communicator,
        ui: Ui,
        *,
        token: Optional[CancellationToken] = None,
        templates: Optional[ProvisionTemplates] = None,
        retry_delay: float = RETRYABLE_DELAY_S,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.communicator = communicator
        self.ui = ui
        self.token = token or CancellationToken()
        self.templates = templates or ProvisionTemplates.load()
        self.clock = clock
        self.session: Optional[Session] = None
        self._events = ProvisionLogger(run_id="")

        self.upload_policy = RetryPolicy(retry_delay=retry_delay, start_timeout=UPLOAD_TIMEOUT_S)
        self.install_policy = RetryPolicy(retry_delay=retry_delay, tries=INSTALL_MAX_TRIES)
        self.restart_policy = RetryPolicy(
            retry_delay=retry_delay,
            start_timeout=config.restart_timeout_s,
        )

        self._handlers: Dict[Phase, Callable[[Session], Optional[Classification]]] = {
            Phase.UPLOADING: self._upload,
            Phase.INSTALLING: self._install,
            Phase.RESTARTING: self._restart,
            Phase.WAITING_FOR_AVAILABILITY: self._wait_for_availability,
            Phase.CHECKING_REBOOT_PENDING: self._check_pending,
        }

    def provision(self) -> Session:
        """
        Drive the session until it is done.

        Returns:
            The finished session (phase DONE).

        Raises:
            ProvisioningError: Any fatal error; the session is marked FAILED
                first. Remote artifacts are left in place.
        """
        session = self.session = Session(run_id=time_ordered_uuid())
        events = self._events = ProvisionLogger(run_id=session.run_id)
        events.log_run_started(
            features=list(self.config.features),
            capabilities=list(self.config.capabilities),
            username=self.config.username,
        )

        with provision_span(session.run_id, self.config.features, self.config.capabilities) as span:
            try:
                while not session.phase.terminal:
                    self.token.raise_if_cancelled()
                    classification = self._handlers[session.phase](session)
                    self._advance(session, classification)
            except Exception as e:
                failed_in = session.phase
                session.error = e
                if not session.phase.terminal:
                    session.advance(RemoteOutcome.FAILED)
                logger.error("Provisioning failed during %s: %s", failed_in.value, e)
                events.log_run_failed(
                    failed_in.value,
                    e,
                    exit_status=getattr(e, "exit_status", None),
                )
                self.ui.error(f"Provisioning failed during {failed_in.value}: {e}")
                raise

            mark_run_result(span, session.restarts, session.commands_run)

        events.log_run_completed(session.restarts, session.commands_run)
        return session

    def _advance(
        self,
        session: Session,
        classification: Optional[Classification],
    ) -> None:
        from_phase = session.phase
        outcome = None
        if classification is not None:
            session.last_outcome = classification
            outcome = classification.outcome
        to_phase = session.advance(outcome)

        label = outcome.value if outcome is not None else None
        logger.info("Phase %s -> %s", from_phase.value, to_phase.value)
        self._events.log_phase_changed(from_phase.value, to_phase.value, label)
        emit_phase_changed(from_phase.value, to_phase.value, label)

    def _retry(self, name: str, policy: RetryPolicy, operation: Callable[[CancellationToken], T]) -> T:
        return retry.run(
            policy,
            operation,
            self.token,
            clock=self.clock,
            on_retry=lambda attempt, err: emit_retry_attempt(name, attempt, err),
        )

    def _run(self, session: Session, command: str, token: CancellationToken) -> int:
        cmd = RemoteCmd(command)
        session.commands_run += 1
        return cmd.run_with_ui(self.communicator, self.ui, token)

    def _run_classified(
        self,
        session: Session,
        command: str,
        token: CancellationToken,
        context: str,
    ) -> Classification:
        exit_status = self._run(session, command, token)
        classification = classify(exit_status, context=context)
        session.last_outcome = classification
        emit_classified(command, exit_status, classification.outcome.value)
        return classification.raise_for_failure(command)

    # -- uploading ---------------------------------------------------------

    def _elevated_script(self, prefix: str, description: str, command: str) -> bytes:
        options = ElevatedOptions(
            username=self.config.username,
            password=self.config.password,
            task_name=new_task_name(prefix),
            task_description=description,
            command=command,
        )
        return render_elevated(options, self.templates.elevated).encode("utf-8")

    def _upload_file(self, destination: str, content: bytes, description: str) -> None:
        def upload(token: CancellationToken) -> None:
            try:
                self.communicator.upload(destination, content)
            except CommunicatorError as e:
                raise UploadError(destination, f"error uploading the {description}: {e}") from e

        self._retry("upload", self.upload_policy, upload)

    def _upload(self, session: Session) -> None:
        self.ui.say("Uploading the Windows feature elevated script...")
        self._upload_file(
            ELEVATED_PATH,
            self._elevated_script(
                TASK_NAME_PREFIX,
                TASK_DESCRIPTION,
                windows_feature_command(self.config.features, self.config.capabilities),
            ),
            "Windows feature elevated script",
        )

        self.ui.say("Uploading the Windows feature check for reboot required elevated script...")
        self._upload_file(
            PENDING_REBOOT_ELEVATED_PATH,
            self._elevated_script(
                PENDING_REBOOT_TASK_NAME_PREFIX,
                PENDING_REBOOT_TASK_DESCRIPTION,
                pending_reboot_check_command(),
            ),
            "Windows feature check for reboot required elevated script",
        )

        self.ui.say("Uploading the Windows feature script...")
        self._upload_file(WINDOWS_FEATURE_PATH, self.templates.payload, "Windows feature script")
        return None

    # -- installing --------------------------------------------------------

    def _install(self, session: Session) -> Classification:
        self.ui.say("Running Windows Feature and Capability install...")
        return self._retry(
            "install",
            self.install_policy,
            lambda token: self._run_classified(
                session, ELEVATED_COMMAND, token, "windows feature script"
            ),
        )

    # -- restart loop ------------------------------------------------------

    def _restart(self, session: Session) -> None:
        self.ui.say("Restarting the machine...")

        def restart(token: CancellationToken) -> None:
            exit_status = self._run(session, RESTART_COMMAND, token)
            if exit_status != 0:
                raise RemoteCommandError(
                    RESTART_COMMAND,
                    exit_status,
                    f"failed to restart the machine with exit status: {exit_status}",
                )

        self._retry("restart", self.restart_policy, restart)
        session.restarts += 1
        logger.info("Restart %d issued", session.restarts)
        self._events.log_restart_issued(session.restarts)
        return None

    def _wait_for_availability(self, session: Session) -> None:
        self.ui.say("Waiting for machine to become available...")

        def check_available(token: CancellationToken) -> None:
            exit_status = self._run(session, TEST_RESTART_COMMAND, token)
            if exit_status != 0:
                raise RemoteCommandError(
                    TEST_RESTART_COMMAND,
                    exit_status,
                    f"machine not yet available (exit status {exit_status})",
                )
            self._run(session, ABORT_TEST_RESTART_COMMAND, token)

        self._retry("wait_for_availability", self.restart_policy, check_available)
        return None

    def _check_pending(self, session: Session) -> Classification:
        self.ui.say("Checking for pending restart...")
        classification = self._retry(
            "check_pending_reboot",
            self.restart_policy,
            lambda token: self._run_classified(
                session, PENDING_REBOOT_ELEVATED_COMMAND, token, "pending reboot check"
            ),
        )
        if classification.reboot_pending:
            self.ui.say("Restart is still pending...")
        else:
            self.ui.say("Restart complete")
        return classification
