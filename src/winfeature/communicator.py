"""
Remote execution channel.

A communicator exposes two fallible capabilities: upload a file to a path
on the target, and run a command reporting its integer exit status while
streaming output. Transport failures raise ``CommunicatorError``; a
command that runs and exits non-zero is not a transport failure.

Implementations:
- ``SSHCommunicator``: a remote Windows machine running OpenSSH (paramiko).
- ``LocalCommunicator``: the target is the machine winfeature runs on.
- ``DryRunCommunicator``: records traffic and replays scripted exit
  statuses without touching any machine.
"""

from __future__ import annotations

import io
import logging
import os
import signal
import subprocess
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from pathlib import Path, PureWindowsPath
from typing import IO, Callable, Deque, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import paramiko

from winfeature.errors import CancelledError, CommunicatorError
from winfeature.retry import CancellationToken
from winfeature.ui import Ui

logger = logging.getLogger(__name__)

OutputCallback = Callable[[str], None]
ScriptedResponse = Union[int, Exception]

DEFAULT_POLL_INTERVAL_S = 0.1


class Communicator(ABC):
    """Interface every execution channel implements."""

    @abstractmethod
    def upload(self, destination: str, content: bytes) -> None:
        """Write ``content`` to ``destination`` on the target."""

    @abstractmethod
    def run(
        self,
        command: str,
        on_output: Optional[OutputCallback] = None,
        token: Optional[CancellationToken] = None,
    ) -> int:
        """Run ``command`` on the target and return its exit status.

        A cancelled ``token`` stops the command and raises ``CancelledError``.
        """

    def close(self) -> None:
        """Release any connection held to the target."""


class RemoteCmd:
    """A single command invocation."""

    def __init__(self, command: str):
        self.command = command
        self.exit_status: Optional[int] = None

    def run_with_ui(
        self,
        communicator: Communicator,
        ui: Ui,
        token: Optional[CancellationToken] = None,
    ) -> int:
        """Run the command, streaming its output to ``ui.message``."""
        if token is not None:
            token.raise_if_cancelled()
        logger.debug("Running remote command: %s", self.command)
        self.exit_status = communicator.run(self.command, ui.message, token=token)
        logger.debug("Remote command exited with %d: %s", self.exit_status, self.command)
        return self.exit_status


class _LineSplitter:
    """Turns arbitrary text chunks into complete lines."""

    def __init__(self, on_output: Optional[OutputCallback]):
        self.on_output = on_output
        self._pending = ""

    def feed(self, text: str) -> None:
        self._pending += text
        *lines, self._pending = self._pending.split("\n")
        for line in lines:
            self._emit(line)

    def flush(self) -> None:
        if self._pending:
            self._emit(self._pending)
            self._pending = ""

    def _emit(self, line: str) -> None:
        if self.on_output is not None:
            self.on_output(line.rstrip("\r"))


class LocalCommunicator(Communicator):
    """
    Runs commands on the local machine.

    Args:
        root: When set, Windows destinations are re-rooted beneath this
            directory (``C:/Windows/Temp/x.ps1`` -> ``<root>/C/Windows/Temp/x.ps1``)
            instead of being written to the real path.
        timeout_s: Optional per-command timeout; an expired command is killed
            and reported as a ``CommunicatorError``.
        poll_interval: Seconds between timeout and cancellation checks.
    """

    def __init__(
        self,
        root: Optional[Path] = None,
        timeout_s: Optional[float] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL_S,
    ):
        self.root = Path(root) if root else None
        self.timeout_s = timeout_s
        self.poll_interval = poll_interval

    def resolve(self, destination: str) -> Path:
        if self.root is None:
            return Path(destination)
        win = PureWindowsPath(destination)
        parts = [p for p in win.parts if p != win.anchor]
        drive = win.drive.rstrip(":") or "_"
        return self.root.joinpath(drive, *parts)

    def upload(self, destination: str, content: bytes) -> None:
        path = self.resolve(destination)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)
        except OSError as e:
            raise CommunicatorError(f"failed to write {path}: {e}") from e
        logger.debug("Uploaded %d bytes to %s", len(content), path)

    @staticmethod
    def _pump(stream: IO[str], splitter: _LineSplitter) -> None:
        for line in stream:
            splitter.feed(line)
        splitter.flush()

    @staticmethod
    def _kill(proc: subprocess.Popen) -> None:
        # The shell runs in its own session on POSIX; take its children down too
        try:
            if os.name == "posix":
                os.killpg(proc.pid, signal.SIGKILL)
            else:
                proc.kill()
        except ProcessLookupError:
            pass
        proc.wait()

    def run(
        self,
        command: str,
        on_output: Optional[OutputCallback] = None,
        token: Optional[CancellationToken] = None,
    ) -> int:
        try:
            proc = subprocess.Popen(
                command,
                shell=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                start_new_session=os.name == "posix",
            )
        except OSError as e:
            raise CommunicatorError(f"failed to start command: {e}") from e

        assert proc.stdout is not None
        reader = threading.Thread(
            target=self._pump,
            args=(proc.stdout, _LineSplitter(on_output)),
            name="winfeature-local-output",
            daemon=True,
        )
        reader.start()

        deadline = None
        if self.timeout_s is not None:
            deadline = time.monotonic() + self.timeout_s
        try:
            while True:
                try:
                    return proc.wait(timeout=self.poll_interval)
                except subprocess.TimeoutExpired:
                    pass
                if token is not None and token.cancelled:
                    raise CancelledError(f"cancelled while running: {command}")
                if deadline is not None and time.monotonic() >= deadline:
                    raise CommunicatorError(
                        f"command timed out after {self.timeout_s}s: {command}"
                    )
        finally:
            if proc.poll() is None:
                self._kill(proc)
            reader.join(timeout=5.0)
            # A stream still held open by an orphaned grandchild is left to the reader
            if not reader.is_alive():
                proc.stdout.close()


class SSHCommunicator(Communicator):
    """
    Runs commands on a remote Windows machine over SSH.

    The connection is opened lazily and dropped on any transport failure,
    so the next call reconnects. That is what lets the restart loop poll a
    machine that went away and came back.

    Args:
        host: Target host name or address.
        port: SSH port.
        username: Login user; paramiko's default when None.
        password: Login password, if any.
        key_filename: Private key file, if any.
        connect_timeout: Seconds allowed for TCP connect, banner and auth.
        command_timeout: Optional per-command timeout.
        poll_interval: Seconds between output, timeout and cancellation checks.
        client_factory: Builds the ``paramiko.SSHClient``.
    """

    def __init__(
        self,
        host: str,
        port: int = 22,
        username: Optional[str] = None,
        password: Optional[str] = None,
        key_filename: Optional[str] = None,
        connect_timeout: float = 30.0,
        command_timeout: Optional[float] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL_S,
        client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.key_filename = key_filename
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self.poll_interval = poll_interval
        self.client_factory = client_factory
        self._client: Optional[paramiko.SSHClient] = None

    @property
    def target(self) -> str:
        return f"{self.host}:{self.port}"

    @staticmethod
    def sftp_path(destination: str) -> str:
        """Map ``C:/dir/file`` to the ``/C:/dir/file`` form Windows OpenSSH expects."""
        win = PureWindowsPath(destination)
        if not win.drive:
            return destination.replace("\\", "/")
        parts = [p for p in win.parts if p != win.anchor]
        return "/" + "/".join([win.drive] + parts)

    def _connect(self) -> paramiko.SSHClient:
        if self._client is not None:
            transport = self._client.get_transport()
            if transport is not None and transport.is_active():
                return self._client
            self.close()

        client = self.client_factory()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=self.host,
                port=self.port,
                username=self.username,
                password=self.password or None,
                key_filename=self.key_filename,
                timeout=self.connect_timeout,
                banner_timeout=self.connect_timeout,
                auth_timeout=self.connect_timeout,
            )
        except (paramiko.SSHException, OSError) as e:
            client.close()
            raise CommunicatorError(f"failed to connect to {self.target}: {e}") from e
        logger.debug("Connected to %s", self.target)
        self._client = client
        return client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def upload(self, destination: str, content: bytes) -> None:
        client = self._connect()
        remote_path = self.sftp_path(destination)
        try:
            sftp = client.open_sftp()
            try:
                sftp.putfo(io.BytesIO(content), remote_path)
            finally:
                sftp.close()
        except (paramiko.SSHException, OSError, EOFError) as e:
            self.close()
            raise CommunicatorError(
                f"failed to upload {destination} to {self.target}: {e}"
            ) from e
        logger.debug("Uploaded %d bytes to %s:%s", len(content), self.target, remote_path)

    def run(
        self,
        command: str,
        on_output: Optional[OutputCallback] = None,
        token: Optional[CancellationToken] = None,
    ) -> int:
        client = self._connect()
        stdout_lines = _LineSplitter(on_output)
        stderr_lines = _LineSplitter(on_output)
        deadline = None
        if self.command_timeout is not None:
            deadline = time.monotonic() + self.command_timeout

        try:
            stdin, stdout, _ = client.exec_command(command)
            stdin.close()
            channel = stdout.channel
            while True:
                while channel.recv_ready():
                    stdout_lines.feed(channel.recv(4096).decode("utf-8", "replace"))
                while channel.recv_stderr_ready():
                    stderr_lines.feed(channel.recv_stderr(4096).decode("utf-8", "replace"))
                if channel.exit_status_ready() and not (
                    channel.recv_ready() or channel.recv_stderr_ready()
                ):
                    break
                if token is not None and token.wait(self.poll_interval):
                    channel.close()
                    raise CancelledError(f"cancelled while running: {command}")
                if token is None:
                    time.sleep(self.poll_interval)
                if deadline is not None and time.monotonic() >= deadline:
                    channel.close()
                    raise CommunicatorError(
                        f"command timed out after {self.command_timeout}s on {self.target}: {command}"
                    )
            stdout_lines.flush()
            stderr_lines.flush()
            return channel.recv_exit_status()
        except (paramiko.SSHException, OSError, EOFError) as e:
            self.close()
            raise CommunicatorError(f"lost connection to {self.target}: {e}") from e


class DryRunCommunicator(Communicator):
    """
    Records uploads and commands and replays scripted responses.

    Args:
        responses: Per-command queues of exit statuses or exceptions, consumed
            in order. Once a queue is empty ``default_exit_status`` applies.
        upload_failures: Per-destination count of uploads that should fail
            before succeeding.
        default_exit_status: Exit status for commands without a response.
    """

    def __init__(
        self,
        responses: Optional[Mapping[str, Sequence[ScriptedResponse]]] = None,
        upload_failures: Optional[Mapping[str, int]] = None,
        default_exit_status: int = 0,
    ):
        self._responses: Dict[str, Deque[ScriptedResponse]] = {
            command: deque(queue) for command, queue in (responses or {}).items()
        }
        self._upload_failures = dict(upload_failures or {})
        self.default_exit_status = default_exit_status
        self.uploads: Dict[str, bytes] = {}
        self.upload_attempts: List[str] = []
        self.commands: List[str] = []
        self.log: List[Tuple[str, str]] = []

    def upload(self, destination: str, content: bytes) -> None:
        self.upload_attempts.append(destination)
        self.log.append(("upload", destination))
        remaining = self._upload_failures.get(destination, 0)
        if remaining:
            self._upload_failures[destination] = remaining - 1
            raise CommunicatorError(f"simulated upload failure for {destination}")
        self.uploads[destination] = content

    def run(
        self,
        command: str,
        on_output: Optional[OutputCallback] = None,
        token: Optional[CancellationToken] = None,
    ) -> int:
        self.commands.append(command)
        self.log.append(("run", command))
        queue = self._responses.get(command)
        response: ScriptedResponse = self.default_exit_status
        if queue:
            response = queue.popleft()
        if isinstance(response, Exception):
            raise response
        if on_output is not None:
            on_output(f"[dry-run] {command} -> {response}")
        return response

    def count(self, command: str) -> int:
        return self.commands.count(command)
