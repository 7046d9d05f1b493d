"""
Pytest configuration and fixtures for winfeature tests.
"""

from __future__ import annotations

import logging
import os
from typing import Callable, Dict, Generator, List, Optional

import pytest

from winfeature.communicator import DryRunCommunicator
from winfeature.config import ProvisionerConfig, prepare, reset_config
from winfeature.provisioner import Provisioner
from winfeature.retry import CancellationToken
from winfeature.ui import RecordingUi


# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Keep WINFEATURE_* variables from the developer's shell out of tests."""
    for key in list(os.environ):
        if key.startswith("WINFEATURE_"):
            monkeypatch.delenv(key, raising=False)
    reset_config()

    yield

    reset_config()
    cli_logger = logging.getLogger("winfeature")
    for handler in list(cli_logger.handlers):
        if getattr(handler, "_winfeature_cli", False):
            cli_logger.removeHandler(handler)


# ============================================================================
# Time Fixtures
# ============================================================================


class FakeClock:
    """Monotonic clock that advances ``step`` seconds on every reading."""

    def __init__(self, start: float = 1000.0, step: float = 0.0):
        self.now = start
        self.step = step
        self.readings = 0

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        self.readings += 1
        return value


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


# ============================================================================
# Logging Fixtures
# ============================================================================


class RecordingHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__()
        self.records: List[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


@pytest.fixture
def event_records() -> Generator[List[logging.LogRecord], None, None]:
    """Records written to the structured provisioning event logger."""
    handler = RecordingHandler()
    event_logger = logging.getLogger("winfeature.provisioning")
    event_logger.addHandler(handler)

    yield handler.records

    event_logger.removeHandler(handler)


# ============================================================================
# Provisioner Fixtures
# ============================================================================


@pytest.fixture
def config() -> ProvisionerConfig:
    return prepare({"features": ["IIS-WebServer"], "capabilities": ["OpenSSH.Server~~~~0.0.1.0"]})


@pytest.fixture
def ui() -> RecordingUi:
    return RecordingUi()


@pytest.fixture
def token() -> CancellationToken:
    return CancellationToken()


@pytest.fixture
def make_provisioner(
    config: ProvisionerConfig,
    ui: RecordingUi,
    token: CancellationToken,
) -> Callable[..., Provisioner]:
    """Build a Provisioner over a DryRunCommunicator with no retry delay."""

    def _make(
        responses: Optional[Dict] = None,
        upload_failures: Optional[Dict[str, int]] = None,
        communicator: Optional[DryRunCommunicator] = None,
        clock: Optional[Callable[[], float]] = None,
        cfg: Optional[ProvisionerConfig] = None,
    ) -> Provisioner:
        communicator = communicator or DryRunCommunicator(
            responses=responses,
            upload_failures=upload_failures,
        )
        kwargs = {"token": token, "retry_delay": 0.0}
        if clock is not None:
            kwargs["clock"] = clock
        return Provisioner(cfg or config, communicator, ui, **kwargs)

    return _make
