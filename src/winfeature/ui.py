"""Progress reporting for provisioning runs."""

from __future__ import annotations

import time
from typing import List, Protocol, Tuple, runtime_checkable

import click


@runtime_checkable
class Ui(Protocol):
    """Receives progress from a provisioning run."""

    def say(self, message: str) -> None: ...

    def message(self, text: str) -> None: ...

    def error(self, text: str) -> None: ...


class ClickUi:
    """Timestamped terminal output via click."""

    def __init__(self, prefix: str = "winfeature", color: bool = True) -> None:
        self.prefix = prefix
        self.color = color

    def _line(self, text: str) -> str:
        return f"[{time.strftime('%H:%M:%S')}] {self.prefix}: {text}"

    def say(self, message: str) -> None:
        line = self._line(message)
        click.echo(click.style(line, fg="green", bold=True) if self.color else line)

    def message(self, text: str) -> None:
        click.echo(self._line(f"    {text}"))

    def error(self, text: str) -> None:
        line = self._line(text)
        click.echo(click.style(line, fg="red") if self.color else line, err=True)


class RecordingUi:
    """Collects everything it is told; used by dry runs and tests."""

    def __init__(self) -> None:
        self.events: List[Tuple[str, str]] = []

    def say(self, message: str) -> None:
        self.events.append(("say", message))

    def message(self, text: str) -> None:
        self.events.append(("message", text))

    def error(self, text: str) -> None:
        self.events.append(("error", text))

    @property
    def said(self) -> List[str]:
        return [text for kind, text in self.events if kind == "say"]
