"""
Elevated-task wrapper script rendering.

The wrapper registers a Windows scheduled task that runs a command line
under the configured identity, streams the task's output back and exits
with the task's result code. Templates use ``{{ name }}`` placeholders so
that PowerShell's own ``$variables`` need no escaping.

Usage::

    from winfeature.scripts.elevated import ElevatedOptions, render_elevated

    script = render_elevated(ElevatedOptions(
        username="SYSTEM",
        password="",
        task_name=new_task_name("packer-windows-feature"),
        task_description="Packer Windows update elevated task",
        command=windows_feature_command(["IIS-WebServer"], []),
    ))
"""

from __future__ import annotations

import os
import string
import time
from dataclasses import dataclass
from importlib import resources
from typing import Mapping, Optional
from xml.sax.saxutils import escape as xml_escape

from winfeature.errors import TemplateError
from winfeature.scripts.commands import escape_single_quoted

ELEVATED_TEMPLATE = "elevated-template.ps1"
WINDOWS_FEATURE_SCRIPT = "windows-feature.ps1"


class _PlaceholderTemplate(string.Template):
    """``string.Template`` matching ``{{ name }}`` instead of ``$name``."""

    pattern = r"""
    \{\{\s*(?:
      (?P<named>[_a-z][_a-z0-9]*)\s*\}\}  |
      (?P<braced>(?!))                    |
      (?P<escaped>(?!))                   |
      (?P<invalid>)
    )
    """


class ScriptTemplate:
    """A parsed script template.

    Rendering is pure. Unknown placeholders and malformed ``{{`` sequences
    raise ``TemplateError``.
    """

    def __init__(self, text: str, name: str = "<template>"):
        self.name = name
        self.text = text
        self._template = _PlaceholderTemplate(text)

    def render(self, params: Mapping[str, str]) -> str:
        try:
            return self._template.substitute(params)
        except KeyError as e:
            raise TemplateError(
                f"template {self.name} references unknown parameter {e.args[0]!r}"
            ) from e
        except ValueError as e:
            raise TemplateError(f"template {self.name} is malformed: {e}") from e


def read_script(name: str) -> str:
    """Read a script shipped with the package."""
    resource = resources.files("winfeature.scripts").joinpath("templates").joinpath(name)
    try:
        return resource.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise TemplateError(f"packaged script not found: {name}") from e


def load_template(name: str = ELEVATED_TEMPLATE) -> ScriptTemplate:
    return ScriptTemplate(read_script(name), name=name)


def time_ordered_uuid() -> str:
    """Return a UUID-formatted identifier prefixed with the current Unix time.

    Identifiers created later sort after earlier ones (at one-second
    granularity); the random tail keeps identifiers from the same second
    distinct.
    """
    unix = int(time.time()) & 0xFFFFFFFF
    b = os.urandom(12)
    return f"{unix:08x}-{b[0:2].hex()}-{b[2:4].hex()}-{b[4:6].hex()}-{b[6:12].hex()}"


def new_task_name(prefix: str) -> str:
    return f"{prefix}-{time_ordered_uuid()}"


@dataclass(frozen=True)
class ElevatedOptions:
    """Parameters for one elevated invocation. Never reuse across runs."""

    username: str
    password: str
    task_name: str
    task_description: str
    command: str

    def to_params(self) -> dict[str, str]:
        return {
            "username": escape_single_quoted(self.username),
            "username_xml": xml_escape(self.username),
            "password": escape_single_quoted(self.password),
            "task_name": self.task_name,
            "task_description": xml_escape(self.task_description),
            "command": xml_escape(self.command),
        }


def render_elevated(
    options: ElevatedOptions,
    template: Optional[ScriptTemplate] = None,
) -> str:
    """Render the elevated wrapper script for ``options``."""
    template = template or load_template(ELEVATED_TEMPLATE)
    return template.render(options.to_params())
