"""
PowerShell command lines for the feature installation payload.

The payload script is invoked through ``-EncodedCommand`` (base64 of the
UTF-16LE command text) so that feature names survive the trip through
cmd.exe and the scheduled task without further quoting.
"""

from __future__ import annotations

import base64
from typing import Sequence

from winfeature.contracts.timeouts import POWERSHELL_PREFIX, WINDOWS_FEATURE_PATH


def escape_single_quoted(value: str) -> str:
    """Escape a value for embedding inside a PowerShell single-quoted string."""
    return value.replace("'", "''")


def escape_powershell_string(value: str) -> str:
    return f"'{escape_single_quoted(value)}'"


def _list_argument(name: str, values: Sequence[str]) -> str:
    if not values:
        return ""
    return f" -{name} " + ",".join(escape_powershell_string(v) for v in values)


def features_argument(features: Sequence[str]) -> str:
    """Render ``-Features 'A','B'``; empty input renders nothing."""
    return _list_argument("Features", features)


def capabilities_argument(capabilities: Sequence[str]) -> str:
    """Render ``-Capabilities 'A','B'``; empty input renders nothing."""
    return _list_argument("Capabilities", capabilities)


def encode_powershell_command(text: str) -> str:
    return base64.b64encode(text.encode("utf-16-le")).decode("ascii")


def decode_powershell_command(encoded: str) -> str:
    return base64.b64decode(encoded).decode("utf-16-le")


def encoded_command(text: str) -> str:
    return f"{POWERSHELL_PREFIX} -EncodedCommand {encode_powershell_command(text)}"


def windows_feature_command(
    features: Sequence[str],
    capabilities: Sequence[str],
) -> str:
    """Command line that installs ``features`` and ``capabilities``."""
    return encoded_command(
        f"{WINDOWS_FEATURE_PATH}"
        f"{features_argument(features)}"
        f"{capabilities_argument(capabilities)}"
    )


def pending_reboot_check_command() -> str:
    """Command line that only reports whether a reboot is pending."""
    return encoded_command(f"{WINDOWS_FEATURE_PATH} -OnlyCheckForRebootRequired")
