"""
Script parameterization for the remote machine.

Renders the elevated-task wrapper scripts and builds the PowerShell command
lines that invoke the feature installation payload.
"""

from winfeature.scripts.commands import (
    capabilities_argument,
    decode_powershell_command,
    encode_powershell_command,
    escape_powershell_string,
    features_argument,
    pending_reboot_check_command,
    windows_feature_command,
)
from winfeature.scripts.elevated import (
    ELEVATED_TEMPLATE,
    WINDOWS_FEATURE_SCRIPT,
    ElevatedOptions,
    ScriptTemplate,
    load_template,
    new_task_name,
    read_script,
    render_elevated,
    time_ordered_uuid,
)

__all__ = [
    "ELEVATED_TEMPLATE",
    "WINDOWS_FEATURE_SCRIPT",
    "ElevatedOptions",
    "ScriptTemplate",
    "capabilities_argument",
    "decode_powershell_command",
    "encode_powershell_command",
    "escape_powershell_string",
    "features_argument",
    "load_template",
    "new_task_name",
    "pending_reboot_check_command",
    "read_script",
    "render_elevated",
    "time_ordered_uuid",
    "windows_feature_command",
]
