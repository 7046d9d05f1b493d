"""
Timeout, retry and remote-path constants for winfeature.

The paths, command lines and exit codes below are shared with the
PowerShell scripts that run on the remote machine. Changing any of them
breaks compatibility with scripts already deployed by earlier runs.
"""

from __future__ import annotations

# =============================================================================
# Retry Configuration
# =============================================================================

# Delay between attempts of any retried remote operation
RETRYABLE_DELAY_S = 5.0

# Delay used when a policy does not specify one
DEFAULT_RETRY_DELAY_S = 2.0

# Start timeout for each script upload
UPLOAD_TIMEOUT_S = 5 * 60.0

# Attempt bound for the feature installation command
INSTALL_MAX_TRIES = 5

# Default time to wait for the machine to come back after a restart
DEFAULT_RESTART_TIMEOUT_S = 4 * 60 * 60.0

# =============================================================================
# Remote Exit Codes
# =============================================================================

EXIT_SUCCESS = 0
EXIT_REBOOT_PENDING = 101

# =============================================================================
# Remote Paths
# =============================================================================

ELEVATED_PATH = "C:/Windows/Temp/packer-windows-feature-elevated.ps1"
WINDOWS_FEATURE_PATH = "C:/Windows/Temp/packer-windows-feature.ps1"
PENDING_REBOOT_ELEVATED_PATH = (
    "C:/Windows/Temp/packer-windows-feature-pending-reboot-elevated.ps1"
)

# =============================================================================
# Remote Commands
# =============================================================================

POWERSHELL_PREFIX = "PowerShell -ExecutionPolicy Bypass -OutputFormat Text"

ELEVATED_COMMAND = f"{POWERSHELL_PREFIX} -File {ELEVATED_PATH}"
PENDING_REBOOT_ELEVATED_COMMAND = f"{POWERSHELL_PREFIX} -File {PENDING_REBOOT_ELEVATED_PATH}"

RESTART_COMMAND = 'shutdown.exe -f -r -t 0 -c "packer restart"'
TEST_RESTART_COMMAND = 'shutdown.exe -f -r -t 60 -c "packer restart test"'
ABORT_TEST_RESTART_COMMAND = "shutdown.exe -a"

# =============================================================================
# Scheduled Task Identity
# =============================================================================

TASK_NAME_PREFIX = "packer-windows-feature"
PENDING_REBOOT_TASK_NAME_PREFIX = "packer-windows-feature-pending-reboot"
TASK_DESCRIPTION = "Packer Windows update elevated task"
PENDING_REBOOT_TASK_DESCRIPTION = "Packer Windows feature pending reboot elevated task"
