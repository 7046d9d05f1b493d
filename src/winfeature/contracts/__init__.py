"""Constants shared with the remote-side PowerShell scripts."""
