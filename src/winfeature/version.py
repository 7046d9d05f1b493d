"""Version information for winfeature.

``COMMIT`` and ``DATE`` are stamped at build time through the
WINFEATURE_BUILD_COMMIT and WINFEATURE_BUILD_DATE environment variables.
"""

from __future__ import annotations

import os

# Main version number that is being run at the moment.
VERSION = "0.0.1"

# Prerelease marker for VERSION. Empty means a final release; otherwise
# "dev", "beta", "rc1" and so on.
PRERELEASE = "dev"

COMMIT = os.environ.get("WINFEATURE_BUILD_COMMIT", "unknown")
DATE = os.environ.get("WINFEATURE_BUILD_DATE", "unknown")


def plugin_version(version: str = VERSION, prerelease: str = PRERELEASE) -> str:
    """Full version string, e.g. ``0.0.1-dev``."""
    if prerelease:
        return f"{version}-{prerelease}"
    return version


def startup_banner() -> str:
    return (
        f"Starting winfeature (version {VERSION}; prerelease {PRERELEASE}; "
        f"commit {COMMIT}; date {DATE})"
    )
