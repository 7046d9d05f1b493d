"""
winfeature - unattended Windows feature and capability installation.

Uploads a feature installation script to a remote Windows machine, runs it
as an elevated scheduled task and restarts the machine as often as the
installation requires, until no reboot is pending.

Example usage:
    from winfeature import Provisioner, prepare
    from winfeature.communicator import SSHCommunicator
    from winfeature.ui import ClickUi

    config = prepare({"features": ["IIS-WebServer"], "restart_timeout": "30m"})
    communicator = SSHCommunicator("10.0.0.5", username="Administrator")
    session = Provisioner(config, communicator, ClickUi()).provision()
    print(session.restarts)
"""

from winfeature.version import plugin_version

__version__ = plugin_version()
__all__ = [
    "Provisioner",
    "ProvisionerConfig",
    "RetryPolicy",
    "classify",
    "prepare",
    "__version__",
]


# Lazy imports to avoid loading pydantic and OTel at import time
def __getattr__(name: str):
    if name == "Provisioner":
        from winfeature.provisioner import Provisioner
        return Provisioner
    if name == "ProvisionerConfig":
        from winfeature.config import ProvisionerConfig
        return ProvisionerConfig
    if name == "prepare":
        from winfeature.config import prepare
        return prepare
    if name == "RetryPolicy":
        from winfeature.retry import RetryPolicy
        return RetryPolicy
    if name == "classify":
        from winfeature.classifier import classify
        return classify
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
