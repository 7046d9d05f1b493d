"""winfeature CLI - provision command."""

import signal
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import click

from winfeature.errors import ConfigError, ProvisioningError


def _configure_console_tracing() -> None:
    """Export spans to stdout; set up before the provisioner is created."""
    from opentelemetry import trace
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor

    resource = Resource.create({
        "service.name": "winfeature",
        "service.namespace": "winfeature",
    })
    tracer_provider = TracerProvider(resource=resource)
    tracer_provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(tracer_provider)


def _flush_tracing() -> None:
    from opentelemetry import trace

    tracer_provider = trace.get_tracer_provider()
    if hasattr(tracer_provider, "force_flush"):
        tracer_provider.force_flush()


def config_overrides(
    username: Optional[str],
    password: Optional[str],
    restart_timeout: Optional[str],
    features: Tuple[str, ...],
    capabilities: Tuple[str, ...],
) -> Dict[str, Any]:
    """Map CLI options to config keys; unset options are left out."""
    overrides: Dict[str, Any] = {
        "username": username,
        "password": password,
        "restart_timeout": restart_timeout,
    }
    if features:
        overrides["features"] = list(features)
    if capabilities:
        overrides["capabilities"] = list(capabilities)
    return {k: v for k, v in overrides.items() if v is not None}


def config_options(f):
    """Options shared by commands that build a ProvisionerConfig."""
    options = [
        click.option(
            "--config", "config_path",
            type=click.Path(exists=True, dir_okay=False, path_type=Path),
            help="YAML config file",
        ),
        click.option("--username", help="Identity for the elevated task (default SYSTEM)"),
        click.option("--password", help="Password for the elevated identity"),
        click.option("--restart-timeout", help="Restart wait budget, e.g. 4h, 90m, 1h30m"),
        click.option("--feature", "features", multiple=True, help="Windows feature (repeatable)"),
        click.option("--capability", "capabilities", multiple=True, help="Windows capability (repeatable)"),
    ]
    for option in reversed(options):
        f = option(f)
    return f


def load_cli_config(config_path, username, password, restart_timeout, features, capabilities):
    from winfeature.config import load_config

    try:
        return load_config(
            config_path,
            **config_overrides(username, password, restart_timeout, features, capabilities),
        )
    except ConfigError as e:
        raise click.UsageError(f"Invalid configuration: {e}") from e


def build_communicator(
    host: Optional[str],
    port: int,
    ssh_user: Optional[str],
    ssh_password: Optional[str],
    ssh_key: Optional[Path],
    connect_timeout: float,
    local_root: Optional[Path],
    dry_run: bool,
):
    """Pick the execution channel the CLI options describe."""
    from winfeature.communicator import DryRunCommunicator, LocalCommunicator, SSHCommunicator

    if host and local_root:
        raise click.UsageError("--host and --local-root are mutually exclusive")
    if dry_run:
        return DryRunCommunicator()
    if host:
        return SSHCommunicator(
            host,
            port=port,
            username=ssh_user,
            password=ssh_password,
            key_filename=str(ssh_key) if ssh_key else None,
            connect_timeout=connect_timeout,
        )
    return LocalCommunicator(root=local_root)


@click.command()
@config_options
@click.option("--host", envvar="WINFEATURE_SSH_HOST", help="Remote Windows machine to provision over SSH")
@click.option("--port", envvar="WINFEATURE_SSH_PORT", type=int, default=22, show_default=True, help="SSH port")
@click.option("--ssh-user", envvar="WINFEATURE_SSH_USER", help="SSH login user")
@click.option("--ssh-password", envvar="WINFEATURE_SSH_PASSWORD", help="SSH login password")
@click.option(
    "--ssh-key",
    envvar="WINFEATURE_SSH_KEY",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="SSH private key file",
)
@click.option(
    "--connect-timeout",
    type=float,
    default=30.0,
    show_default=True,
    help="Seconds allowed for each SSH connection attempt",
)
@click.option(
    "--local-root",
    type=click.Path(file_okay=False, path_type=Path),
    help="Run locally, writing remote paths beneath this directory",
)
@click.option("--dry-run", is_flag=True, help="Record uploads and commands without executing them")
@click.option("--trace-console", is_flag=True, help="Print OTel spans to stdout")
@click.option("--no-color", is_flag=True, help="Disable colored output")
def provision(
    config_path: Optional[Path],
    username: Optional[str],
    password: Optional[str],
    restart_timeout: Optional[str],
    features: Tuple[str, ...],
    capabilities: Tuple[str, ...],
    host: Optional[str],
    port: int,
    ssh_user: Optional[str],
    ssh_password: Optional[str],
    ssh_key: Optional[Path],
    connect_timeout: float,
    local_root: Optional[Path],
    dry_run: bool,
    trace_console: bool,
    no_color: bool,
):
    """Install Windows features and capabilities, restarting until done.

    Without --host the machine winfeature runs on is the target, which
    cannot survive its own restart; use --host for real provisioning.

    Examples:
        winfeature provision --host 10.0.0.5 --ssh-user Administrator --ssh-key id_ed25519 --feature IIS-WebServer
        winfeature provision --config provision.yaml --dry-run
    """
    from winfeature.communicator import DryRunCommunicator
    from winfeature.config import format_duration
    from winfeature.provisioner import Provisioner
    from winfeature.retry import CancellationToken
    from winfeature.ui import ClickUi

    config = load_cli_config(
        config_path, username, password, restart_timeout, features, capabilities
    )
    communicator = build_communicator(
        host, port, ssh_user, ssh_password, ssh_key, connect_timeout, local_root, dry_run
    )
    if not config.features and not config.capabilities:
        click.echo("Warning: no features or capabilities configured", err=True)

    if trace_console:
        _configure_console_tracing()

    ui = ClickUi(color=not no_color)
    token = CancellationToken()

    def _cancel(signum, frame):
        ui.error("Cancellation requested; stopping at the next retry boundary...")
        token.cancel()

    previous = {sig: signal.signal(sig, _cancel) for sig in (signal.SIGINT, signal.SIGTERM)}

    kwargs: Dict[str, Any] = {"token": token}
    if isinstance(communicator, DryRunCommunicator):
        kwargs["retry_delay"] = 0.0

    ui.say(
        f"Provisioning {len(config.features)} feature(s) and "
        f"{len(config.capabilities)} capability(ies) as {config.username} "
        f"(restart timeout {format_duration(config.restart_timeout)})"
    )
    try:
        session = Provisioner(config, communicator, ui, **kwargs).provision()
    except ProvisioningError as e:
        raise click.ClickException(str(e)) from e
    finally:
        communicator.close()
        for sig, handler in previous.items():
            signal.signal(sig, handler)
        if trace_console:
            _flush_tracing()

    ui.say(
        f"Provisioning complete: {session.restarts} restart(s), "
        f"{session.commands_run} remote command(s)"
    )
    if dry_run:
        click.echo("\nDry run uploads:")
        for path, content in communicator.uploads.items():
            click.echo(f"  {path} ({len(content)} bytes)")
        click.echo("Dry run commands:")
        for command in communicator.commands:
            click.echo(f"  {command}")
