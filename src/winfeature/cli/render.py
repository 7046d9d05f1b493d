"""winfeature CLI - inspect rendered artifacts and the config schema."""

import json
from pathlib import Path
from typing import Optional, Tuple

import click

from .provision import config_options, load_cli_config

ARTIFACTS = ("elevated", "pending-reboot", "payload", "install-command", "check-command")


@click.command()
@click.argument("artifact", type=click.Choice(ARTIFACTS))
@config_options
@click.option("--show-password", is_flag=True, help="Do not mask the password in wrapper scripts")
def render(
    artifact: str,
    config_path: Optional[Path],
    username: Optional[str],
    password: Optional[str],
    restart_timeout: Optional[str],
    features: Tuple[str, ...],
    capabilities: Tuple[str, ...],
    show_password: bool,
):
    """Print a rendered remote artifact.

    \b
    elevated         install wrapper script
    pending-reboot   pending-reboot check wrapper script
    payload          feature installation script
    install-command  encoded install command line
    check-command    encoded pending-reboot check command line
    """
    from winfeature.contracts.timeouts import (
        PENDING_REBOOT_TASK_DESCRIPTION,
        PENDING_REBOOT_TASK_NAME_PREFIX,
        TASK_DESCRIPTION,
        TASK_NAME_PREFIX,
    )
    from winfeature.errors import TemplateError
    from winfeature.scripts import (
        WINDOWS_FEATURE_SCRIPT,
        ElevatedOptions,
        new_task_name,
        pending_reboot_check_command,
        read_script,
        render_elevated,
        windows_feature_command,
    )

    config = load_cli_config(
        config_path, username, password, restart_timeout, features, capabilities
    )
    install_command = windows_feature_command(config.features, config.capabilities)

    if artifact == "install-command":
        click.echo(install_command)
        return
    if artifact == "check-command":
        click.echo(pending_reboot_check_command())
        return

    try:
        if artifact == "payload":
            click.echo(read_script(WINDOWS_FEATURE_SCRIPT), nl=False)
            return

        if artifact == "elevated":
            prefix, description, command = TASK_NAME_PREFIX, TASK_DESCRIPTION, install_command
        else:
            prefix, description, command = (
                PENDING_REBOOT_TASK_NAME_PREFIX,
                PENDING_REBOOT_TASK_DESCRIPTION,
                pending_reboot_check_command(),
            )
        shown_password = config.password
        if config.password and not show_password:
            shown_password = "********"
        click.echo(
            render_elevated(ElevatedOptions(
                username=config.username,
                password=shown_password,
                task_name=new_task_name(prefix),
                task_description=description,
                command=command,
            )),
            nl=False,
        )
    except TemplateError as e:
        raise click.ClickException(str(e)) from e


@click.command()
def config_schema():
    """Print the JSON schema of the provisioner configuration."""
    from winfeature.config import ProvisionerConfig

    click.echo(json.dumps(ProvisionerConfig.model_json_schema(), indent=2))
