"""
winfeature CLI - Install Windows features and drive the reboot cycle.

Commands:
    winfeature provision      Install features/capabilities, restarting as needed
    winfeature render         Print a rendered remote artifact
    winfeature config-schema  Print the JSON schema of the configuration
"""

import json
import logging
import sys
from typing import Optional

import click

from winfeature.version import plugin_version, startup_banner

from .provision import provision
from .render import config_schema, render

logger = logging.getLogger(__name__)


class JsonFormatter(logging.Formatter):
    """One JSON object per log record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S%z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_logging(level: str = "info", log_format: str = "text") -> None:
    """Configure the ``winfeature`` logger hierarchy for CLI use."""
    root = logging.getLogger("winfeature")
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in list(root.handlers):
        if getattr(handler, "_winfeature_cli", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler._winfeature_cli = True  # type: ignore[attr-defined]
    if log_format == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
    root.addHandler(handler)


@click.group()
@click.version_option(version=plugin_version(), prog_name="winfeature")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"]),
    default=None,
    help="Logging level (default from WINFEATURE_LOG_LEVEL or info)",
)
@click.option(
    "--log-format",
    type=click.Choice(["json", "text"]),
    default=None,
    help="Log output format (default from WINFEATURE_LOG_FORMAT or text)",
)
def main(log_level: Optional[str], log_format: Optional[str]):
    """winfeature - Windows feature installation with reboot handling."""
    from winfeature.config import get_config
    from winfeature.errors import ConfigError

    try:
        config = get_config()
        log_level = log_level or config.log_level
        log_format = log_format or config.log_format
    except ConfigError:
        # Reported with context by the subcommand that loads the full config.
        log_level = log_level or "info"
        log_format = log_format or "text"

    configure_logging(log_level, log_format)
    logger.debug(startup_banner())


main.add_command(provision)
main.add_command(render)
main.add_command(config_schema, name="config-schema")


if __name__ == "__main__":
    main()
