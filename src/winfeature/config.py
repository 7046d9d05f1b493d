"""
Configuration for winfeature provisioning runs.

Uses Pydantic BaseSettings for environment variable integration and
validation. A config is built once per run and is immutable afterwards.

Configuration sources (in order of precedence):
1. Explicit arguments (``prepare`` raws, CLI options)
2. Environment variables (WINFEATURE_*)
3. .env file
4. Default values

Example:
    from winfeature.config import load_config, prepare

    config = prepare({"features": ["IIS-WebServer"], "restart_timeout": "30m"})
    config = load_config("provision.yaml", username="Administrator")
"""

from __future__ import annotations

import re
from datetime import timedelta
from pathlib import Path
from typing import Annotated, Any, List, Literal, Mapping, Optional, Union

import yaml
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from winfeature.contracts.timeouts import DEFAULT_RESTART_TIMEOUT_S
from winfeature.errors import ConfigError

DEFAULT_USERNAME = "SYSTEM"
DEFAULT_RESTART_TIMEOUT = timedelta(seconds=DEFAULT_RESTART_TIMEOUT_S)

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ms|h|m|s)")
_DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}
_PLAIN_SECONDS = re.compile(r"\d+(?:\.\d*)?|\.\d+")


def parse_duration(value: Union[str, int, float, timedelta]) -> timedelta:
    """
    Parse a duration.

    Accepts a ``timedelta``, a number of seconds, or a string such as
    ``"4h"``, ``"1h30m"``, ``"90s"``, ``"250ms"`` or ``"300"``.

    Raises:
        ValueError: If the string is not a valid duration.
    """
    if isinstance(value, timedelta):
        return value
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)

    text = str(value).strip().lower()
    if not text:
        raise ValueError("empty duration")
    if _PLAIN_SECONDS.fullmatch(text):
        return timedelta(seconds=float(text))

    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text) or pos == 0:
        raise ValueError(f"invalid duration {value!r}")
    return timedelta(seconds=total)


def format_duration(value: timedelta) -> str:
    seconds = int(value.total_seconds())
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if secs or not parts:
        parts.append(f"{secs}s")
    return "".join(parts)


class ProvisionerConfig(BaseSettings):
    """
    Settings for one provisioning run.

    All settings can be overridden via environment variables prefixed with
    WINFEATURE_. List settings accept comma-separated values there.

    Example:
        export WINFEATURE_USERNAME=Administrator
        export WINFEATURE_FEATURES=IIS-WebServer,Microsoft-Hyper-V
        export WINFEATURE_RESTART_TIMEOUT=1h30m
    """

    model_config = SettingsConfigDict(
        env_prefix="WINFEATURE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Instructs the communicator to run the remote script as a Windows
    # scheduled task under this identity.
    username: str = Field(
        default=DEFAULT_USERNAME,
        description="Identity the elevated scheduled task runs as",
    )
    password: str = Field(
        default="",
        description="Password for the elevated identity (empty for service accounts)",
    )
    restart_timeout: timedelta = Field(
        default=DEFAULT_RESTART_TIMEOUT,
        description="How long to wait for the machine to come back after a restart",
    )
    features: Annotated[List[str], NoDecode] = Field(
        default_factory=list,
        description="Windows optional features to install, in order",
    )
    capabilities: Annotated[List[str], NoDecode] = Field(
        default_factory=list,
        description="Windows capabilities to install, in order",
    )

    # Logging
    log_level: Literal["debug", "info", "warning", "error"] = Field(
        default="info",
        description="Logging level for winfeature",
    )
    log_format: Literal["json", "text"] = Field(
        default="text",
        description="Log output format",
    )

    @field_validator("username", mode="after")
    @classmethod
    def default_username(cls, v: str) -> str:
        """Empty usernames fall back to SYSTEM."""
        return v if v.strip() else DEFAULT_USERNAME

    @field_validator("restart_timeout", mode="before")
    @classmethod
    def parse_restart_timeout(cls, v: Any) -> Any:
        if v is None:
            return DEFAULT_RESTART_TIMEOUT
        if isinstance(v, str):
            try:
                return parse_duration(v)
            except ValueError:
                # ISO 8601 and [-][DD ]HH:MM:SS are left to pydantic
                return v
        return v

    @field_validator("restart_timeout", mode="after")
    @classmethod
    def default_restart_timeout(cls, v: timedelta) -> timedelta:
        """A zero timeout means the default of four hours."""
        if v < timedelta(0):
            raise ValueError("restart_timeout must not be negative")
        if v == timedelta(0):
            return DEFAULT_RESTART_TIMEOUT
        return v

    @field_validator("features", "capabilities", mode="before")
    @classmethod
    def split_list(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @field_validator("features", "capabilities", mode="after")
    @classmethod
    def reject_blank_names(cls, v: List[str]) -> List[str]:
        for item in v:
            if not item.strip():
                raise ValueError("names must not be blank")
        return v

    @property
    def restart_timeout_s(self) -> float:
        return self.restart_timeout.total_seconds()

    def describe(self) -> dict[str, Any]:
        """Config summary safe for logging (password redacted)."""
        return {
            "username": self.username,
            "password": "***" if self.password else "",
            "restart_timeout": format_duration(self.restart_timeout),
            "features": list(self.features),
            "capabilities": list(self.capabilities),
        }


def _format_validation_error(exc: ValidationError) -> List[str]:
    problems = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ())) or "config"
        problems.append(f"{loc}: {err.get('msg', 'invalid value')}")
    return problems


def prepare(*raws: Optional[Mapping[str, Any]]) -> ProvisionerConfig:
    """
    Merge raw config mappings (later ones win) into a validated config.

    Keys whose value is None are ignored so unset CLI options do not mask
    file or environment values.

    Raises:
        ConfigError: With every validation problem found.
    """
    merged: dict[str, Any] = {}
    for raw in raws:
        if not raw:
            continue
        if not isinstance(raw, Mapping):
            raise ConfigError([f"expected a mapping, got {type(raw).__name__}"])
        merged.update({k: v for k, v in raw.items() if v is not None})

    try:
        return ProvisionerConfig(**merged)
    except ValidationError as e:
        raise ConfigError(_format_validation_error(e)) from e


def load_config(path: Optional[Union[str, Path]] = None, **overrides: Any) -> ProvisionerConfig:
    """Load a YAML config file (optional) and apply ``overrides`` on top."""
    data: Any = {}
    if path is not None:
        path = Path(path)
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except FileNotFoundError as e:
            raise ConfigError([f"config file not found: {path}"]) from e
        except yaml.YAMLError as e:
            raise ConfigError([f"invalid YAML in {path}: {e}"]) from e
    return prepare(data, overrides)


# Global singleton
_config: Optional[ProvisionerConfig] = None


def get_config(**overrides: Any) -> ProvisionerConfig:
    """
    Get the process-wide configuration.

    Creates it on first call; overrides rebuild it.
    """
    global _config

    if overrides or _config is None:
        _config = prepare(overrides)

    return _config


def reset_config() -> None:
    """Reset the global configuration (for testing)."""
    global _config
    _config = None
