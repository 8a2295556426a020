# Copyright (c) 2025 Game Server Manager Contributors

# This file is part of Game Server Manager.

# Game Server Manager is dual-licensed:

# 1. GNU Affero General Public License v3.0 (AGPL-3.0)
#    See LICENSE file for full terms

# 2. Commercial License
#    For proprietary use without AGPL requirements
#    Contact: the Game Server Manager maintainers

# SPDX-License-Identifier: AGPL-3.0-only OR Commercial

"""
Configuration module for Game Server Manager.

- servers.yml is MANDATORY (roster of managed servers + backup location)
- Discord bot token is REQUIRED (env var or Docker secret)
- Validation collects every problem and blocks startup via ConfigInvalid
- Docker secrets support: reads from /run/secrets/* and env vars
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, Any, List
import os
import re

import yaml
import structlog

from .exceptions import ConfigInvalid

logger = structlog.get_logger()

DEFAULT_COMMAND_PREFIX = "!sm"
DEFAULT_RUNNING_SET_FILE = "last_running_servers.json"


def _read_docker_secret(secret_name: str) -> Optional[str]:
    """
    Read a secret from Docker secrets location.

    Docker Swarm/Kubernetes mounts secrets at /run/secrets/{secret_name}.

    Args:
        secret_name: Name of the secret (e.g., 'discord_bot_token')

    Returns:
        Secret value or None if not found
    """
    secret_path = Path(f"/run/secrets/{secret_name}")

    if secret_path.exists():
        try:
            return secret_path.read_text().strip()
        except (IOError, OSError) as e:
            logger.warning("docker_secret_read_error", secret=secret_name, error=str(e))
            return None

    return None


def get_config_value(
    env_var: str,
    secret_name: Optional[str] = None,
    required: bool = False,
    default: Optional[str] = None,
) -> Optional[str]:
    """
    Get configuration value from Docker secrets or environment variables.

    Tries in order:
    1. Docker secret file at /run/secrets/{secret_name}
    2. Environment variable {env_var}
    3. Default value if provided
    4. Raise error if required and not found

    Args:
        env_var: Environment variable name (e.g., 'DISCORD_BOT_TOKEN')
        secret_name: Docker secret name. If not provided, uses env_var lowercased
        required: If True, raises ValueError when value not found
        default: Default value if not found in env or secrets

    Returns:
        Configuration value from secret, env var, or default

    Raises:
        ValueError: If required=True and value not found
    """
    if secret_name is None:
        secret_name = env_var.lower()

    secret_value = _read_docker_secret(secret_name)
    if secret_value is not None:
        logger.debug("config_value_loaded_from_secret", source="docker_secret", var=env_var)
        return secret_value

    env_value = os.getenv(env_var)
    if env_value is not None:
        logger.debug("config_value_loaded_from_env", source="environment", var=env_var)
        return env_value

    if default is not None:
        logger.debug("config_value_loaded_from_default", source="default", var=env_var)
        return default

    if required:
        raise ValueError(
            f"Required configuration value not found for '{env_var}'. "
            f"Checked: Docker secret '{secret_name}', environment variable '{env_var}'"
        )

    return None


def _safe_int(value: Any, field_name: str, default: int) -> int:
    """
    Safely convert value to int with proper type checking.

    Raises:
        ValueError: If conversion fails
    """
    if value is None:
        return default

    if isinstance(value, bool):
        raise ValueError(f"Cannot convert {field_name} to int: bool")

    if isinstance(value, int):
        return value

    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            raise ValueError(f"Invalid integer for {field_name}: {value}")

    raise ValueError(f"Cannot convert {field_name} to int: {type(value).__name__}")


def _safe_float(value: Any, field_name: str, default: float) -> float:
    """
    Safely convert value to float with proper type checking.

    Raises:
        ValueError: If conversion fails
    """
    if value is None:
        return default

    if isinstance(value, bool):
        raise ValueError(f"Cannot convert {field_name} to float: bool")

    if isinstance(value, (int, float)):
        return float(value)

    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            raise ValueError(f"Invalid float for {field_name}: {value}")

    raise ValueError(f"Cannot convert {field_name} to float: {type(value).__name__}")


def _safe_bool(value: Any, field_name: str, default: bool) -> bool:
    """Accept YAML booleans and the usual string spellings from env vars."""
    if value is None:
        return default

    if isinstance(value, bool):
        return value

    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False

    raise ValueError(f"Invalid boolean for {field_name}: {value!r}")


def _expand_env_vars(value: Any) -> Any:
    """
    Expand environment variables in a string.

    Supports ${VAR_NAME} syntax. Unknown variables are left untouched.
    """
    if not isinstance(value, str):
        return value

    def replace_var(match: Any) -> str:
        var_name = match.group(1)
        return os.getenv(var_name, match.group(0))

    return re.sub(r'\$\{([^}]+)\}', replace_var, value)


def _optional_path(value: Any) -> Optional[Path]:
    value = _expand_env_vars(value)
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return Path(value)


@dataclass(frozen=True)
class ServerConfig:
    """Static descriptor for one managed game server."""

    name: str
    """Unique server name. Matched case-insensitively in commands."""

    install_location: Optional[Path]
    """Working directory for the start and update commands."""

    save_directory: Optional[Path]
    """Directory archived by the backup command."""

    start_command: str = ""
    """Shell command that launches the server."""

    update_command: str = ""
    """Shell command that updates the server installation."""

    executable_name: str = ""
    """Process image name used to detect the running server (extension ignored)."""

    match_install_dir: bool = False
    """Only count processes whose executable lives under install_location."""

    @property
    def key(self) -> str:
        """Case-insensitive lookup key."""
        return self.name.casefold()

    def validate(self) -> List[str]:
        """Return every problem with this descriptor (empty list when valid)."""
        errors: List[str] = []
        label = self.name or "<unnamed>"

        if not self.name or not self.name.strip():
            errors.append("A server is missing a name.")
        if self.install_location is None:
            errors.append(f"Server '{label}' is missing install_location.")
        elif not self.install_location.is_dir():
            errors.append(
                f"install_location '{self.install_location}' for server '{label}' does not exist."
            )
        if self.save_directory is None:
            errors.append(f"Server '{label}' is missing save_directory.")
        elif not self.save_directory.is_dir():
            errors.append(
                f"save_directory '{self.save_directory}' for server '{label}' does not exist."
            )
        if not self.executable_name.strip():
            errors.append(f"Server '{label}' is missing executable_name.")
        if not self.start_command.strip():
            errors.append(f"Server '{label}' is missing start_command.")
        if not self.update_command.strip():
            errors.append(f"Server '{label}' is missing update_command.")

        return errors


@dataclass
class Config:
    """Main application configuration."""

    discord_bot_token: str
    """Discord bot token (required)."""

    servers: List[ServerConfig] = field(default_factory=list)
    """Roster of managed servers, in servers.yml order."""

    backup_location: Optional[Path] = None
    """Root directory receiving backup archives. Must exist."""

    command_prefix: str = DEFAULT_COMMAND_PREFIX
    """Control token every command must start with."""

    command_channel_id: Optional[int] = None
    """Only accept commands from this channel. None = any channel the bot can read."""

    auto_restart_servers_on_boot: bool = False
    """Restart servers recorded as running when the manager last stopped."""

    running_set_path: Path = field(default_factory=lambda: Path(DEFAULT_RUNNING_SET_FILE))
    """JSON file holding the names of servers believed running."""

    update_timeout: Optional[float] = 3600.0
    """Seconds before a hung update command is killed. None disables the timeout."""

    update_output_lines: int = 15
    """Size of the rolling window of update output shown in Discord."""

    restart_on_update_failure: bool = True
    """Restart after an update that exited non-zero (best effort policy)."""

    stop_wait_timeout: float = 10.0
    """Seconds to wait for killed processes to disappear."""

    shutdown_grace_period: float = 300.0
    """Seconds in-flight operations get to finish on shutdown."""

    health_check_enabled: bool = False
    """Serve the /health endpoint."""

    health_check_host: str = "0.0.0.0"
    health_check_port: int = 8080

    log_level: str = "info"
    """Logging level: debug, info, warning, error. Default: info"""

    log_format: str = "console"
    """Logging format: console or json. Default: console"""


def _parse_server(index: int, server_data: Any) -> ServerConfig:
    if not isinstance(server_data, dict):
        raise ConfigInvalid([f"servers[{index}] must be a mapping, got {type(server_data).__name__}"])

    def text(key: str) -> str:
        value = _expand_env_vars(server_data.get(key))
        return "" if value is None else str(value)

    return ServerConfig(
        name=text("name").strip(),
        install_location=_optional_path(server_data.get("install_location")),
        save_directory=_optional_path(server_data.get("save_directory")),
        start_command=text("start_command"),
        update_command=text("update_command"),
        executable_name=text("executable_name").strip(),
        match_install_dir=_safe_bool(
            server_data.get("match_install_dir"), f"servers[{index}].match_install_dir", False
        ),
    )


def load_config(config_dir: Optional[Path] = None) -> Config:
    """
    Load configuration from environment variables and servers.yml.

    Priority order for each value:
    1. Docker secret / environment variable (token, logging, health check)
    2. servers.yml YAML file
    3. Hardcoded defaults

    Returns:
        Populated Config object (not yet validated)

    Raises:
        FileNotFoundError: If servers.yml not found
        ConfigInvalid: If servers.yml is structurally wrong
        ValueError: If a required value is missing or malformed
        yaml.YAMLError: If servers.yml is invalid YAML
    """
    if config_dir is None:
        config_dir = Path(os.getenv("CONFIG_DIR", "."))
    servers_yml_path = Path(config_dir) / "servers.yml"

    logger.info("loading_config", path=str(servers_yml_path.resolve()))

    if not servers_yml_path.exists():
        raise FileNotFoundError(
            f"servers.yml not found at {servers_yml_path}. "
            f"A server roster is required."
        )

    with open(servers_yml_path, encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if not isinstance(data, dict) or "servers" not in data:
        raise ConfigInvalid(["servers.yml must contain a 'servers' list"])

    raw_servers = data.get("servers") or []
    if not isinstance(raw_servers, list):
        raise ConfigInvalid(
            [f"'servers' must be a list, got {type(raw_servers).__name__}"]
        )

    servers = [_parse_server(i, entry) for i, entry in enumerate(raw_servers)]

    discord_bot_token = get_config_value(
        env_var="DISCORD_BOT_TOKEN",
        secret_name="discord_bot_token",
        default=_expand_env_vars(data.get("discord_bot_token")) or None,
    )

    channel = data.get("command_channel_id")
    update_timeout = _safe_float(data.get("update_timeout"), "update_timeout", 3600.0)

    config = Config(
        discord_bot_token=discord_bot_token or "",
        servers=servers,
        backup_location=_optional_path(data.get("backup_location")),
        command_prefix=str(data.get("command_prefix") or DEFAULT_COMMAND_PREFIX),
        command_channel_id=_safe_int(channel, "command_channel_id", 0) or None,
        auto_restart_servers_on_boot=_safe_bool(
            data.get("auto_restart_servers_on_boot"), "auto_restart_servers_on_boot", False
        ),
        running_set_path=Path(
            _expand_env_vars(data.get("running_set_path")) or DEFAULT_RUNNING_SET_FILE
        ),
        update_timeout=update_timeout if update_timeout > 0 else None,
        update_output_lines=_safe_int(data.get("update_output_lines"), "update_output_lines", 15),
        restart_on_update_failure=_safe_bool(
            data.get("restart_on_update_failure"), "restart_on_update_failure", True
        ),
        stop_wait_timeout=_safe_float(data.get("stop_wait_timeout"), "stop_wait_timeout", 10.0),
        shutdown_grace_period=_safe_float(
            data.get("shutdown_grace_period"), "shutdown_grace_period", 300.0
        ),
        health_check_enabled=_safe_bool(
            get_config_value(env_var="HEALTH_CHECK_ENABLED", default="false"),
            "HEALTH_CHECK_ENABLED",
            False,
        ),
        health_check_host=get_config_value(env_var="HEALTH_CHECK_HOST", default="0.0.0.0") or "0.0.0.0",
        health_check_port=_safe_int(
            get_config_value(env_var="HEALTH_CHECK_PORT", default="8080"),
            "health_check_port",
            8080,
        ),
        log_level=get_config_value(env_var="LOG_LEVEL", default="info") or "info",
        log_format=get_config_value(env_var="LOG_FORMAT", default="console") or "console",
    )

    logger.info("config_loaded", servers=len(config.servers))
    return config


def collect_config_errors(config: Config) -> List[str]:
    """Return every validation problem in config."""
    errors: List[str] = []

    if not config.servers:
        errors.append("No servers are configured.")

    if config.backup_location is None:
        errors.append("backup_location is not set.")
    elif not config.backup_location.is_dir():
        errors.append(f"backup_location '{config.backup_location}' does not exist.")

    if not config.discord_bot_token:
        errors.append("DISCORD_BOT_TOKEN is not set.")

    if not config.command_prefix.strip() or len(config.command_prefix.split()) != 1:
        errors.append(f"command_prefix must be a single token, got '{config.command_prefix}'.")

    seen: Dict[str, str] = {}
    for server in config.servers:
        errors.extend(server.validate())
        if server.name:
            if server.key in seen:
                errors.append(f"Duplicate server name found: '{server.name}'")
            else:
                seen[server.key] = server.name

    if config.update_output_lines < 1:
        errors.append(f"update_output_lines must be >= 1, got {config.update_output_lines}.")
    if config.stop_wait_timeout < 0:
        errors.append(f"stop_wait_timeout must be >= 0, got {config.stop_wait_timeout}.")
    if config.shutdown_grace_period < 0:
        errors.append(f"shutdown_grace_period must be >= 0, got {config.shutdown_grace_period}.")
    if not 1 <= config.health_check_port <= 65535:
        errors.append(f"Invalid health_check_port: {config.health_check_port}. Must be 1-65535")

    valid_levels = {"debug", "info", "warning", "error", "critical"}
    if config.log_level.lower() not in valid_levels:
        errors.append(
            f"Invalid log_level '{config.log_level}'. Must be one of: {', '.join(sorted(valid_levels))}"
        )
    valid_formats = {"console", "json"}
    if config.log_format.lower() not in valid_formats:
        errors.append(
            f"Invalid log_format '{config.log_format}'. Must be one of: {', '.join(sorted(valid_formats))}"
        )

    return errors


def validate_config(config: Config) -> None:
    """
    Validate a Config object for completeness.

    Raises:
        ConfigInvalid: listing every problem found
    """
    errors = collect_config_errors(config)
    for error in errors:
        logger.error("config_validation_error", error=error)
    if errors:
        raise ConfigInvalid(errors)
    logger.info("config_validated", servers=len(config.servers))
