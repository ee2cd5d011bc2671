"""
Manages loading and validation of the optional INI configuration file.
"""

import configparser
import logging
import os
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from pg_archive.exceptions import ConfigurationError
from pg_archive.models.config import ArchiveConfig

log = logging.getLogger(__name__)

# Environment variables that override file values
ENV_OVERRIDES = {
    "PG_ARCHIVE_REGISTRY_URL": "registry_url",
    "PG_ARCHIVE_CACHE_DIR": "cache_dir",
    "GITHUB_TOKEN": "github_token",
}

_BOOL_KEYS = {"use_cache", "include_prerelease"}
_INT_KEYS = {"max_retries", "chunk_size", "strip_components"}
_FLOAT_KEYS = {"timeout", "connect_timeout", "read_timeout", "retry_base_delay"}


def get_config_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / "pg-archive"


class ConfigManager:
    """Handles all operations related to the INI config file."""

    def __init__(self, config_file_path: Path):
        self.config_file_path = config_file_path
        self._parser = configparser.ConfigParser()

    def load_config(self, cli_options: dict[str, Any] | None = None) -> ArchiveConfig:
        """
        Loads configuration from the INI file (if present), applies environment
        and CLI overrides, and validates it.

        Args:
            cli_options: A dictionary of options provided via the command line.

        Returns:
            A validated ArchiveConfig object.

        Raises:
            ConfigurationError: If the file cannot be parsed or validation fails.
        """
        settings: dict[str, Any] = {}
        if self.config_file_path.is_file():
            try:
                self._parser.read(self.config_file_path, encoding="utf-8")
            except configparser.Error as e:
                raise ConfigurationError(f"Error parsing configuration file: {e}") from e
            settings.update(self._get_config_as_dict())
        else:
            log.debug(f"No configuration file at '{self.config_file_path}', using defaults.")

        for env_var, key in ENV_OVERRIDES.items():
            value = os.getenv(env_var)
            if value:
                settings[key] = value

        if cli_options:
            settings.update({k: v for k, v in cli_options.items() if v is not None})

        try:
            return ArchiveConfig(**settings)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

    def save_new_config(self, settings: dict[str, Any]) -> None:
        """
        Creates and saves a complete configuration file.

        Args:
            settings: Values to store; unspecified keys get the model defaults.
        """
        try:
            defaults = ArchiveConfig(**settings)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

        config = configparser.ConfigParser()
        config["DEFAULT"] = {}
        for key in sorted(ArchiveConfig.get_ini_keys()):
            value = getattr(defaults, key)
            if key == "github_token" and value is None:
                continue
            if isinstance(value, bool):
                config["DEFAULT"][key] = "true" if value else "false"
            else:
                config["DEFAULT"][key] = str(value)

        try:
            self.config_file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file_path, "w", encoding="utf-8") as configfile:
                config.write(configfile)
        except OSError as e:
            raise ConfigurationError(f"Failed to save configuration file: {e}") from e

    def _get_config_as_dict(self) -> dict[str, Any]:
        """Reads the 'DEFAULT' section of the INI file into a dictionary."""
        section = self._parser["DEFAULT"]
        known = ArchiveConfig.get_ini_keys()
        values: dict[str, Any] = {}
        for key in section:
            if key not in known:
                log.warning(f"Ignoring unknown configuration key '{key}'.")
                continue
            try:
                if key in _BOOL_KEYS:
                    values[key] = section.getboolean(key)
                elif key in _INT_KEYS:
                    values[key] = section.getint(key)
                elif key in _FLOAT_KEYS:
                    values[key] = section.getfloat(key)
                else:
                    values[key] = section.get(key)
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for '{key}': {e}") from e
        return values
