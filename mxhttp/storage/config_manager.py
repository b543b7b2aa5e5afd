"""
Manages loading and saving of the INI client configuration file.
"""

import configparser
import logging
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from mxhttp.exceptions import ConfigurationError
from mxhttp.models.config import ClientConfig

log = logging.getLogger(__name__)

SECTION = "client"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / "mxhttp" / "config.ini"


class ConfigManager:
    """
    Handles all operations related to the client's INI config file.

    Values are kept as strings and coerced by ClientConfig. ``root_certs`` is
    comma-separated and ``headers`` holds one ``Name: value`` per line.
    """

    def __init__(self, config_file_path: Path = DEFAULT_CONFIG_PATH):
        self.config_file_path = Path(config_file_path)
        self._parser = configparser.ConfigParser(interpolation=None)

    def load_config(self, cli_options: Optional[dict[str, Any]] = None) -> ClientConfig:
        """
        Loads configuration from the INI file, applies CLI overrides, and validates it.

        Args:
            cli_options: Options provided via the command line. None values are ignored.

        Returns:
            A validated ClientConfig object.

        Raises:
            ConfigurationError: If the config file is missing, invalid, or validation
            fails.
        """
        if not self.config_file_path.is_file():
            raise ConfigurationError(
                f"Configuration file not found at '{self.config_file_path}'. "
                "Please run 'mxhttp init' first.",
                op="ConfigManager.load",
            )

        try:
            self._parser.read(self.config_file_path, encoding="utf-8")
        except configparser.Error as e:
            raise ConfigurationError(f"Error parsing configuration file: {e}", op="ConfigManager.load") from e

        if not self._parser.has_section(SECTION):
            raise ConfigurationError(
                f"Missing [{SECTION}] section in '{self.config_file_path}'.", op="ConfigManager.load"
            )

        settings = self._get_config_as_dict()
        unknown = sorted(set(settings) - ClientConfig.get_ini_keys())
        if unknown:
            log.warning(f"[yellow]Ignoring unknown configuration keys: {', '.join(unknown)}[/yellow]")
            for key in unknown:
                settings.pop(key)

        if cli_options:
            settings.update({k: v for k, v in cli_options.items() if v is not None})

        try:
            return ClientConfig(**settings)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}", op="ConfigManager.load") from e

    def save_new_config(self, settings: Optional[dict[str, Any]] = None) -> Path:
        """
        Creates and saves a new configuration file, filling unset keys with defaults.

        Raises:
            ConfigurationError: If settings are invalid or the file cannot be written.
        """
        try:
            config = ClientConfig(**(settings or {}))
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}", op="ConfigManager.save") from e

        parser = configparser.ConfigParser(interpolation=None)
        parser[SECTION] = {}
        section = parser[SECTION]
        for key in sorted(ClientConfig.get_ini_keys()):
            value = getattr(config, key)
            if isinstance(value, bool):
                section[key] = "true" if value else "false"
            elif isinstance(value, list):
                section[key] = ",".join(map(str, value))
            elif isinstance(value, dict):
                section[key] = "".join(f"\n{k}: {v}" for k, v in value.items())
            elif value is not None:
                section[key] = str(value)
            else:
                section[key] = ""

        try:
            self.config_file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file_path, "w", encoding="utf-8") as configfile:
                parser.write(configfile)
        except OSError as e:
            raise ConfigurationError(f"Failed to save configuration file: {e}", op="ConfigManager.save") from e
        log.debug(f"Wrote configuration to {self.config_file_path}")
        return self.config_file_path

    def _get_config_as_dict(self) -> dict[str, Any]:
        """Reads the [client] section into a dictionary, skipping empty values."""
        section = self._parser[SECTION]
        settings: dict[str, Any] = {}
        for key, raw in section.items():
            value = raw.strip()
            if not value:
                continue
            if key == "root_certs":
                settings[key] = [s.strip() for s in value.split(",") if s.strip()]
            elif key == "headers":
                headers = {}
                for line in value.splitlines():
                    name, sep, header_value = line.partition(":")
                    if not sep or not name.strip():
                        raise ConfigurationError(
                            f"Invalid header line '{line}', expected 'Name: value'.",
                            op="ConfigManager.load",
                        )
                    headers[name.strip()] = header_value.strip()
                settings[key] = headers
            else:
                settings[key] = value
        return settings
