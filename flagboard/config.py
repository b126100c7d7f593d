"""
Configuration management for the flagboard portal.
Supports both JSON file configuration and environment variable overrides.
"""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

TIE_BREAKS = ("earliest_solve", "insertion")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class FlagboardConfig:
    """Configuration management for the flagboard portal."""

    DEFAULT_CONFIG = {
        "portal_name": "Flagboard",
        "scoring": {
            "allow_event_claims": True,  # replay a known flag into an event
            "require_registration": False,
        },
        "leaderboard": {
            "max_entries": 100,
            "tie_break": "earliest_solve",  # earliest_solve or insertion
        },
        "storage": {
            "db_path": "flagboard.db",
            "busy_timeout": 5.0,
        },
        "server": {
            "host": "0.0.0.0",
            "web_port": 8081,
            "socket_port": 8080,
        },
        "logging": {
            "level": "INFO",
        },
    }

    def __init__(
        self,
        config_path: Optional[str] = "flagboard_config.json",
        create_default: bool = True,
    ) -> None:
        """
        Initialize configuration from file, environment variables, or defaults.

        @param config_path: JSON file to load; None skips the file entirely
        @param create_default: Write the defaults when the file is missing
        """
        self.config_path = Path(config_path) if config_path else None
        self.create_default = create_default
        self.config = self._load_config()
        self._apply_env_overrides()
        self._validate_config()

    def _defaults(self) -> Dict[str, Any]:
        return copy.deepcopy(self.DEFAULT_CONFIG)

    def _load_config(self) -> Dict[str, Any]:
        """
        Load configuration from JSON file or create default.

        @return: Dictionary containing the loaded configuration
        """
        if self.config_path is None:
            return self._defaults()

        if self.config_path.exists():
            try:
                with open(self.config_path, "r", encoding="utf-8") as f:
                    loaded_config = json.load(f)

                # Merge with defaults to ensure all keys exist
                config = self._defaults()
                self._deep_merge(config, loaded_config)
                return config

            except (json.JSONDecodeError, IOError) as e:
                logger.warning(
                    "Error loading config from %s: %s; using default configuration",
                    self.config_path,
                    e,
                )
                return self._defaults()

        if self.create_default:
            self._create_default_config()
        return self._defaults()

    def _deep_merge(
        self,
        base_dict: Dict[str, Any],
        update_dict: Dict[str, Any],
    ) -> None:
        """
        Recursively merge dictionaries.

        @param base_dict: Base dictionary to merge into
        @param update_dict: Dictionary with updates to merge
        """
        for key, value in update_dict.items():
            if (
                key in base_dict
                and isinstance(base_dict[key], dict)
                and isinstance(value, dict)
            ):
                self._deep_merge(base_dict[key], value)
            else:
                base_dict[key] = value

    def _apply_env_overrides(self) -> None:
        """
        Apply environment variable overrides to configuration.

        Environment variables follow the pattern: SECTION_KEY (e.g., PORTAL_NAME, TIE_BREAK)
        """
        env_mappings = {
            "PORTAL_NAME": ("portal_name",),

            # Scoring
            "ALLOW_EVENT_CLAIMS": ("scoring", "allow_event_claims"),
            "REQUIRE_REGISTRATION": ("scoring", "require_registration"),

            # Leaderboard
            "MAX_LEADERBOARD_ENTRIES": ("leaderboard", "max_entries"),
            "TIE_BREAK": ("leaderboard", "tie_break"),

            # Storage
            "DB_PATH": ("storage", "db_path"),
            "DB_BUSY_TIMEOUT": ("storage", "busy_timeout"),

            # Servers
            "HOST": ("server", "host"),
            "WEB_PORT": ("server", "web_port"),
            "SOCKET_PORT": ("server", "socket_port"),

            "LOG_LEVEL": ("logging", "level"),
        }

        for env_var, config_path in env_mappings.items():
            env_value = os.getenv(env_var)
            if env_value is not None:
                converted_value = self._convert_env_value(env_value)
                self._set_nested_config(config_path, converted_value)

    def _convert_env_value(self, value: str) -> Any:
        """
        Convert environment variable string to appropriate type.

        @param value: String value from environment variable
        @return: Converted value (bool, int, float or string)
        """
        if value.lower() in ("true", "yes", "on"):
            return True
        elif value.lower() in ("false", "no", "off"):
            return False

        try:
            return int(value)
        except ValueError:
            pass

        try:
            return float(value)
        except ValueError:
            pass

        return value

    def _set_nested_config(self, path: tuple, value: Any) -> None:
        """
        Set a nested configuration value using a path tuple.

        @param path: Tuple representing the nested path (e.g., ("leaderboard", "tie_break"))
        @param value: Value to set
        """
        current = self.config
        for key in path[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]
        current[path[-1]] = value

    def _create_default_config(self) -> None:
        """
        Create a default configuration file.

        Writes the default configuration to the configured file path.
        """
        try:
            with open(self.config_path, "w", encoding="utf-8") as f:
                json.dump(self.DEFAULT_CONFIG, f, indent=2)
            logger.info("Created default configuration file: %s", self.config_path)
        except IOError as e:
            logger.warning("Could not create config file %s: %s", self.config_path, e)

    def _validate_config(self) -> None:
        """
        Validate configuration values.

        Checks configuration values for validity and sets defaults for invalid values.
        """
        if self.config["leaderboard"]["tie_break"] not in TIE_BREAKS:
            logger.warning("Invalid tie_break, using 'earliest_solve'")
            self.config["leaderboard"]["tie_break"] = "earliest_solve"

        max_entries = self.config["leaderboard"]["max_entries"]
        if not isinstance(max_entries, int) or max_entries <= 0:
            logger.warning("Invalid max_entries, using 100")
            self.config["leaderboard"]["max_entries"] = 100

        busy_timeout = self.config["storage"]["busy_timeout"]
        if not isinstance(busy_timeout, (int, float)) or busy_timeout <= 0:
            logger.warning("Invalid busy_timeout, using 5.0")
            self.config["storage"]["busy_timeout"] = 5.0

        level = str(self.config["logging"]["level"]).upper()
        if level not in LOG_LEVELS:
            logger.warning("Invalid logging level, using 'INFO'")
            level = "INFO"
        self.config["logging"]["level"] = level

        for flag in ("allow_event_claims", "require_registration"):
            if not isinstance(self.config["scoring"][flag], bool):
                logger.warning("Invalid scoring.%s, using default", flag)
                self.config["scoring"][flag] = self.DEFAULT_CONFIG["scoring"][flag]

    def get(
        self,
        *keys: str,
    ) -> Any:
        """
        Get nested configuration value.

        @param keys: Variable arguments representing nested keys to traverse
        @return: Configuration value at the specified path, None if not found
        """
        value = self.config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return None
        return value

    def is_enabled(
        self,
        *keys: str,
    ) -> bool:
        """
        Check if a boolean setting is switched on.

        @param keys: Path to the setting (e.g. "scoring", "allow_event_claims")
        @return: True if the setting is exactly True
        """
        return self.get(*keys) is True

    def save_config(self) -> bool:
        """
        Save current configuration to file.

        @return: True if saved successfully, False on error
        """
        if self.config_path is None:
            return False
        try:
            with open(self.config_path, "w", encoding="utf-8") as f:
                json.dump(self.config, f, indent=2)
            return True
        except IOError as e:
            logger.warning("Could not save config file %s: %s", self.config_path, e)
            return False
