"""
Handles loading and validation of configuration settings.

This module is responsible for loading, merging, and validating configuration settings from:
1. The config.yaml file (primary configuration source)
2. Environment variables (for secrets and overrides)

It provides a unified configuration access mechanism through the get_config_value function,
ensures settings are validated against expected types and requirements, and makes the
configuration available throughout the application.

Key components:
- APP_CONFIG: The global configuration dictionary
- get_config_value: Function to retrieve values using dot notation
- validate_config: Validates configuration against expected structure and types
- load_app_config: Loads and merges configuration from all sources
"""

import json
import logging
import os
import sys
from typing import Any, Dict, Tuple

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Load environment variables from .env file first
load_dotenv()

APP_CONFIG: Dict[str, Any] = {}

__all__ = [
    "APP_CONFIG",
    "load_app_config",
    "get_config_value",
    "validate_config",
]

CONFIG_FILE_ENV_VAR = "PORTAL_CONFIG_FILE"

# --- Default values for YAML structure (helps with validation and access) ---
DEFAULT_CONFIG_STRUCTURE = {
    "portal_settings": {
        "app_name": "Class Portal",
        "log_file_name": "portal.log",
        "db_file_name": "portal.db",
        "debug_mode": False,
        "log_level": "INFO",
    },
    "backend": {
        "url": None,  # Empty means the local SQLite store is used
        "timeout_seconds": 10,
    },
    "codes": {
        "prefix": "TCP",
        "suffix_length": 6,
        "max_generation_attempts": 10,
        "allow_repeated_redemption": True,
        "require_approved_application": False,
        "expire_after_last_session": False,
        "expiry_grace_hours": 24,
    },
    "email": {
        "from_address": "Class Portal <noreply@classportal.dev>",
        "templates_file": "message_templates.json",
        "portal_url": "http://localhost:3000",
        "resend_api_key": None,  # Secret
    },
    "admin": {
        "password": None,  # Secret
    },
    "storage": {
        "blob_dir": "uploads",
        "public_base_url": "http://localhost:8000/uploads",
    },
    "server": {
        "host": "127.0.0.1",
        "port": 8000,
    },
}

# (type, is_required, default_value)
EXPECTED_CONFIG: Dict[str, Tuple[type, bool, Any]] = {
    "portal_settings.app_name": (str, False, "Class Portal"),
    "portal_settings.log_file_name": (str, False, "portal.log"),
    "portal_settings.db_file_name": (str, False, "portal.db"),
    "portal_settings.debug_mode": (bool, False, False),
    "portal_settings.log_level": (str, False, "INFO"),
    "backend.url": (str, False, None),
    "backend.timeout_seconds": (int, False, 10),
    "codes.prefix": (str, False, "TCP"),
    "codes.suffix_length": (int, False, 6),
    "codes.max_generation_attempts": (int, False, 10),
    "codes.allow_repeated_redemption": (bool, False, True),
    "codes.require_approved_application": (bool, False, False),
    "codes.expire_after_last_session": (bool, False, False),
    "codes.expiry_grace_hours": (int, False, 24),
    "email.from_address": (str, False, None),
    "email.templates_file": (str, False, "message_templates.json"),
    "email.portal_url": (str, False, None),
    "email.resend_api_key": (str, False, None),
    "admin.password": (str, True, None),
    "storage.blob_dir": (str, False, "uploads"),
    "storage.public_base_url": (str, False, None),
    "server.host": (str, False, "127.0.0.1"),
    "server.port": (int, False, 8000),
}

# Secrets and commonly used overrides with conventional names
ENV_VAR_ALIASES = {
    ("backend", "url"): "PORTAL_BACKEND_URL",
    ("admin", "password"): "PORTAL_ADMIN_PASSWORD",
    ("email", "resend_api_key"): "RESEND_API_KEY",
    ("portal_settings", "db_file_name"): "PORTAL_DB_FILE",
}


def _load_yaml_config(path: str) -> Dict[str, Any]:
    """Loads configuration from a YAML file."""
    try:
        if os.path.exists(path):
            with open(path, "r") as f:
                yaml_config = yaml.safe_load(f)
                logger.info(f"Successfully loaded configuration from {path}")
                return yaml_config or {}
        else:
            logger.warning(
                f"YAML configuration file not found at {path}. "
                "Using defaults and environment variables."
            )
            return {}
    except yaml.YAMLError as e:
        logger.error(f"Error parsing YAML configuration file {path}: {e}")
        sys.exit(f"Critical error: Could not parse {path}. Please check its syntax.")


def _get_typed_env_var(key: str, default_value: Any, expected_type: type) -> Any:
    """Gets an environment variable and attempts to cast it to the expected type."""
    value = os.getenv(key)
    if value is None:
        return default_value

    try:
        if expected_type is bool:
            return value.lower() in ("true", "1", "t", "yes", "y")
        if expected_type is int:
            return int(value)
        if expected_type is list:
            return [item.strip() for item in value.split(",") if item.strip()]
        if expected_type is dict:
            return json.loads(value)
        return expected_type(value)
    except (ValueError, json.JSONDecodeError):
        logger.warning(
            f"Could not cast environment variable {key}='{value}' to {expected_type}. Using default: {default_value}"
        )
        return default_value


def _merge_configs(
    yaml_config: Dict[str, Any], defaults: Dict[str, Any]
) -> Dict[str, Any]:
    """Merges YAML config with the default structure, section by section."""
    merged_config = {}

    for section, section_defaults in defaults.items():
        merged_config[section] = section_defaults.copy()
        yaml_section = yaml_config.get(section, {})

        if isinstance(yaml_section, dict):
            for key, default_val in section_defaults.items():
                merged_config[section][key] = yaml_section.get(key, default_val)
        elif yaml_section is not None:
            logger.warning(
                f"Config section '{section}' should be a mapping, got {type(yaml_section).__name__}. Using defaults."
            )

    return merged_config


def _apply_env_vars_to_merged_config(
    config_dict: Dict[str, Any], defaults: Dict[str, Any]
) -> None:
    """Applies environment variables to the config_dict based on default structure.
    Environment variables are expected to be in format SECTION_KEY=value (e.g., CODES_PREFIX=ABC).
    Secrets use the names in ENV_VAR_ALIASES (e.g., PORTAL_ADMIN_PASSWORD).
    """
    for section_name, section_defaults in defaults.items():
        for key_name, default_value in section_defaults.items():
            env_var_key = ENV_VAR_ALIASES.get(
                (section_name, key_name), f"{section_name.upper()}_{key_name.upper()}"
            )
            if os.getenv(env_var_key) is None:
                continue

            expected_type = type(default_value) if default_value is not None else str
            current_val_in_config = config_dict[section_name].get(key_name, default_value)
            env_val = _get_typed_env_var(env_var_key, current_val_in_config, expected_type)
            config_dict[section_name][key_name] = env_val
            logger.debug(
                f"Applied environment variable '{env_var_key}' to '{section_name}.{key_name}'"
            )


def load_app_config() -> Dict[str, Any]:
    """
    Load application configuration from YAML and environment variables.

    The YAML path is config.yaml in the working directory unless PORTAL_CONFIG_FILE
    points elsewhere. Priority order: defaults, then YAML, then environment variables.

    Returns:
        Dict[str, Any]: The loaded configuration dictionary
    """
    global APP_CONFIG

    yaml_config = _load_yaml_config(os.getenv(CONFIG_FILE_ENV_VAR, "config.yaml"))
    merged_config = _merge_configs(yaml_config, DEFAULT_CONFIG_STRUCTURE)
    _apply_env_vars_to_merged_config(merged_config, DEFAULT_CONFIG_STRUCTURE)

    APP_CONFIG = merged_config

    logger.debug(f"Configuration loaded with {len(APP_CONFIG)} top-level keys.")
    return APP_CONFIG


# Load configuration when this module is imported
load_app_config()


def get_config_value(path: str, default: Any = None) -> Any:
    """
    Retrieves a configuration value using dot notation path.

    Args:
        path: Dot-notation path to the configuration value (e.g., 'codes.prefix')
        default: Value to return if the path is not found or the value is unset

    Returns:
        The configuration value at the specified path, or the default if not found

    Examples:
        >>> get_config_value('codes.prefix', 'XYZ')
        'TCP'
        >>> get_config_value('nonexistent.path', 'fallback')
        'fallback'
    """
    if not APP_CONFIG:
        load_app_config()

    current: Any = APP_CONFIG
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return default
    return default if current is None else current


def validate_config() -> None:
    """
    Validates the loaded configuration against expected types and requirements.

    Raises:
        SystemExit: If a critical configuration error is found
    """
    logger.info("Validating configuration...")
    valid = True

    for key, (p_type, is_required, _default) in EXPECTED_CONFIG.items():
        val = get_config_value(key)

        if val is None or val == "":
            if is_required:
                logger.critical(
                    f"Config Error: Required key '{key}' is missing or not set."
                )
                valid = False
            continue

        # bool is a subclass of int, so it has to be excluded explicitly
        if p_type is int and (isinstance(val, bool) or not isinstance(val, int)):
            type_valid = False
        else:
            type_valid = isinstance(val, p_type)

        if not type_valid:
            logger.critical(
                f"Config Error: Key '{key}' (value: '{val}', type: {type(val).__name__}) must be of type {p_type.__name__}."
            )
            valid = False
            continue

        if key == "portal_settings.log_level":
            if val.upper() not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
                logger.critical(
                    f"Config Error: '{key}' (value: {val}) must be one of DEBUG, INFO, WARNING, ERROR, CRITICAL."
                )
                valid = False

        elif key == "codes.prefix":
            if not (val.isalnum() and val.isupper()):
                logger.critical(
                    f"Config Error: '{key}' (value: {val}) must be uppercase alphanumeric."
                )
                valid = False

        elif key in [
            "codes.suffix_length",
            "codes.max_generation_attempts",
            "backend.timeout_seconds",
            "server.port",
        ]:
            if val <= 0:
                logger.critical(
                    f"Config Error: Key '{key}' (value: {val}) must be a positive integer."
                )
                valid = False

        elif key == "codes.expiry_grace_hours":
            if val < 0:
                logger.critical(
                    f"Config Error: Key '{key}' (value: {val}) must be a non-negative integer."
                )
                valid = False

        elif key.endswith("url"):
            if not (val.startswith("http://") or val.startswith("https://")):
                logger.warning(
                    f"Config Warning: Key '{key}' (value: {val}) does not appear to be a valid HTTP/HTTPS URL."
                )

    if not valid:
        logger.critical(
            "Configuration validation failed. Please check your config.yaml and .env files."
        )
        sys.exit(1)
    logger.info("Configuration validated successfully.")
