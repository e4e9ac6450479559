"""Configuration management for GASP."""

import logging
import os
import tomllib

from pathlib import Path
from typing import Any

import tomli_w

logger = logging.getLogger(__name__)

CONFIG_SECTIONS = ("clustering", "false_negatives", "worker", "logging")


def get_config_path() -> Path:
    """
    Get the path to the configuration file.

    Returns:
        Path to ~/.gasp/config.toml
    """
    return Path.home() / ".gasp" / "config.toml"


def load_config() -> dict[str, Any]:
    """
    Load configuration from TOML file.

    Returns:
        Configuration dictionary. Returns empty dict if file doesn't exist
        or is corrupted.
    """
    config_path = get_config_path()

    if not config_path.exists():
        return {}

    try:
        with open(config_path, "rb") as f:
            return tomllib.load(f)
    except Exception as e:
        logger.warning(f"Failed to load config from {config_path}: {e}")
        logger.warning("Treating config as empty. Fix or delete the file to resolve.")
        return {}


def save_config(config: dict[str, Any]) -> None:
    """
    Save configuration to TOML file using atomic write.

    Creates the parent directory if it doesn't exist.
    Uses temp file + rename for atomic operation.

    Args:
        config: Configuration dictionary to save

    Raises:
        PermissionError: If directory cannot be created or file cannot be written
    """
    config_path = get_config_path()

    config_dir = config_path.parent
    try:
        os.makedirs(config_dir, exist_ok=True)
    except PermissionError as e:
        raise PermissionError(
            f"Cannot create config directory {config_dir}: {e}"
        ) from e

    temp_path = config_path.with_suffix(".toml.tmp")

    try:
        with open(temp_path, "wb") as f:
            tomli_w.dump(config, f)

        os.replace(temp_path, config_path)

    except Exception:
        if temp_path.exists():
            temp_path.unlink()
        raise


def get_section(name: str) -> dict[str, Any]:
    """
    Get one configuration section.

    Args:
        name: Section name (e.g. "clustering")

    Returns:
        Section dictionary, or empty dict if missing or not a table
    """
    section = load_config().get(name, {})
    if isinstance(section, dict):
        return section
    logger.warning(f"Config section [{name}] is not a table; ignoring it")
    return {}


def _split_key(dotted_key: str) -> tuple[str, str]:
    section, _, key = dotted_key.partition(".")
    if not section or not key:
        raise ValueError(
            f"Invalid config key '{dotted_key}'. Expected SECTION.KEY "
            f"(sections: {', '.join(CONFIG_SECTIONS)})"
        )
    if section not in CONFIG_SECTIONS:
        raise ValueError(
            f"Unknown config section '{section}'. "
            f"Valid sections are: {', '.join(CONFIG_SECTIONS)}"
        )
    return section, key


def parse_config_value(raw: str) -> Any:
    """
    Convert a command-line string into a TOML scalar.

    Booleans ("true"/"false"), integers and floats are recognised; anything
    else is kept as a string.
    """
    lowered = raw.strip().lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    try:
        return int(raw)
    except ValueError:
        pass
    try:
        return float(raw)
    except ValueError:
        return raw


def set_config_value(dotted_key: str, value: Any) -> None:
    """
    Set a single SECTION.KEY value in the config file.

    Args:
        dotted_key: Key in SECTION.KEY form (e.g. "clustering.gap_sec")
        value: Value to store

    Raises:
        ValueError: If the key is malformed or names an unknown section
    """
    section, key = _split_key(dotted_key)
    config = load_config()

    if not isinstance(config.get(section), dict):
        config[section] = {}

    config[section][key] = value
    save_config(config)


def unset_config_value(dotted_key: str) -> bool:
    """
    Remove a SECTION.KEY value from the config file.

    If this was the only setting in the section, removes the section.
    If config becomes empty, deletes the config file.

    Returns:
        True if a value was removed, False if it was not set
    """
    section, key = _split_key(dotted_key)
    config = load_config()

    if section not in config or key not in config[section]:
        return False

    del config[section][key]

    if not config[section]:
        del config[section]

    if not config:
        config_path = get_config_path()
        if config_path.exists():
            config_path.unlink()
    else:
        save_config(config)

    return True
