"""Project settings and environment switches for stepflow.

This module handles loading and validation of per-project settings files
from `.stepflow/config.toml`. Settings files are discovered by searching
upward from the current working directory until a `.git` directory is found.

It also reads the environment variables that change where runtime files go
and whether runs are checkpointed at all.
"""

import os
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Optional

import tomllib

from stepflow.config import ConfigError

FLOW_DIR_NAME = ".stepflow"

# Environment variables
RUNTIME_DIR_ENV = "STEPFLOW_RUNTIME_DIR"
RESUME_DISABLED_ENV = "STEPFLOW_RESUME_DISABLED"

FALSY_VALUES = {"0", "false", "off", "no"}


def find_flow_dir(cwd: Path) -> Optional[Path]:
    """Find the .stepflow directory by searching upward from cwd.

    Stops at the .git directory (project boundary) or filesystem root.

    Returns:
        The .stepflow directory path if found, None otherwise
    """
    current = Path(cwd).resolve()
    root = Path(current.anchor)

    while current != root:
        flow_dir = current / FLOW_DIR_NAME
        if flow_dir.is_dir():
            return flow_dir
        if (current / ".git").exists():
            break
        current = current.parent

    return None


def find_settings_file(cwd: Path) -> Optional[Path]:
    flow_dir = find_flow_dir(cwd)
    if flow_dir is None:
        return None

    settings_file = flow_dir / "config.toml"
    if settings_file.is_file():
        return settings_file
    return None


def validate_settings(settings: Dict[str, Any], settings_file: Path) -> Dict[str, Any]:
    """Validate settings values and filter out unknown keys.

    Args:
        settings: Dictionary of settings values
        settings_file: Path to settings file (for error messages)

    Returns:
        Validated settings dictionary with only known keys

    Raises:
        ConfigError: If any validation fails
    """
    known_keys = {"verbose", "mock_delay_ms"}

    # Filter out unknown keys (forward compatibility)
    validated = {k: v for k, v in settings.items() if k in known_keys}

    if "verbose" in validated:
        if not isinstance(validated["verbose"], bool):
            raise ConfigError(
                f"Invalid value for 'verbose' in {settings_file}: "
                f"expected boolean, got {type(validated['verbose']).__name__}"
            )

    if "mock_delay_ms" in validated:
        value = validated["mock_delay_ms"]
        # bool is an int subclass but never a meaningful delay
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigError(
                f"Invalid value for 'mock_delay_ms' in {settings_file}: "
                f"expected number, got {type(value).__name__}"
            )
        if value < 0:
            raise ConfigError(
                f"Invalid value for 'mock_delay_ms' in {settings_file}: "
                f"must be non-negative, got {value}"
            )

    return validated


def load_settings(cwd: Optional[Path] = None) -> Dict[str, Any]:
    """Load settings from .stepflow/config.toml, returning empty dict if not found.

    Raises an exception if the file exists but cannot be parsed, so users can fix errors.

    Raises:
        ConfigError: If the file contains invalid TOML, invalid values, or cannot be read
    """
    if cwd is None:
        cwd = Path.cwd()

    settings_file = find_settings_file(cwd)
    if settings_file is None:
        return {}

    try:
        with open(settings_file, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(
            f"Failed to parse {settings_file}: Invalid TOML syntax - {e}"
        ) from e
    except OSError as e:
        raise ConfigError(
            f"Failed to read {settings_file}: {e}"
        ) from e

    section = data.get("stepflow", {})
    if not isinstance(section, dict):
        raise ConfigError(
            f"Invalid value for 'stepflow' in {settings_file}: "
            f"expected table, got {type(section).__name__}"
        )
    return validate_settings(section, settings_file)


def parse_truthy(value: Optional[str]) -> bool:
    """Interpret an environment switch.

    Any value other than 0/false/off/no (case-insensitive) counts as set,
    including the empty string. An unset variable is passed as None.
    """
    if value is None:
        return False
    return value.strip().lower() not in FALSY_VALUES


def resume_disabled() -> bool:
    """Return True if checkpointing and resume are switched off for this process."""
    return parse_truthy(os.environ.get(RESUME_DISABLED_ENV))


def default_runtime_root() -> Path:
    """Runtime root from the environment, else `.stepflow/runtime` under cwd."""
    override = os.environ.get(RUNTIME_DIR_ENV)
    if override:
        return Path(override)
    return Path(FLOW_DIR_NAME) / "runtime"


def merge_settings_and_options(settings: Dict[str, Any], options: Any) -> Any:
    """Merge settings file values into run options, explicit options take precedence.

    - ``verbose``: a False option can be enabled by the settings file
    - ``mock_delay``: only filled in when the option is None
      (settings hold milliseconds, options hold seconds)

    Args:
        settings: Validated settings from load_settings()
        options: A RunOptions instance

    Returns:
        A new RunOptions with settings merged in
    """
    changes: Dict[str, Any] = {}

    if not options.verbose and settings.get("verbose", False):
        changes["verbose"] = True

    if options.mock_delay is None and "mock_delay_ms" in settings:
        changes["mock_delay"] = settings["mock_delay_ms"] / 1000.0

    return replace(options, **changes) if changes else options
