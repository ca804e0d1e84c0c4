"""
Configuration loader — reads verify options from YAML.

Reads YAML, validates against the Pydantic option model, and returns a
typed ``VerifyResourceOption``. The bundled defaults (server-managed
fields to ignore) are merged in front of the user's ignore fields
unless disabled.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from kubeverify.core.models.option import VerifyResourceOption

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = Path(__file__).parent.parent / "data" / "default_config.yaml"


class ConfigError(Exception):
    """Raised when an option file is invalid or missing."""


def _read_mapping(path: Path) -> dict[str, Any]:
    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading verify options from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")
    return data


def _validate(data: dict[str, Any], path: Path) -> VerifyResourceOption:
    try:
        return VerifyResourceOption.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid verify options in {path}: {e}") from e


def load_default_option() -> VerifyResourceOption:
    """The bundled defaults as an option."""
    return _validate(_read_mapping(DEFAULT_CONFIG_FILE), DEFAULT_CONFIG_FILE)


def load_option(path: Path | None = None, use_defaults: bool = True) -> VerifyResourceOption:
    """Load and validate verify options.

    Args:
        path: Option file. None means no user file.
        use_defaults: Prepend the bundled default ignore fields.

    Returns:
        Validated option.

    Raises:
        ConfigError: If the file is missing or invalid.
    """
    option = _validate(_read_mapping(path), path) if path is not None else VerifyResourceOption()

    if use_defaults:
        defaults = load_default_option()
        option = option.model_copy(update={
            "ignore_fields": defaults.ignore_fields.extend(option.ignore_fields.root),
        })

    logger.info(
        "Loaded verify options (%d ignore-field bindings, %d signers)",
        len(option.ignore_fields),
        len(option.signers),
    )
    return option
