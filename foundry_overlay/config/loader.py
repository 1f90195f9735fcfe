# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Config loader: reads YAML from disk and produces a validated, frozen config.

The loading pipeline is deliberately linear:
  1. Read raw text from the file
  2. Parse as YAML into a plain dict
  3. Hand the dict to pydantic for schema validation
  4. Apply environment overrides

If anything goes wrong at any step, we fail immediately with a clear error.
A broken config should stop the update before it touches the network.
"""

import os
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from pydantic import ValidationError

from foundry_overlay.config.exceptions import ConfigLoadError, ConfigValidationError
from foundry_overlay.config.schema import FoundryOverlayConfig

CONFIG_VERSION = "1.0.0"

# Explicit opt-out for releases published before upstream started attesting builds.
SKIP_ATTESTATION_ENV = "FOUNDRY_SKIP_ATTESTATION"

_TRUTHY = frozenset({"1", "true", "yes", "on"})


def _read_yaml_file(config_path: Path) -> dict[str, Any]:
    """
    Read a YAML file and return the parsed dict.

    Raises:
        ConfigLoadError: If the file doesn't exist, isn't readable, or isn't valid YAML.
    """
    if not config_path.exists():
        raise ConfigLoadError(f"Config file not found: {config_path}")

    if not config_path.is_file():
        raise ConfigLoadError(f"Config path is not a file: {config_path}")

    try:
        raw_text = config_path.read_text(encoding="utf-8")
    except OSError as err:
        raise ConfigLoadError(f"Cannot read config file {config_path}: {err}") from err

    try:
        parsed = yaml.safe_load(raw_text)
    except yaml.YAMLError as err:
        raise ConfigLoadError(f"Invalid YAML in {config_path}: {err}") from err

    if not isinstance(parsed, dict):
        raise ConfigLoadError(
            f"Config file must contain a YAML mapping (dict), got {type(parsed).__name__}"
        )

    return parsed


def _validate(raw_data: dict[str, Any], source: str) -> FoundryOverlayConfig:
    try:
        return FoundryOverlayConfig.model_validate(raw_data)
    except ValidationError as err:
        raise ConfigValidationError(f"Config validation failed for {source}:\n{err}") from err


def default_config() -> FoundryOverlayConfig:
    """Config used when no file is given: upstream defaults everywhere."""
    return _validate({"global": {"config_version": CONFIG_VERSION}}, "<defaults>")


def apply_environment_overrides(
    config: FoundryOverlayConfig,
    environ: Optional[Mapping[str, str]] = None,
) -> FoundryOverlayConfig:
    """
    Return a copy of config with environment toggles applied.

    Only FOUNDRY_SKIP_ATTESTATION is honoured, and it can only switch
    verification off.
    """
    env = os.environ if environ is None else environ
    if env.get(SKIP_ATTESTATION_ENV, "").strip().lower() not in _TRUTHY:
        return config

    sync = config.sync.model_copy(update={"verify_attestations": False})
    return config.model_copy(update={"sync": sync})


def load_config(
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> FoundryOverlayConfig:
    """
    Load, validate, and freeze a config file.

    Args:
        config_path: Path to a YAML config file, or None for defaults.
        environ: Environment to read overrides from (os.environ by default).

    Returns:
        A fully validated, frozen FoundryOverlayConfig instance.

    Raises:
        ConfigLoadError: File I/O or YAML parse failures.
        ConfigValidationError: Schema violations (missing fields, wrong types, unknown keys).
    """
    if config_path is None:
        config = default_config()
    else:
        config = _validate(_read_yaml_file(config_path), str(config_path))

    return apply_environment_overrides(config, environ)
