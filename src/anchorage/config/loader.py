# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/anchorage/config/loader.py

import logging
import os
from pathlib import Path

import yaml
from pydantic import ValidationError

from anchorage.config.models import DeploymentConfig
from anchorage.errors import ConfigError

log = logging.getLogger("anchorage")


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Recursively merge *override* into *base* (mutates base).
    Only overwrites when the override value is non-empty.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            _deep_merge(base[key], value)
        else:
            if value not in (None, ""):
                base[key] = value
    return base


def _find_secrets_file(config_path: Path) -> Path | None:
    """
    Locate secrets.yaml using this priority:

    1. ANCHORAGE_SECRETS_FILE environment variable (explicit override)
    2. secrets.yaml in the same directory as the deployment config
    """
    env = os.environ.get("ANCHORAGE_SECRETS_FILE")
    if env:
        p = Path(env)
        if p.is_file():
            return p
        log.warning("ANCHORAGE_SECRETS_FILE=%s does not exist, skipping", env)
        return None

    p = config_path.parent / "secrets.yaml"
    if p.is_file():
        return p

    return None


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    raw = path.read_text()
    expanded = os.path.expandvars(raw)
    data = yaml.safe_load(expanded) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected a mapping at the top level")
    return data


def load_config(path: str | Path) -> DeploymentConfig:
    """
    Load and validate an anchorage deployment config.

    Secrets (AWS keys for the refresh job, private repo credentials) can be kept
    out of the main file in a ``secrets.yaml`` that mirrors its structure; it is
    deep-merged before validation. ``${ENV_VAR}`` placeholders are expanded in
    both files.
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    try:
        data = _load_yaml(path)
    except yaml.YAMLError as e:
        raise ConfigError(f"{path}: invalid YAML: {e}") from e

    secrets_path = _find_secrets_file(path)
    if secrets_path:
        log.debug("Merging secrets from %s", secrets_path)
        try:
            _deep_merge(data, _load_yaml(secrets_path))
        except yaml.YAMLError as e:
            raise ConfigError(f"{secrets_path}: invalid YAML: {e}") from e
    else:
        log.debug("No secrets.yaml found, proceeding without secrets merge")

    try:
        return DeploymentConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"{path}: {e}") from e
