"""
Config Loader
=============
Builds validated LoopConfig objects from YAML files or environment defaults.

YAML Layout (all sections optional):
    id: loop-checkout
    name: checkout-page
    deployment:   {target: custom, custom_url: https://staging.example.com}
    monitoring:   {sources: [poll, sentry], severity_threshold: medium}
    fix:          {auto_apply: true, max_fixes_per_iteration: 5}
    safety:       {max_iterations: 3, max_duration: 15}
    notifications: {enabled: true, webhook_url: https://hooks.example.com/loop}

camelCase keys are not accepted; use the snake_case field names.
"""
import logging
import os

import yaml
from pydantic import ValidationError

from debugloop.models.loop_config import LoopConfig

logger = logging.getLogger(__name__)


class ConfigLoadError(ValueError):
    """The config file is missing, not YAML, or fails validation."""


def load_loop_config(path: str) -> LoopConfig:
    """
    Read a YAML file into a LoopConfig.

    Parameters
    ----------
    path : str
        Path to the YAML document.

    Returns
    -------
    LoopConfig
        Validated configuration with state=idle.

    Raises
    ------
    ConfigLoadError
        On a missing file, malformed YAML, a non-mapping document, or a
        validation failure.
    """
    if not os.path.isfile(path):
        raise ConfigLoadError(f"Config file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        content = f.read()

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigLoadError(f"Config root must be a mapping, got {type(data).__name__}")

    # A loaded config always starts idle
    data.pop("state", None)

    try:
        config = LoopConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigLoadError(f"Invalid loop config in {path}: {e}") from e

    logger.info("Loaded loop config '%s' (%s) from %s", config.name, config.id, path)
    return config


def default_loop_config(**overrides) -> LoopConfig:
    """LoopConfig built from the environment defaults in core.config."""
    return LoopConfig(**overrides)
