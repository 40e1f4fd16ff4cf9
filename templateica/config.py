#!/usr/bin/env python3
"""
Configuration for template estimation and subject dual regression.

A run is described by a YAML file with an ``estimation`` and/or a
``dual_regression`` section plus a ``logging`` section. The run file is
merged over the bundled ``configs/default.yaml``; ``${...}`` placeholders
are filled from the environment or from other keys of the merged config.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

MODALITIES = ('gifti', 'cifti', 'nifti')
BRAINSTRUCTURES = ('left', 'right', 'subcortical', 'all')

_PLACEHOLDER = re.compile(r'\$\{([^}]+)\}')
_MAX_SUBSTITUTION_PASSES = 5


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required parameters."""
    pass


def load_yaml(file_path: Path) -> Dict[str, Any]:
    """
    Read one YAML config file into a dict.

    An empty file gives an empty dict.

    Raises
    ------
    ConfigurationError
        If the file is absent or is not parseable YAML
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise ConfigurationError(f"Configuration file not found: {file_path}")

    try:
        with open(file_path, 'r') as f:
            return yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {file_path}: {e}")


def merge_configs(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge ``override`` into a copy of ``base``.

    Nested sections are merged key by key; any other value in ``override``
    replaces the one in ``base``.
    """
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = merge_configs(current, value)
        else:
            merged[key] = value
    return merged


def get_config_value(config: Dict[str, Any], key_path: str, default: Any = None) -> Any:
    """
    Look up a dotted key such as ``'estimation.scale'``.

    Parameters
    ----------
    config : dict
        Configuration dictionary
    key_path : str
        Section and key names joined by dots
    default : any
        Returned when any part of the path is absent

    Returns
    -------
    any
        The stored value, or ``default``
    """
    value = config
    for part in key_path.split('.'):
        if not isinstance(value, dict) or part not in value:
            return default
        value = value[part]
    return value


def substitute_variables(config: Dict[str, Any], context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Fill ``${NAME}`` placeholders in every string of the config.

    ``NAME`` is looked up first as an environment variable, then as a dotted
    key of ``context`` (the config itself by default), so a study can write
    ``group_map: ${paths.root}/groupICA.dscalar.nii``. Placeholders that
    resolve to nothing are left untouched.

    Parameters
    ----------
    config : dict
        Configuration dictionary
    context : dict, optional
        Mapping used for dotted-key lookups

    Returns
    -------
    dict
        New configuration with placeholders filled
    """
    missing = object()

    def fill(value: Any, ctx: Dict[str, Any]) -> Any:
        if isinstance(value, dict):
            return {k: fill(v, ctx) for k, v in value.items()}
        if isinstance(value, list):
            return [fill(v, ctx) for v in value]
        if not isinstance(value, str):
            return value

        def lookup(match):
            name = match.group(1)
            if name in os.environ:
                return os.environ[name]
            found = get_config_value(ctx, name, missing)
            return match.group(0) if found is missing else str(found)

        return _PLACEHOLDER.sub(lookup, value)

    result = config
    # A placeholder may point at a key that itself holds a placeholder
    for _ in range(_MAX_SUBSTITUTION_PASSES):
        filled = fill(result, result if context is None else context)
        if filled == result:
            break
        result = filled
    return result


def validate_config(config: Dict[str, Any], validate_workflows: bool = False) -> None:
    """
    Validate types and values of the estimation settings.

    Parameters
    ----------
    config : dict
        Configuration to validate
    validate_workflows : bool
        If True, also check that every required workflow key is present

    Raises
    ------
    ConfigurationError
        If parameters are invalid
    """
    estimation = config.get('estimation', {}) or {}

    modality = estimation.get('modality')
    if modality is not None and modality not in MODALITIES:
        raise ConfigurationError(
            f"estimation.modality must be one of {MODALITIES}, got {modality!r}"
        )

    if 'scale' in estimation and not isinstance(estimation['scale'], bool):
        raise ConfigurationError(
            f"estimation.scale must be a single boolean, got {estimation['scale']!r}"
        )

    inds = estimation.get('inds')
    if inds is not None:
        if not isinstance(inds, list) or not inds:
            raise ConfigurationError("estimation.inds must be a non-empty list of integers")
        for q in inds:
            if isinstance(q, bool) or not isinstance(q, int) or q < 1:
                raise ConfigurationError(
                    f"estimation.inds entries must be positive integers, got {q!r}"
                )

    structures = estimation.get('brainstructures')
    if structures is not None:
        if isinstance(structures, str):
            structures = [structures]
        bad = [s for s in structures if s not in BRAINSTRUCTURES]
        if bad:
            raise ConfigurationError(
                f"estimation.brainstructures entries must be in {BRAINSTRUCTURES}, got {bad}"
            )

    level = get_config_value(config, 'logging.level')
    if level is not None and not isinstance(logging.getLevelName(str(level).upper()), int):
        raise ConfigurationError(f"logging.level is not a logging level: {level!r}")

    logger.debug("Configuration validation passed")

    if validate_workflows:
        from templateica.config_validator import validate_all_workflows
        results = validate_all_workflows(config)
        for workflow, (valid, missing_req, missing_opt) in results.items():
            if not valid:
                raise ConfigurationError(
                    f"Missing required {workflow} config keys: {missing_req}"
                )
            if missing_opt:
                logger.info(
                    "Optional %s keys not set (using defaults): %d keys",
                    workflow, len(missing_opt),
                )


def default_config_path() -> Path:
    """Path of the defaults bundled with the package."""
    return Path(__file__).parent / 'configs' / 'default.yaml'


def load_config(config_path: Optional[Path] = None, validate: bool = True) -> Dict[str, Any]:
    """
    Build the configuration for one run.

    The bundled defaults are replaced by a ``default.yaml`` sitting next to
    ``config_path`` when there is one. The run file is merged over the
    defaults, placeholders are filled and, unless ``validate`` is False,
    the result is checked with :func:`validate_config`.

    Parameters
    ----------
    config_path : Path, optional
        Run configuration. Without one, only the defaults are loaded.
    validate : bool
        Whether to validate the configuration

    Returns
    -------
    dict
        Processed configuration

    Raises
    ------
    ConfigurationError
        If a file cannot be read or a setting is invalid
    """
    run_config: Dict[str, Any] = {}
    default_path = default_config_path()

    if config_path is not None:
        config_path = Path(config_path)
        run_config = load_yaml(config_path)

        local_default = config_path.parent / 'default.yaml'
        if local_default.exists() and local_default.resolve() != config_path.resolve():
            default_path = local_default

    defaults = load_yaml(default_path) if default_path.exists() else {}
    config = substitute_variables(merge_configs(defaults, run_config))

    if validate:
        validate_config(config)
    return config
