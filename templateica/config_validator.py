"""
Configuration validators for template estimation workflows.

Checks that every key a workflow needs is present, and that the files it
names exist, before any imaging data is read. Each validator reports
(is_valid, missing_required, missing_optional).
"""

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from templateica.config import get_config_value

logger = logging.getLogger(__name__)


class ConfigValidator:
    """Base configuration validator."""

    REQUIRED_KEYS: List[str] = []
    OPTIONAL_KEYS: List[str] = []
    # Keys naming a file that must exist when set; lists of files are not checked
    FILE_KEYS: List[str] = []
    name = ""

    @staticmethod
    def check_required_keys(
        config: Dict,
        required_keys: List[str],
    ) -> Tuple[bool, List[str]]:
        """
        Check if required keys exist in config.

        A key whose value is None counts as missing.

        Parameters
        ----------
        config : dict
            Configuration dictionary
        required_keys : list
            List of required key paths (e.g., 'estimation.group_map')

        Returns
        -------
        Tuple[bool, List[str]]
            (is_valid, missing_keys)
        """
        missing_keys = []

        for key_path in required_keys:
            current = config
            for key in key_path.split('.'):
                if not isinstance(current, dict) or current.get(key) is None:
                    missing_keys.append(key_path)
                    break
                current = current[key]

        return len(missing_keys) == 0, missing_keys

    @staticmethod
    def check_file_exists(file_path: Optional[Path], param_name: str) -> bool:
        """
        Check if a file exists.

        Returns True if the path exists or is None.
        """
        if file_path is None:
            return True

        if not Path(file_path).exists():
            logger.warning(f"{param_name} not found: {file_path}")
            return False

        return True

    @classmethod
    def extra_required_keys(cls, config: Dict) -> List[str]:
        return []

    @classmethod
    def check_files(cls, config: Dict) -> List[str]:
        """Return the FILE_KEYS whose path is set but does not exist."""
        missing_files = []
        for key_path in cls.FILE_KEYS:
            value = get_config_value(config, key_path)
            if isinstance(value, (str, Path)) and not cls.check_file_exists(value, key_path):
                missing_files.append(f"{key_path} (not found: {value})")
        return missing_files

    @classmethod
    def validate(cls, config: Dict) -> Tuple[bool, List[str], List[str]]:
        """
        Validate the workflow section of a configuration.

        Returns
        -------
        Tuple[bool, List[str], List[str]]
            (is_valid, missing_required, missing_optional)
        """
        logger.info("Validating %s configuration...", cls.name)

        required = cls.REQUIRED_KEYS + cls.extra_required_keys(config)
        _, missing_required = cls.check_required_keys(config, required)
        missing_required += cls.check_files(config)
        is_valid = not missing_required
        _, missing_optional = cls.check_required_keys(config, cls.OPTIONAL_KEYS)

        if is_valid:
            logger.info("  %s config valid", cls.name)
        else:
            logger.error("  %s config invalid", cls.name)
            for key in missing_required:
                logger.error(f"    Missing or not found: {key}")

        if missing_optional:
            logger.debug("  Missing optional parameters (will use defaults):")
            for key in missing_optional:
                logger.debug(f"    {key}")

        return is_valid, missing_required, missing_optional


class EstimationConfigValidator(ConfigValidator):
    """Validator for template estimation runs."""

    name = "estimation"

    REQUIRED_KEYS = [
        'estimation.modality',
        'estimation.bold_files',
        'estimation.group_map',
    ]

    OPTIONAL_KEYS = [
        'estimation.retest_files',
        'estimation.inds',
        'estimation.scale',
        'estimation.out_prefix',
        'estimation.medial_wall',
        'estimation.brainstructures',
    ]

    FILE_KEYS = [
        'estimation.bold_files',
        'estimation.retest_files',
        'estimation.group_map',
        'estimation.mask',
        'estimation.medial_wall',
    ]

    @classmethod
    def extra_required_keys(cls, config: Dict) -> List[str]:
        # Volumetric data cannot be flattened without a brain mask
        if (config.get('estimation') or {}).get('modality') == 'nifti':
            return ['estimation.mask']
        return []


class DualRegressionConfigValidator(ConfigValidator):
    """Validator for single-subject dual regression."""

    name = "dual_regression"

    REQUIRED_KEYS = [
        'dual_regression.modality',
        'dual_regression.bold_file',
        'dual_regression.group_map',
    ]

    OPTIONAL_KEYS = [
        'dual_regression.scale',
        'dual_regression.out_prefix',
        'dual_regression.medial_wall',
        'dual_regression.brainstructures',
    ]

    FILE_KEYS = [
        'dual_regression.bold_file',
        'dual_regression.group_map',
        'dual_regression.mask',
        'dual_regression.medial_wall',
    ]

    @classmethod
    def extra_required_keys(cls, config: Dict) -> List[str]:
        if (config.get('dual_regression') or {}).get('modality') == 'nifti':
            return ['dual_regression.mask']
        return []


VALIDATORS = {
    'estimation': EstimationConfigValidator,
    'dual_regression': DualRegressionConfigValidator,
}


def validate_all_workflows(
    config: Dict,
    workflows: Optional[Iterable[str]] = None,
) -> Dict[str, Tuple[bool, List[str], List[str]]]:
    """
    Validate configuration for the requested workflows.

    Parameters
    ----------
    config : dict
        Configuration dictionary
    workflows : iterable of str, optional
        Workflow names to check. Defaults to every workflow whose section
        is present in the config.

    Returns
    -------
    dict
        Dictionary mapping workflow name to (is_valid, missing_required, missing_optional)
    """
    if workflows is None:
        workflows = [name for name in VALIDATORS if name in config]

    results = {}
    for workflow in workflows:
        if workflow not in VALIDATORS:
            raise KeyError(f"Unknown workflow: {workflow}")
        results[workflow] = VALIDATORS[workflow].validate(config)

    all_valid = all(r[0] for r in results.values())
    for workflow, (is_valid, _, _) in results.items():
        logger.info(f"  {workflow}: {'VALID' if is_valid else 'INVALID'}")

    if not all_valid:
        logger.warning("Some workflows have invalid configurations")

    return results
