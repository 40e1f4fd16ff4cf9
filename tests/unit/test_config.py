#!/usr/bin/env python3
"""
Unit tests for configuration loading and validation.
"""

import pytest
import yaml

from templateica.config import (
    ConfigurationError,
    default_config_path,
    get_config_value,
    load_config,
    merge_configs,
    substitute_variables,
    validate_config,
)
from templateica.config_validator import (
    DualRegressionConfigValidator,
    EstimationConfigValidator,
    validate_all_workflows,
)


def write_yaml(path, data):
    with open(path, "w") as f:
        yaml.safe_dump(data, f)
    return path


class TestLoadConfig:
    def test_bundled_defaults(self):
        assert default_config_path().exists()
        config = load_config()
        assert config["estimation"]["scale"] is True
        assert config["estimation"]["brainstructures"] == ["left", "right"]
        assert config["logging"]["level"] == "INFO"

    def test_run_config_overrides_defaults(self, tmp_path):
        path = write_yaml(tmp_path / "study.yaml", {
            "estimation": {"modality": "cifti", "inds": [1, 3]},
        })
        config = load_config(path)

        assert config["estimation"]["modality"] == "cifti"
        assert config["estimation"]["inds"] == [1, 3]
        assert config["estimation"]["scale"] is True

    def test_local_default_takes_precedence(self, tmp_path):
        write_yaml(tmp_path / "default.yaml", {"estimation": {"scale": False}})
        path = write_yaml(tmp_path / "study.yaml", {"estimation": {"modality": "nifti"}})

        config = load_config(path)
        assert config["estimation"]["scale"] is False
        assert "dual_regression" not in config

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(tmp_path / "absent.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("estimation: [unclosed\n")
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_config(path)

    def test_variable_substitution(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TEMPLATEICA_DATA", "/data/hcp")
        path = write_yaml(tmp_path / "study.yaml", {
            "paths": {"root": "${TEMPLATEICA_DATA}"},
            "estimation": {
                "group_map": "${paths.root}/groupICA.dscalar.nii",
                "out_prefix": "${paths.root}/templates/rest",
            },
        })
        config = load_config(path)

        assert config["estimation"]["group_map"] == "/data/hcp/groupICA.dscalar.nii"
        assert get_config_value(config, "estimation.out_prefix") == "/data/hcp/templates/rest"


class TestHelpers:
    def test_merge_is_recursive(self):
        merged = merge_configs({"a": {"x": 1, "y": 2}, "b": 1}, {"a": {"y": 3}})
        assert merged == {"a": {"x": 1, "y": 3}, "b": 1}

    def test_unknown_variable_left_as_is(self):
        assert substitute_variables({"a": "${NOT_A_KEY_ANYWHERE}"}) == {"a": "${NOT_A_KEY_ANYWHERE}"}

    def test_get_config_value_default(self):
        assert get_config_value({"a": {"b": 1}}, "a.c", default=0.3) == 0.3


class TestValidateConfig:
    @pytest.mark.parametrize("estimation", [
        {"modality": "mgh"},
        {"scale": "yes"},
        {"inds": [0, 2]},
        {"inds": 3},
        {"brainstructures": ["cerebellum"]},
    ])
    def test_invalid_values(self, estimation):
        with pytest.raises(ConfigurationError):
            validate_config({"estimation": estimation})

    def test_invalid_log_level(self):
        with pytest.raises(ConfigurationError, match="logging level"):
            validate_config({"logging": {"level": "LOUD"}})

    def test_valid(self):
        validate_config({
            "estimation": {"modality": "gifti", "inds": [1, 2], "scale": False,
                           "brainstructures": "all"},
            "logging": {"level": "debug"},
        })


class TestWorkflowValidators:
    @pytest.fixture
    def inputs(self, tmp_path):
        paths = {}
        for key, name in [("bold_files", "subjects.txt"), ("group_map", "group.nii.gz"),
                          ("mask", "mask.nii.gz")]:
            paths[key] = tmp_path / name
            paths[key].write_text("")
        return {key: str(path) for key, path in paths.items()}

    def test_estimation_required_keys(self, inputs):
        valid, missing, _ = EstimationConfigValidator.validate(
            {"estimation": {"modality": "gifti", "bold_files": inputs["bold_files"],
                            "group_map": None}}
        )
        assert not valid
        assert missing == ["estimation.group_map"]

    def test_nifti_requires_mask(self, inputs):
        config = {"estimation": {"modality": "nifti", "bold_files": inputs["bold_files"],
                                 "group_map": inputs["group_map"]}}
        valid, missing, _ = EstimationConfigValidator.validate(config)
        assert not valid
        assert missing == ["estimation.mask"]

        config["estimation"]["mask"] = inputs["mask"]
        assert EstimationConfigValidator.validate(config)[0]

    def test_group_map_must_exist(self, inputs, tmp_path):
        absent = tmp_path / "absent.dscalar.nii"
        valid, missing, _ = EstimationConfigValidator.validate(
            {"estimation": {"modality": "cifti", "bold_files": inputs["bold_files"],
                            "group_map": str(absent)}}
        )
        assert not valid
        assert missing == [f"estimation.group_map (not found: {absent})"]

    def test_listed_recordings_are_not_checked(self, inputs, tmp_path):
        # Missing subjects are excluded during estimation, not rejected up front
        valid, _, _ = EstimationConfigValidator.validate(
            {"estimation": {"modality": "gifti", "group_map": inputs["group_map"],
                            "bold_files": [str(tmp_path / "sub-01.func.gii")]}}
        )
        assert valid

    def test_dual_regression(self, inputs, tmp_path):
        valid, missing, _ = DualRegressionConfigValidator.validate({"dual_regression": {}})
        assert not valid
        assert "dual_regression.bold_file" in missing

        valid, missing, _ = DualRegressionConfigValidator.validate({"dual_regression": {
            "modality": "gifti", "group_map": inputs["group_map"],
            "bold_file": str(tmp_path / "sub-01.func.gii"),
            "medial_wall": str(tmp_path / "cortex.txt"),
        }})
        assert not valid
        assert [key.split(" ")[0] for key in missing] == [
            "dual_regression.bold_file", "dual_regression.medial_wall",
        ]

    def test_validate_all_workflows_uses_present_sections(self):
        results = validate_all_workflows({"estimation": {}})
        assert list(results) == ["estimation"]

    def test_unknown_workflow(self):
        with pytest.raises(KeyError):
            validate_all_workflows({}, ["registration"])

    def test_validate_config_with_workflows(self):
        with pytest.raises(ConfigurationError, match="Missing required estimation"):
            validate_config({"estimation": {"modality": "gifti"}}, validate_workflows=True)
