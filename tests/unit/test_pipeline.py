#!/usr/bin/env python3
"""
End-to-end tests for template estimation from files.

Synthetic GIFTI, NIfTI and CIFTI cohorts are written under tmp_path and
passed through estimate_template.
"""

import json

import nibabel as nib
import numpy as np
import pandas as pd
import pytest

from templateica.config import ConfigurationError
from templateica.errors import DimensionMismatchError, EstimationCancelled
from templateica.estimation import estimate_template
from templateica.io import component_names
from templateica.io.gifti import matrix_to_gifti

N_COMPONENTS = 5
N_TIMEPOINTS = 30


def simulate(group, n_subjects, seed):
    """(locations x time) recordings from perturbed group maps."""
    rng = np.random.default_rng(seed)
    recordings = []
    for _ in range(n_subjects):
        maps = group + 0.3 * rng.standard_normal(group.shape)
        courses = rng.standard_normal((N_TIMEPOINTS, group.shape[1]))
        recordings.append(maps @ courses.T + 0.5 * rng.standard_normal((group.shape[0], N_TIMEPOINTS)))
    return recordings


def write_list(path, files):
    path.write_text("\n".join(str(f) for f in files) + "\n")
    return path


@pytest.fixture
def gifti_cohort(tmp_path):
    rng = np.random.default_rng(0)
    group = rng.standard_normal((100, N_COMPONENTS))
    group_path = tmp_path / "group.func.gii"
    nib.save(matrix_to_gifti(group, component_names(range(1, N_COMPONENTS + 1))), str(group_path))

    files = []
    for i, bold in enumerate(simulate(group, 4, seed=1)):
        path = tmp_path / f"sub-{i + 1:02d}.func.gii"
        nib.save(matrix_to_gifti(bold, [f"t{t}" for t in range(N_TIMEPOINTS)]), str(path))
        files.append(path)
    return group_path, files


GRID = (6, 6, 6)
AFFINE = np.diag([3.0, 3.0, 3.0, 1.0])


@pytest.fixture
def nifti_cohort(tmp_path):
    rng = np.random.default_rng(2)
    mask = np.zeros(GRID, dtype=np.uint8)
    mask.reshape(-1)[:100] = 1
    in_mask = mask.astype(bool)

    group_vol = np.zeros(GRID + (N_COMPONENTS,), dtype=np.float32)
    group_vol[in_mask] = rng.standard_normal((100, N_COMPONENTS))

    mask_path = tmp_path / "mask.nii.gz"
    group_path = tmp_path / "group.nii.gz"
    nib.save(nib.Nifti1Image(mask, AFFINE), str(mask_path))
    nib.save(nib.Nifti1Image(group_vol, AFFINE), str(group_path))

    recordings = simulate(group_vol[in_mask].astype(np.float64), 4, seed=3)

    def save(recordings, suffix=""):
        files = []
        for i, bold in enumerate(recordings):
            vol = np.zeros(GRID + (bold.shape[1],), dtype=np.float32)
            vol[in_mask] = bold
            path = tmp_path / f"sub-{i + 1:02d}{suffix}_bold.nii.gz"
            nib.save(nib.Nifti1Image(vol, AFFINE), str(path))
            files.append(path)
        return files

    return group_path, mask_path, recordings, save


class TestGiftiPipeline:
    def test_basic_run(self, gifti_cohort, tmp_path):
        group_path, files = gifti_cohort
        output = estimate_template(
            "gifti", files, group_path, inds=[1, 3], scale=False,
            out_prefix=tmp_path / "tmpl",
        )

        assert output.result.mean.shape == (100, 2)
        assert output.result.excluded_subjects == []
        assert [da.meta["Name"] for da in output.mean.darrays] == ["IC 1", "IC 3"]
        assert np.all(output.result.signal_variance >= 0)

        assert (tmp_path / "tmpl_mean.func.gii").exists()
        assert (tmp_path / "tmpl_var.func.gii").exists()
        assert not (tmp_path / "tmpl_mask.nii.gz").exists()

        var = output.adapter.load(tmp_path / "tmpl_var.func.gii")
        np.testing.assert_allclose(var, output.result.signal_variance, rtol=1e-5)

    def test_file_list_and_missing_subject(self, gifti_cohort, tmp_path):
        group_path, files = gifti_cohort
        files[1] = tmp_path / "sub-gone.func.gii"
        list_file = write_list(tmp_path / "subjects.txt", files)

        output = estimate_template("gifti", list_file, group_path, out_prefix=tmp_path / "tmpl")

        assert output.result.n_subjects == 3
        assert output.result.excluded_subjects == [str(files[1])]

        with open(tmp_path / "tmpl_summary.json") as f:
            summary = json.load(f)
        assert summary["n_subjects_used"] == 3
        assert summary["excluded_subjects"][0]["index"] == 2

        table = pd.read_csv(tmp_path / "tmpl_subjects.tsv", sep="\t")
        assert list(table["status"]) == ["included", "excluded", "included", "included"]

    def test_no_outputs_without_prefix(self, gifti_cohort, tmp_path):
        group_path, files = gifti_cohort
        output = estimate_template("gifti", files, group_path)

        assert output.paths == {}
        assert output.manifest.outputs == {}
        assert not list(tmp_path.glob("*_mean.*"))

    def test_invalid_inds_checked_before_subjects(self, gifti_cohort, tmp_path):
        group_path, _ = gifti_cohort
        absent = [tmp_path / "a.func.gii", tmp_path / "b.func.gii"]

        # Would fail with "None of the test files exist" if subjects were checked first
        with pytest.raises(ConfigurationError, match="Invalid entries in inds"):
            estimate_template("gifti", absent, group_path, inds=[99])

    def test_missing_output_directory(self, gifti_cohort, tmp_path):
        group_path, files = gifti_cohort
        with pytest.raises(ConfigurationError, match="does not exist"):
            estimate_template("gifti", files, group_path, out_prefix=tmp_path / "nope" / "tmpl")

    def test_retest_list_length(self, gifti_cohort):
        group_path, files = gifti_cohort
        with pytest.raises(ConfigurationError, match="same length"):
            estimate_template("gifti", files, group_path, retest_files=files[:2])

    def test_cancelled(self, gifti_cohort, tmp_path):
        group_path, files = gifti_cohort
        with pytest.raises(EstimationCancelled):
            estimate_template("gifti", files, group_path, out_prefix=tmp_path / "tmpl",
                              should_stop=lambda: True)
        assert not (tmp_path / "tmpl_mean.func.gii").exists()


class TestNiftiPipeline:
    def test_flat_voxel_refines_mask(self, nifti_cohort, tmp_path):
        group_path, mask_path, recordings, save = nifti_cohort
        # Voxel 7 constant in the second half of subject 2
        recordings[1][6, N_TIMEPOINTS // 2:] = 1.0
        files = save(recordings)

        output = estimate_template(
            "nifti", files, group_path, mask=mask_path, inds=[1, 3],
            out_prefix=tmp_path / "tmpl",
        )
        result = output.result

        assert result.n_locations_initial == 100
        assert result.n_locations == 99
        assert not result.kept_locations[6]
        assert result.n_subjects == 4
        assert any("flat location" in w for w in result.warnings)

        refined = nib.load(str(tmp_path / "tmpl_mask.nii.gz")).get_fdata()
        assert refined.sum() == 99
        assert refined.reshape(-1)[6] == 0

        mean = nib.load(str(tmp_path / "tmpl_mean.nii.gz")).get_fdata()
        assert mean.shape == GRID + (2,)
        assert np.all(mean.reshape(-1, 2)[6] == 0)
        np.testing.assert_allclose(nib.load(str(tmp_path / "tmpl_mean.nii.gz")).affine, AFFINE)

        assert output.manifest.mask_changed
        assert output.manifest.n_locations_final == 99

    def test_true_retest(self, nifti_cohort, tmp_path):
        group_path, mask_path, recordings, save = nifti_cohort
        test_files = save(recordings)
        retest_files = save(simulate(np.ones((100, N_COMPONENTS)), 4, seed=9), suffix="_retest")

        output = estimate_template(
            "nifti", test_files, group_path, retest_files=retest_files, mask=mask_path,
        )
        assert output.manifest.retest
        assert output.result.n_subjects == 4
        assert output.mask is None

    def test_retest_duration_must_match(self, nifti_cohort, tmp_path):
        group_path, mask_path, recordings, save = nifti_cohort
        test_files = save(recordings)
        short = [r[:, :20] for r in recordings]
        retest_files = save(short, suffix="_retest")

        with pytest.raises(DimensionMismatchError, match="dimension mismatch"):
            estimate_template("nifti", test_files, group_path, retest_files=retest_files,
                              mask=mask_path)


class TestCiftiPipeline:
    def test_left_and_right_cortex(self, tmp_path):
        rng = np.random.default_rng(4)
        left = nib.cifti2.BrainModelAxis.from_mask(np.ones(40, dtype=bool), name="CortexLeft")
        right = nib.cifti2.BrainModelAxis.from_mask(np.ones(40, dtype=bool), name="CortexRight")
        volume = np.zeros((4, 4, 4), dtype=bool)
        volume[1:3, 1:3, 1:3] = True
        brain_models = left + right + nib.cifti2.BrainModelAxis.from_mask(
            volume, affine=np.eye(4), name="thalamus_right",
        )

        group = rng.standard_normal((88, N_COMPONENTS))
        group_path = tmp_path / "group.dscalar.nii"
        nib.save(nib.Cifti2Image(
            group.T.astype(np.float32),
            header=(nib.cifti2.ScalarAxis(component_names(range(1, 6))), brain_models),
        ), str(group_path))

        files = []
        for i, bold in enumerate(simulate(group, 3, seed=5)):
            path = tmp_path / f"sub-{i + 1:02d}.dtseries.nii"
            series = nib.cifti2.SeriesAxis(start=0, step=0.8, size=N_TIMEPOINTS)
            nib.save(nib.Cifti2Image(bold.T.astype(np.float32), header=(series, brain_models)), str(path))
            files.append(path)

        output = estimate_template("cifti", files, group_path, inds=[2, 4, 5],
                                   out_prefix=tmp_path / "tmpl")

        assert output.result.mean.shape == (80, 3)
        img = nib.load(str(tmp_path / "tmpl_mean.dscalar.nii"))
        assert list(img.header.get_axis(0).name) == ["IC 2", "IC 4", "IC 5"]
        assert img.get_fdata().shape == (3, 80)
