"""
Dual regression of a single subject against group ICA maps.

Gives the subject-level spatial maps that a template is built from, in the
same container as the input, e.g. for inspecting one subject before adding
it to a training set.
"""

import logging
from pathlib import Path
from typing import Optional, Union

from templateica.dual_regression import DualRegressionResult, center_columns, dual_regress
from templateica.estimation.assembler import check_output_prefix
from templateica.estimation.estimator import validate_scale
from templateica.io.base import ModalityAdapter, component_names

logger = logging.getLogger(__name__)


def run_subject_dual_regression(
    bold_file: Union[str, Path],
    adapter: ModalityAdapter,
    scale: bool = True,
    out_prefix: Optional[Union[str, Path]] = None,
):
    """
    Dual-regress one recording and re-embed its spatial maps.

    Parameters
    ----------
    bold_file : Path
        Subject recording in the adapter's modality.
    adapter : ModalityAdapter
        Adapter built from the group ICA file.
    scale : bool
        Scale the data by its spatial standard deviation first.
    out_prefix : Path, optional
        If given, write ``{out_prefix}_dr.<ext>``.

    Returns
    -------
    img
        Native image holding one map per group component (``IC 1`` ...).
    result : DualRegressionResult
        Spatial maps (components x locations) and time courses.
    """
    scale = validate_scale(scale)
    if out_prefix is not None:
        out_prefix = check_output_prefix(out_prefix)

    logger.info("Reading %s", bold_file)
    bold = adapter.load(bold_file)
    logger.info(
        "Dual regression: %d locations, %d time points, %d components",
        bold.shape[0], bold.shape[1], adapter.n_components,
    )

    result: DualRegressionResult = dual_regress(bold, center_columns(adapter.group_map), scale=scale)
    img = adapter.reembed(result.spatial_maps.T, component_names(range(1, adapter.n_components + 1)))

    if out_prefix is not None:
        adapter.save(img, adapter.output_path(out_prefix, 'dr'))
    return img, result
