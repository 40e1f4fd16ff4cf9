"""
End-to-end template estimation from files.

Wires a modality adapter, the split-half provider, the estimator and the
result assembler together, and optionally writes the template and a run
summary next to an output prefix.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional, Sequence, Union

from templateica.estimation.assembler import (
    AssembledTemplate,
    ResultAssembler,
    check_output_prefix,
)
from templateica.estimation.estimator import TemplateEstimator, TemplateResult
from templateica.estimation.manifest import EstimationManifest
from templateica.estimation.split_half import SplitHalfProvider
from templateica.io import open_group_map, resolve_file_list
from templateica.io.base import ModalityAdapter

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass
class EstimationOutput:
    """Everything produced by :func:`estimate_template`."""
    template: AssembledTemplate
    result: TemplateResult
    manifest: EstimationManifest
    adapter: ModalityAdapter
    paths: Dict[str, Path] = field(default_factory=dict)

    @property
    def mean(self):
        return self.template.mean

    @property
    def var(self):
        return self.template.variance

    @property
    def mask(self):
        return self.template.mask


def estimate_template(
    modality: str,
    bold_files: Union[PathLike, Sequence[PathLike]],
    group_map: PathLike,
    retest_files: Optional[Union[PathLike, Sequence[PathLike]]] = None,
    mask: Optional[PathLike] = None,
    medial_wall: Optional[PathLike] = None,
    brainstructures: Union[str, Iterable[str]] = ('left', 'right'),
    inds: Optional[Sequence[int]] = None,
    scale: bool = True,
    out_prefix: Optional[PathLike] = None,
    should_stop: Optional[Callable[[], bool]] = None,
) -> EstimationOutput:
    """
    Estimate a template ICA prior from a set of subject recordings.

    Parameters
    ----------
    modality : str
        'gifti', 'cifti' or 'nifti'.
    bold_files : path or sequence of paths
        Subject recordings, or a text file listing one path per line.
    group_map : path
        Group ICA maps in the same modality.
    retest_files : path or sequence of paths, optional
        Second session per subject, in the same order as ``bold_files``.
        Without it each recording is split into two halves in time.
    mask : path, optional
        Binary 3D mask (required for 'nifti').
    medial_wall : path, optional
        Vertex flags or 1-based vertex indices to analyse ('gifti').
    brainstructures : str or sequence
        CIFTI sub-structures to analyse ('cifti').
    inds : sequence of int, optional
        1-based indices of the group components to keep. Default: all.
    scale : bool
        Scale each half by its spatial standard deviation.
    out_prefix : path, optional
        If given, write ``{out_prefix}_mean``, ``{out_prefix}_var`` (and a
        refined ``_mask.nii.gz``), plus ``_summary.json`` and
        ``_subjects.tsv``.
    should_stop : callable, optional
        Checked between subjects; returning True cancels the run.

    Returns
    -------
    EstimationOutput
    """
    if out_prefix is not None:
        out_prefix = check_output_prefix(out_prefix)

    sources = resolve_file_list(bold_files)
    retest_sources = resolve_file_list(retest_files) if retest_files is not None else None

    logger.info("Reading group ICA maps from %s", group_map)
    adapter = open_group_map(
        modality,
        group_map,
        mask=mask,
        medial_wall=medial_wall,
        brainstructures=brainstructures,
    )

    provider = SplitHalfProvider(
        adapter.load,
        sources,
        retest_sources=retest_sources,
        require_equal_length=adapter.drops_flat_locations,
    )
    logger.info(
        "Using %s test-retest data",
        "true" if provider.retest else "pseudo (split-half)",
    )

    estimator = TemplateEstimator(
        adapter.group_map,
        inds=inds,
        scale=scale,
        detect_flat_locations=adapter.drops_flat_locations,
        should_stop=should_stop,
    )
    result = estimator.fit(provider)

    assembler = ResultAssembler(adapter)
    template = assembler.assemble(result)

    paths: Dict[str, Path] = {}
    if out_prefix is not None:
        paths = assembler.write(template, out_prefix)
        paths['summary'] = Path(f"{out_prefix}_summary.json")
        paths['subjects'] = Path(f"{out_prefix}_subjects.tsv")

    manifest = EstimationManifest.from_result(
        result,
        modality=modality,
        group_map=Path(group_map),
        subjects=provider.labels,
        retest=provider.retest,
        outputs=paths,
    )
    if out_prefix is not None:
        manifest.save(paths['summary'])
        manifest.save_subject_table(paths['subjects'])

    logger.info("\n%s", manifest.summary())
    return EstimationOutput(
        template=template,
        result=result,
        manifest=manifest,
        adapter=adapter,
        paths=paths,
    )
