"""
Re-embed template estimates into native imaging containers and write them.

Outputs follow ``{out_prefix}_mean.<ext>`` and ``{out_prefix}_var.<ext>``,
where the variance file holds the between-subject (signal) variance. When
flat voxels were removed from a volumetric mask, the refined mask is written
as ``{out_prefix}_mask.nii.gz``.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from templateica.config import ConfigurationError
from templateica.estimation.estimator import TemplateResult
from templateica.io.base import ModalityAdapter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssembledTemplate:
    """Template images in the modality's native container."""
    mean: Any
    variance: Any
    names: Tuple[str, ...]
    mask: Optional[Any] = None  # refined volumetric mask, if it changed


def check_output_prefix(out_prefix: Union[str, Path]) -> Path:
    """Fail early when the directory part of an output prefix does not exist."""
    out_prefix = Path(out_prefix)
    if not out_prefix.parent.is_dir():
        raise ConfigurationError(
            f"Directory part of the output prefix does not exist: {out_prefix.parent}"
        )
    return out_prefix


class ResultAssembler:
    """
    Turn a :class:`TemplateResult` into native images.

    Parameters
    ----------
    adapter : ModalityAdapter
        Adapter built from the group map the result was estimated against.
    """

    def __init__(self, adapter: ModalityAdapter):
        self.adapter = adapter

    def assemble(self, result: TemplateResult) -> AssembledTemplate:
        layout = self.adapter.restricted(result.kept_locations)
        names = tuple(result.component_names)

        mask = None
        if result.n_flat_locations and hasattr(layout, "mask_image"):
            mask = layout.mask_image()

        return AssembledTemplate(
            mean=layout.reembed(result.mean, names),
            variance=layout.reembed(result.signal_variance, names),
            names=names,
            mask=mask,
        )

    def write(self, assembled: AssembledTemplate, out_prefix: Union[str, Path]) -> Dict[str, Path]:
        """
        Write the assembled template next to ``out_prefix``.

        Returns
        -------
        dict
            Paths keyed by 'mean', 'var' and (when written) 'mask'.
        """
        out_prefix = check_output_prefix(out_prefix)
        logger.info("Writing template files with prefix %s", out_prefix)

        paths = {
            'mean': self.adapter.save(assembled.mean, self.adapter.output_path(out_prefix, 'mean')),
            'var': self.adapter.save(assembled.variance, self.adapter.output_path(out_prefix, 'var')),
        }
        if assembled.mask is not None:
            paths['mask'] = self.adapter.save(assembled.mask, Path(f"{out_prefix}_mask.nii.gz"))
        return paths
