"""
Template estimation for template ICA.

This module provides:
1. Split-half (test-retest or pseudo test-retest) subject data
2. Split-half dual regression and the mean / variance decomposition
3. Re-embedding of the template into GIFTI, CIFTI or NIfTI outputs
4. A JSON / TSV run summary
"""

from templateica.estimation.assembler import (
    AssembledTemplate,
    ResultAssembler,
    check_output_prefix,
)
from templateica.estimation.estimator import (
    EstimatorState,
    ExcludedSubject,
    TemplateEstimator,
    TemplateResult,
    find_flat_locations,
    validate_inds,
    validate_scale,
)
from templateica.estimation.manifest import EstimationManifest
from templateica.estimation.pipeline import EstimationOutput, estimate_template
from templateica.estimation.split_half import (
    SplitHalfProvider,
    SubjectHalves,
    split_pseudo_retest,
)
from templateica.estimation.variance import VarianceDecomposition, decompose_variance

__all__ = [
    # Data
    'SplitHalfProvider',
    'SubjectHalves',
    'split_pseudo_retest',
    # Estimation
    'EstimatorState',
    'ExcludedSubject',
    'TemplateEstimator',
    'TemplateResult',
    'VarianceDecomposition',
    'decompose_variance',
    'find_flat_locations',
    'validate_inds',
    'validate_scale',
    # Output
    'AssembledTemplate',
    'EstimationManifest',
    'ResultAssembler',
    'check_output_prefix',
    # Pipeline
    'EstimationOutput',
    'estimate_template',
]
