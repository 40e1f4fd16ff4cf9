"""
templateica: population templates for template ICA.

Estimates per-component mean and variance maps from a cohort of resting-state
recordings and a group ICA decomposition, using split-half dual regression.

Submodules:
    dual_regression: Dual regression of a recording on group IC maps
    io: GIFTI / CIFTI / NIfTI modality adapters
    estimation: Split-half template estimation, assembly and run summaries
    single_subject: Subject-level dual regression against a group map
"""

__version__ = "0.1.0"
