"""
gmorph - landmark-based geometric morphometrics.

A Python library for analysing 2D (and 3D) landmark data: Generalized
Procrustes Analysis with sliding semilandmarks, Procrustes ANOVA for
allometry, Principal Component Analysis of shape and morphological
disparity tests, plus the figures that go with them.

Example usage:
    >>> import gmorph
    >>>
    >>> # Load landmark data and metadata
    >>> data = gmorph.read_tps("fish.tps", spec_id="id", neg_na=True)
    >>> meta = gmorph.match_metadata(data.ids, gmorph.read_metadata("env.csv", "ID"))
    >>>
    >>> # Perform GPA
    >>> result = gmorph.generalized_procrustes(data.landmarks)
    >>>
    >>> # Test allometry and run PCA on aligned data
    >>> allo = gmorph.allometry(result.aligned, result.centroid_sizes, iterations=999)
    >>> pca_result = gmorph.pca(result.aligned)
    >>>
    >>> # Compare disparity among species
    >>> disp = gmorph.morphological_disparity(result.aligned, meta["Species"])
"""

from gmorph.allometry import (
    AllometryResult,
    ProcrustesANOVA,
    allometry,
    procd_lm,
    size_corrected,
)
from gmorph.config import AnalysisConfig, ConfigError, load_config
from gmorph.disparity import DisparityResult, morphological_disparity
from gmorph.gpa import (
    GPAResult,
    align,
    center,
    centroid_size,
    define_sliders,
    estimate_missing,
    find_outliers,
    generalized_procrustes,
    mean_shape,
    procrustes_distance,
    project_to_tangent,
    scale,
)
from gmorph.io import (
    TPSData,
    match_metadata,
    read_metadata,
    read_tps,
    subset_specimens,
    write_tps,
)
from gmorph.pca import (
    PCAResult,
    pc_extremes,
    pca,
    project_to_pc_space,
    scores_frame,
    warp_along_pc,
)
from gmorph.pipeline import AnalysisResults, run_analysis

__version__ = "0.1.0"

__all__ = [
    # Version
    "__version__",
    # GPA functions
    "GPAResult",
    "generalized_procrustes",
    "center",
    "scale",
    "align",
    "mean_shape",
    "centroid_size",
    "procrustes_distance",
    "project_to_tangent",
    "define_sliders",
    "estimate_missing",
    "find_outliers",
    # PCA functions
    "PCAResult",
    "pca",
    "pc_extremes",
    "warp_along_pc",
    "project_to_pc_space",
    "scores_frame",
    # Linear models
    "ProcrustesANOVA",
    "AllometryResult",
    "procd_lm",
    "allometry",
    "size_corrected",
    # Disparity
    "DisparityResult",
    "morphological_disparity",
    # I/O functions
    "TPSData",
    "read_tps",
    "write_tps",
    "read_metadata",
    "match_metadata",
    "subset_specimens",
    # Analysis run
    "AnalysisConfig",
    "ConfigError",
    "load_config",
    "AnalysisResults",
    "run_analysis",
]
