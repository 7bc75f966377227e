"""
The landmark analysis run.

:func:`run_analysis` reads a TPS file and its metadata table, superimposes
the configurations, tests for allometry, runs PCA and draws the figures,
then repeats allometry, PCA and a disparity test on a subset of species.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np
import pandas as pd

from gmorph import plotting
from gmorph.allometry import AllometryResult, allometry
from gmorph.config import AnalysisConfig
from gmorph.disparity import DisparityResult, morphological_disparity
from gmorph.gpa import (
    GPAResult,
    define_sliders,
    estimate_missing,
    find_outliers,
    generalized_procrustes,
)
from gmorph.io import TPSData, match_metadata, read_metadata, read_tps, subset_specimens
from gmorph.pca import PCAResult, pc_extremes, pca

logger = logging.getLogger(__name__)


@dataclass
class StageResults:
    """Everything computed for one set of specimens."""

    data: TPSData
    metadata: pd.DataFrame
    gpa: GPAResult
    outliers: pd.DataFrame
    allometry: AllometryResult
    pca: PCAResult
    disparity: DisparityResult | None = None


@dataclass
class AnalysisResults:
    full: StageResults
    species: StageResults | None = None
    figures: dict[str, Path | None] = field(default_factory=dict)


def run_analysis(config: AnalysisConfig) -> AnalysisResults:
    """Run the complete analysis described by ``config``."""
    figures: dict[str, Path | None] = {}

    logger.info("Reading landmarks from %s", config.tps_file)
    data = read_tps(
        config.tps_file,
        spec_id=config.spec_id,
        read_curves=config.read_curves,
        neg_na=config.neg_na,
    )
    logger.info(
        "Loaded %d specimens with %d landmarks",
        data.n_specimens,
        data.landmarks.shape[0],
    )

    logger.info("Reading metadata from %s", config.metadata_file)
    metadata = read_metadata(
        config.metadata_file,
        id_column=config.id_column,
        sep=config.metadata_sep,
        na_values=config.na_values,
        columns=config.metadata_selection(),
    )
    metadata = match_metadata(data.ids, metadata)

    if np.isnan(data.landmarks).any():
        data = dataclasses.replace(
            data,
            landmarks=estimate_missing(data.landmarks, method=config.missing_method),
        )

    sliders = build_sliders(config, data)
    if sliders is not None:
        logger.info("Sliding %d semilandmarks (%s)", len(sliders), config.slide_method)

    # Raw configurations, before superimposition
    _emit(
        config,
        figures,
        "all_raw_landmarks",
        plotting.plot_specimens(data.landmarks, title="Raw landmarks"),
    )

    plotting_groups = _labels(metadata, config.group_column)
    full = _analyse(
        config,
        data,
        metadata,
        sliders,
        groups=None,
        plot_groups=plotting_groups,
        palette=config.palette,
        prefix="all",
        figures=figures,
    )

    species = None
    if config.species:
        labels = _labels(metadata, config.species_column)
        mask = np.isin(labels, config.species)
        if not mask.any():
            raise ValueError(
                f"No specimens of species {', '.join(config.species)} "
                f"in column '{config.species_column}'"
            )
        logger.info(
            "Subsetting to %d specimens of %d species",
            int(mask.sum()),
            len(config.species),
        )
        sub_data = subset_specimens(data, mask)
        sub_meta = metadata.loc[mask]
        sub_labels = labels[mask]
        species = _analyse(
            config,
            sub_data,
            sub_meta,
            sliders,
            groups=sub_labels,
            plot_groups=sub_labels,
            palette=config.species_palette,
            prefix="species",
            figures=figures,
        )

        if pd.Series(sub_labels).nunique() >= 2:
            species.disparity = morphological_disparity(
                species.gpa.aligned,
                sub_labels,
                iterations=config.iterations,
                seed=config.seed,
            )
            logger.info(
                "Disparity p-values:\n%s", species.disparity.p_values.to_string()
            )
            _emit(
                config,
                figures,
                "species_disparity",
                plotting.plot_disparity(
                    species.disparity, palette=config.species_palette
                ),
            )
        else:
            logger.warning("Only one species in subset; skipping disparity test")

    return AnalysisResults(full=full, species=species, figures=figures)


def build_sliders(config: AnalysisConfig, data: TPSData) -> np.ndarray | None:
    """Slider triples from configured curves, or from the curves read from the file."""
    curves = config.sliders
    if not curves and config.read_curves:
        curves = [c for c in data.curve_indices() if len(c) >= 3]
    if not curves:
        return None

    n_landmarks = data.landmarks.shape[0]
    for curve in curves:
        if max(curve) >= n_landmarks or min(curve) < 0:
            raise ValueError(
                f"Slider curve {curve} references landmarks outside 0-{n_landmarks - 1}"
            )
    return np.vstack([define_sliders(curve) for curve in curves])


def _analyse(
    config: AnalysisConfig,
    data: TPSData,
    metadata: pd.DataFrame,
    sliders: np.ndarray | None,
    groups: np.ndarray | None,
    plot_groups: np.ndarray | None,
    palette,
    prefix: str,
    figures: dict[str, Path | None],
) -> StageResults:
    gpa_result = generalized_procrustes(
        data.landmarks,
        sliders=sliders,
        slide_method=config.slide_method,
    )
    logger.info(
        "[%s] Procrustes superimposition converged in %d iterations",
        prefix,
        gpa_result.iterations,
    )

    outliers = find_outliers(gpa_result.distances, data.ids)
    flagged = outliers.loc[outliers["outlier"], "id"].tolist()
    if flagged:
        logger.warning("[%s] Possible outliers: %s", prefix, ", ".join(flagged))

    _emit(
        config,
        figures,
        f"{prefix}_aligned",
        plotting.plot_specimens(
            gpa_result.aligned,
            gpa_result.mean_shape,
            links=config.links,
            title="Procrustes-aligned landmarks",
        ),
    )
    _emit(config, figures, f"{prefix}_outliers", plotting.plot_outliers(outliers))

    allometry_result = allometry(
        gpa_result.aligned,
        gpa_result.centroid_sizes,
        groups=groups,
        iterations=config.iterations,
        seed=config.seed,
    )
    logger.info("[%s] Allometry:\n%s", prefix, allometry_result.anova.table.to_string())
    _emit(
        config,
        figures,
        f"{prefix}_allometry",
        plotting.plot_allometry(
            allometry_result.size,
            allometry_result.regression_scores,
            groups=plot_groups,
            palette=palette,
        ),
    )

    shapes = allometry_result.corrected if config.size_correct else gpa_result.aligned
    pca_result = pca(shapes)
    logger.info(
        "[%s] PCA: %s",
        prefix,
        ", ".join(
            f"PC{i + 1}={v:.1%}"
            for i, v in enumerate(pca_result.variance_explained[:4])
        ),
    )
    _emit(
        config,
        figures,
        f"{prefix}_pca",
        plotting.plot_pca(
            pca_result.scores,
            pca_result.variance_explained,
            groups=plot_groups,
            palette=palette,
            pc_x=config.pc_x,
            pc_y=config.pc_y,
            xlim=config.xlim,
            ylim=config.ylim,
        ),
    )

    low, high = pc_extremes(pca_result, config.pc_x)
    for name, target in (("min", low), ("max", high)):
        _emit(
            config,
            figures,
            f"{prefix}_pc{config.pc_x}_{name}",
            plotting.plot_reference_to_target(
                pca_result.mean,
                target,
                mag=config.magnification,
                links=config.links,
                title=f"PC{config.pc_x} {name}",
            ),
        )

    return StageResults(
        data=data,
        metadata=metadata,
        gpa=gpa_result,
        outliers=outliers,
        allometry=allometry_result,
        pca=pca_result,
    )


def _labels(metadata: pd.DataFrame, column: str | None) -> np.ndarray | None:
    if column is None:
        return None
    if column not in metadata.columns:
        raise ValueError(f"Metadata has no column '{column}'")
    return metadata[column].fillna("NA").astype(str).to_numpy(dtype=object)


def _emit(config: AnalysisConfig, figures: dict, name: str, fig) -> None:
    path = None
    if config.output_dir is not None:
        path = Path(config.output_dir) / f"{name}.png"
    plotting.finish_figure(fig, path, show=config.show)
    figures[name] = path
