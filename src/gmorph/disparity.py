"""
Morphological disparity among groups.

Disparity is measured as Procrustes variance: the sum of squared
Procrustes distances of a group's specimens from a mean, divided by the
group size. Pairwise differences in disparity are tested by permuting
residuals among specimens while keeping group membership fixed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
import pandas as pd

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

logger = logging.getLogger(__name__)


@dataclass
class DisparityResult:
    """Result of a morphological disparity test.

    Attributes:
        variances: Procrustes variance of each group
        differences: Pairwise absolute differences in Procrustes variance
        p_values: Pairwise permutation p-values
        iterations: Number of random permutations
    """

    variances: pd.Series
    differences: pd.DataFrame
    p_values: pd.DataFrame
    iterations: int


def procrustes_variance(
    residuals: NDArray[np.floating],
    groups: NDArray[np.object_],
    levels: list,
    denominator: int | None = None,
) -> NDArray[np.floating]:
    """Procrustes variance of each group from a residual matrix.

    Args:
        residuals: One row per specimen, shape (n_specimens, n_coords)
        groups: Group label of each specimen
        levels: Groups to report, in order
        denominator: If given, divide every group's sum of squares by this
            instead of the group size (partial disparity)

    Returns:
        Array of variances, one per level
    """
    squared = np.sum(residuals**2, axis=1)
    variances = np.zeros(len(levels))
    for i, level in enumerate(levels):
        member = groups == level
        n = denominator if denominator is not None else member.sum()
        variances[i] = squared[member].sum() / n
    return variances


def morphological_disparity(
    landmarks: NDArray[np.floating],
    groups: ArrayLike,
    around: str = "grand_mean",
    partial: bool = False,
    iterations: int = 999,
    seed: int | None = None,
) -> DisparityResult:
    """Compare Procrustes variances among groups.

    Args:
        landmarks: Aligned coordinates, shape (n_landmarks, n_dims, n_specimens)
        groups: Group label of each specimen
        around: ``"grand_mean"`` measures each group's spread about the overall
            mean; ``"group_mean"`` about its own mean
        partial: If True, compute partial disparities (sums of squares divided
            by total sample size minus one), which add up to the total
        iterations: Number of random permutations
        seed: Seed for the permutation generator

    Returns:
        DisparityResult with variances, pairwise differences and p-values

    Raises:
        ValueError: If fewer than two groups are present or ``around`` is unknown
    """
    if around not in ("grand_mean", "group_mean"):
        raise ValueError(
            f"Unknown reference: {around}. Supported: grand_mean, group_mean"
        )

    n_landmarks, n_dims, n_specimens = landmarks.shape
    labels = np.asarray(groups, dtype=object)
    if labels.shape != (n_specimens,):
        raise ValueError(f"Expected {n_specimens} group labels, got {labels.shape[0]}")

    levels = list(pd.unique(pd.Series(labels)))
    if len(levels) < 2:
        raise ValueError("Morphological disparity needs at least two groups")

    y = landmarks.transpose(2, 0, 1).reshape(n_specimens, n_landmarks * n_dims)
    if around == "grand_mean":
        residuals = y - y.mean(axis=0)
    else:
        residuals = y.copy()
        for level in levels:
            member = labels == level
            residuals[member] -= y[member].mean(axis=0)

    denominator = n_specimens - 1 if partial else None
    rng = np.random.default_rng(seed)

    observed = procrustes_variance(residuals, labels, levels, denominator)
    observed_diff = np.abs(observed[:, None] - observed[None, :])

    exceed = np.ones_like(observed_diff)
    for _ in range(iterations):
        perm = rng.permutation(n_specimens)
        random = procrustes_variance(residuals[perm], labels, levels, denominator)
        random_diff = np.abs(random[:, None] - random[None, :])
        exceed += random_diff >= observed_diff - 1e-12
    p_values = exceed / (iterations + 1)
    np.fill_diagonal(p_values, 1.0)

    names = [str(level) for level in levels]
    variances = pd.Series(observed, index=names, name="Procrustes variance")

    logger.info(
        "Disparity among %d groups: %s",
        len(levels),
        ", ".join(f"{name}={value:.6f}" for name, value in variances.items()),
    )

    return DisparityResult(
        variances=variances,
        differences=pd.DataFrame(observed_diff, index=names, columns=names),
        p_values=pd.DataFrame(p_values, index=names, columns=names),
        iterations=iterations,
    )
