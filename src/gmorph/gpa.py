"""
Generalized Procrustes Analysis (GPA) functions.

This module provides functions for performing Generalized Procrustes Analysis
on 2D or 3D landmark data, including centering, scaling, alignment, sliding
of curve semilandmarks and estimation of missing landmarks.

Based on Dryden and Mardia (2016) "Statistical Shape Analysis" and
Gunz et al. (2005) for semilandmark sliding.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Sequence

import numpy as np
import pandas as pd
import scipy.linalg as sp

from gmorph.tps import bending_energy_matrix, tps_transform

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

SLIDE_METHODS = ("bending_energy", "procd")


@dataclass
class GPAResult:
    """Result of Generalized Procrustes Analysis.

    Attributes:
        aligned: Aligned landmark coordinates, shape (n_landmarks, n_dims, n_specimens)
        mean_shape: Consensus shape after alignment, shape (n_landmarks, n_dims)
        centroid_sizes: Centroid size of each specimen before alignment
        distances: Procrustes distance of each specimen to the consensus
        iterations: Number of alignment iterations performed
    """

    aligned: NDArray[np.floating]
    mean_shape: NDArray[np.floating]
    centroid_sizes: NDArray[np.floating]
    distances: NDArray[np.floating]
    iterations: int


def center(shape: NDArray[np.floating]) -> NDArray[np.floating]:
    """Center a shape by subtracting the centroid.

    Args:
        shape: Landmark coordinates, shape (n_landmarks, n_dims)

    Returns:
        Centered shape with centroid at origin
    """
    return shape - shape.mean(axis=0)


def scale(shape: NDArray[np.floating]) -> NDArray[np.floating]:
    """Scale a shape to unit centroid size (Frobenius norm).

    Args:
        shape: Landmark coordinates, shape (n_landmarks, n_dims)

    Returns:
        Scaled shape with unit centroid size
    """
    norm = np.linalg.norm(shape)
    if norm == 0:
        return shape
    return shape / norm


def centroid_size(shape: NDArray[np.floating]) -> float:
    """Compute the centroid size of a shape.

    Centroid size is the square root of the sum of squared distances
    from each landmark to the centroid.

    Args:
        shape: Landmark coordinates, shape (n_landmarks, n_dims)

    Returns:
        Centroid size (scalar)
    """
    centered = center(shape)
    return float(np.linalg.norm(centered))


def align(
    shape: NDArray[np.floating],
    reference: NDArray[np.floating],
) -> NDArray[np.floating]:
    """Align a shape to a reference shape using optimal rotation.

    Uses Singular Value Decomposition (SVD) to find the optimal
    rotation matrix that minimizes the Procrustes distance. Reflections
    are excluded: if the best orthogonal fit is improper, the axis with
    the smallest singular value is flipped back.

    Args:
        shape: Shape to align, shape (n_landmarks, n_dims)
        reference: Reference shape to align to, shape (n_landmarks, n_dims)

    Returns:
        Rotated shape aligned to reference
    """
    u, s, v = sp.svd(np.dot(reference.T, shape), full_matrices=True)
    rotation_matrix = np.dot(v.T, u.T)
    if np.linalg.det(rotation_matrix) < 0:
        v[-1, :] *= -1
        rotation_matrix = np.dot(v.T, u.T)
    return np.dot(shape, rotation_matrix)


def mean_shape(landmarks: NDArray[np.floating]) -> NDArray[np.floating]:
    """Compute the mean shape from multiple specimens.

    Args:
        landmarks: Landmark coordinates, shape (n_landmarks, n_dims, n_specimens)

    Returns:
        Mean shape, shape (n_landmarks, n_dims)
    """
    return landmarks.mean(axis=2)


def procrustes_distance(
    landmarks: NDArray[np.floating],
    reference: NDArray[np.floating],
) -> NDArray[np.floating]:
    """Compute Procrustes distances from each specimen to a reference shape.

    Args:
        landmarks: Aligned coordinates, shape (n_landmarks, n_dims, n_specimens)
        reference: Reference shape (e.g. mean), shape (n_landmarks, n_dims)

    Returns:
        Array of Procrustes distances, shape (n_specimens,)
    """
    n_specimens = landmarks.shape[2]
    distances = np.zeros(n_specimens)
    for i in range(n_specimens):
        diff = landmarks[:, :, i] - reference
        distances[i] = np.linalg.norm(diff, "fro")
    return distances


def define_sliders(sequence: Sequence[int]) -> NDArray[np.integer]:
    """Build slider triples from an ordered run of landmark indices.

    The first and last indices stay fixed; every index in between slides
    along the tangent given by its neighbours.

    Args:
        sequence: 0-indexed landmark indices in curve order, typically
            ``[anchor, semi_1, ..., semi_m, anchor]``

    Returns:
        Integer array of shape (n_sliders, 3) with columns
        (before, slider, after)
    """
    sequence = [int(i) for i in sequence]
    if len(sequence) < 3:
        raise ValueError("A curve needs at least 3 points to define a slider")
    return np.array(
        [
            (sequence[i - 1], sequence[i], sequence[i + 1])
            for i in range(1, len(sequence) - 1)
        ],
        dtype=int,
    )


def generalized_procrustes(
    landmarks: NDArray[np.floating],
    scale: bool = True,
    max_iterations: int = 10,
    tolerance: float = 0.0001,
    sliders: NDArray[np.integer] | None = None,
    slide_method: str = "bending_energy",
    project: bool = True,
) -> GPAResult:
    """Perform Generalized Procrustes Analysis on a set of landmark configurations.

    This function aligns multiple specimen landmark configurations to minimize
    the total Procrustes distance. The algorithm iteratively:
    1. Centers (and optionally scales) each specimen
    2. Slides semilandmarks against the current mean (if sliders are given)
    3. Aligns all specimens to the current mean shape
    4. Recomputes the mean shape
    5. Repeats until convergence

    Args:
        landmarks: Landmark coordinates, shape (n_landmarks, n_dims, n_specimens).
            Will be copied, not modified in place.
        scale: If True (default), scale specimens to unit centroid size.
            If False, perform Boas coordinates (no scaling).
        max_iterations: Maximum number of alignment iterations
        tolerance: Convergence threshold for mean shape change
        sliders: Optional (n_sliders, 3) array of (before, slider, after)
            landmark indices, see :func:`define_sliders`
        slide_method: ``"bending_energy"`` or ``"procd"`` (Procrustes distance)
        project: If True (and scaling), project the aligned shapes
            orthogonally into the tangent space at the consensus

    Returns:
        GPAResult containing aligned coordinates, mean shape, and centroid sizes

    Raises:
        ValueError: If the data contain missing values or an unknown
            slide method is requested
    """
    if np.isnan(landmarks).any():
        raise ValueError(
            "Landmark data contain missing values; run estimate_missing first"
        )
    if slide_method not in SLIDE_METHODS:
        raise ValueError(
            f"Unknown slide method: {slide_method}. "
            f"Supported: {', '.join(SLIDE_METHODS)}"
        )
    if sliders is not None:
        sliders = np.asarray(sliders, dtype=int).reshape(-1, 3)

    # Work on a copy
    aligned = np.array(landmarks, dtype=float, copy=True)
    n_landmarks, n_dims, n_specimens = aligned.shape

    # Compute centroid sizes before any transformations
    centroid_sizes = np.zeros(n_specimens)
    for i in range(n_specimens):
        centroid_sizes[i] = np.linalg.norm(
            aligned[:, :, i] - aligned[:, :, i].mean(axis=0)
        )

    # Center (and optionally scale) each specimen
    for i in range(n_specimens):
        aligned[:, :, i] = center(aligned[:, :, i])
        if scale:
            aligned[:, :, i] = _scale_shape(aligned[:, :, i])

    # Initial alignment to first specimen
    aligned = _procrustes_align_all(aligned[:, :, 0].copy(), aligned, scale=scale)

    # Compute initial mean
    current_mean = _normalized_mean(aligned, scale)

    # Iterate until convergence
    iterations = 0
    for iterations in range(1, max_iterations + 1):
        if sliders is not None and len(sliders):
            aligned = _slide_all(aligned, current_mean, sliders, slide_method, scale)
        aligned = _procrustes_align_all(current_mean, aligned, scale=scale)
        new_mean = _normalized_mean(aligned, scale)

        diff = np.linalg.norm(current_mean - new_mean)
        current_mean = new_mean

        if diff < tolerance:
            break
    else:
        logger.warning(
            "GPA did not converge within %d iterations (tolerance %g)",
            max_iterations,
            tolerance,
        )

    # Final re-centering for no-scale case
    if not scale:
        for i in range(n_specimens):
            aligned[:, :, i] = center(aligned[:, :, i])
    elif project:
        aligned = project_to_tangent(aligned, current_mean)
        current_mean = mean_shape(aligned)

    distances = procrustes_distance(aligned, current_mean)
    logger.debug(
        "GPA aligned %d specimens of %d landmarks in %d iterations",
        n_specimens,
        n_landmarks,
        iterations,
    )

    return GPAResult(
        aligned=aligned,
        mean_shape=current_mean,
        centroid_sizes=centroid_sizes,
        distances=distances,
        iterations=iterations,
    )


def project_to_tangent(
    aligned: NDArray[np.floating],
    reference: NDArray[np.floating],
) -> NDArray[np.floating]:
    """Orthogonally project aligned shapes into the tangent space at a reference.

    The component of each shape along the (unit size) reference is replaced
    by the reference itself, so every projected shape differs from the
    reference only by a vector orthogonal to it.

    Args:
        aligned: Aligned coordinates, shape (n_landmarks, n_dims, n_specimens)
        reference: Consensus shape, shape (n_landmarks, n_dims)

    Returns:
        Projected coordinates, shape (n_landmarks, n_dims, n_specimens)
    """
    n_landmarks, n_dims, n_specimens = aligned.shape
    ref = _scale_shape(reference).reshape(-1)
    projector = np.eye(ref.size) - np.outer(ref, ref)

    projected = np.zeros_like(aligned)
    for i in range(n_specimens):
        flat = aligned[:, :, i].reshape(-1)
        tangent = np.dot(flat, projector) + ref
        projected[:, :, i] = tangent.reshape(n_landmarks, n_dims)
    return projected


def estimate_missing(
    landmarks: NDArray[np.floating],
    method: str = "tps",
) -> NDArray[np.floating]:
    """Estimate missing (NaN) landmarks from the complete specimens.

    A reference is computed as the GPA consensus of the complete specimens,
    then mapped onto each incomplete specimen using its present landmarks,
    either by a thin-plate spline (``"tps"``) or by a similarity fit of
    the reference (``"mean"``).

    Args:
        landmarks: Coordinates with NaNs marking missing landmarks,
            shape (n_landmarks, n_dims, n_specimens)
        method: ``"tps"`` or ``"mean"``

    Returns:
        Copy of ``landmarks`` with missing values filled in

    Raises:
        ValueError: If fewer than two specimens are complete, an incomplete
            specimen has too few landmarks to fit, or the method is unknown
    """
    if method not in ("tps", "mean"):
        raise ValueError(f"Unknown estimation method: {method}. Supported: tps, mean")

    filled = np.array(landmarks, dtype=float, copy=True)
    n_landmarks, n_dims, n_specimens = filled.shape

    missing = np.isnan(filled).any(axis=1)
    incomplete = np.flatnonzero(missing.any(axis=0))
    if incomplete.size == 0:
        return filled

    complete = np.flatnonzero(~missing.any(axis=0))
    if complete.size < 2:
        raise ValueError(
            "At least two complete specimens are needed to estimate missing landmarks"
        )

    reference = generalized_procrustes(filled[:, :, complete], project=False).mean_shape

    for i in incomplete:
        absent = missing[:, i]
        present = ~absent
        if present.sum() < n_dims + 1:
            raise ValueError(
                f"Specimen {i} has only {present.sum()} landmarks present; "
                f"need at least {n_dims + 1}"
            )
        specimen = filled[:, :, i]
        if method == "tps":
            estimate = tps_transform(
                reference[present], specimen[present], reference[absent]
            )
        else:
            estimate = _similarity_fit(
                reference[present], specimen[present], reference[absent]
            )
        specimen[absent] = estimate
        logger.debug("Estimated %d missing landmarks for specimen %d", absent.sum(), i)

    logger.info(
        "Estimated %d missing landmarks across %d specimens",
        int(missing.sum()),
        incomplete.size,
    )
    return filled


def find_outliers(
    distances: NDArray[np.floating],
    ids: Sequence[str] | None = None,
) -> pd.DataFrame:
    """Rank specimens by Procrustes distance to the consensus.

    Specimens further than the upper quartile plus 1.5 times the
    interquartile range are flagged.

    Args:
        distances: Procrustes distances, shape (n_specimens,)
        ids: Optional specimen identifiers

    Returns:
        DataFrame with columns ``id``, ``distance``, ``outlier``, sorted by
        descending distance
    """
    distances = np.asarray(distances, dtype=float)
    if ids is None:
        ids = [str(i + 1) for i in range(distances.size)]
    q1, q3 = np.percentile(distances, [25, 75])
    threshold = q3 + 1.5 * (q3 - q1)

    frame = pd.DataFrame(
        {
            "id": list(ids),
            "distance": distances,
            "outlier": distances > threshold,
        }
    )
    frame = frame.sort_values("distance", ascending=False).reset_index(drop=True)
    frame.attrs["threshold"] = threshold
    return frame


def _scale_shape(shape: NDArray[np.floating]) -> NDArray[np.floating]:
    """Internal scale function (avoids name collision with scale parameter)."""
    norm = np.linalg.norm(shape)
    if norm == 0:
        return shape
    return shape / norm


def _normalized_mean(
    landmarks: NDArray[np.floating],
    scale: bool,
) -> NDArray[np.floating]:
    mean = mean_shape(landmarks)
    if scale:
        return _scale_shape(center(mean))
    return center(mean)


def _procrustes_align_all(
    reference: NDArray[np.floating],
    landmarks: NDArray[np.floating],
    scale: bool = True,
) -> NDArray[np.floating]:
    """Align all specimens to a reference shape."""
    n_specimens = landmarks.shape[2]

    if scale:
        ref = _scale_shape(reference)
    else:
        ref = center(reference)

    for i in range(n_specimens):
        aligned = align(landmarks[:, :, i], ref)
        if not scale:
            aligned = center(aligned)
        landmarks[:, :, i] = aligned

    return landmarks


def _slide_all(
    landmarks: NDArray[np.floating],
    reference: NDArray[np.floating],
    sliders: NDArray[np.integer],
    method: str,
    scale: bool,
) -> NDArray[np.floating]:
    """Slide semilandmarks of every specimen against the reference."""
    n_specimens = landmarks.shape[2]
    bending = bending_energy_matrix(reference) if method == "bending_energy" else None

    for i in range(n_specimens):
        slid = _slide_specimen(landmarks[:, :, i], reference, sliders, bending)
        slid = center(slid)
        if scale:
            slid = _scale_shape(slid)
        landmarks[:, :, i] = slid
    return landmarks


def _slide_specimen(
    shape: NDArray[np.floating],
    reference: NDArray[np.floating],
    sliders: NDArray[np.integer],
    bending: NDArray[np.floating] | None,
) -> NDArray[np.floating]:
    """Move each slider along its tangent to minimise bending energy or distance."""
    n_landmarks, n_dims = shape.shape
    before, slider, after = sliders[:, 0], sliders[:, 1], sliders[:, 2]

    tangents = shape[after] - shape[before]
    norms = np.linalg.norm(tangents, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    tangents = tangents / norms

    if bending is None:
        # Procrustes distance: project the residual onto each tangent
        steps = np.sum((reference[slider] - shape[slider]) * tangents, axis=1)
    else:
        # Column-major stacking: coordinate d of landmark j sits at d * p + j
        n_sliders = slider.size
        u = np.zeros((n_landmarks * n_dims, n_sliders))
        for d in range(n_dims):
            u[d * n_landmarks + slider, np.arange(n_sliders)] = tangents[:, d]
        big_bending = np.kron(np.eye(n_dims), bending)
        y = shape.reshape(-1, order="F")
        lhs = u.T @ big_bending @ u
        rhs = u.T @ big_bending @ y
        steps = -sp.lstsq(lhs, rhs)[0]

    slid = shape.copy()
    slid[slider] += steps[:, None] * tangents
    return slid


def _similarity_fit(
    source: NDArray[np.floating],
    target: NDArray[np.floating],
    points: NDArray[np.floating],
) -> NDArray[np.floating]:
    """Map points through the similarity transform fitting source onto target."""
    source_center = source.mean(axis=0)
    target_center = target.mean(axis=0)
    src = source - source_center
    tgt = target - target_center

    u, s, v = sp.svd(np.dot(tgt.T, src), full_matrices=True)
    rotation = np.dot(v.T, u.T)
    if np.linalg.det(rotation) < 0:
        v[-1, :] *= -1
        s[-1] *= -1
        rotation = np.dot(v.T, u.T)
    factor = s.sum() / np.sum(src**2) if np.sum(src**2) > 0 else 1.0

    return np.dot(points - source_center, rotation) * factor + target_center
