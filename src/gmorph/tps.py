"""
Thin-plate spline (TPS) interpolation for landmark configurations.

This module provides the TPS kernel, the bending energy matrix of a
reference configuration, and point warping between configurations. It
backs semilandmark sliding, missing-landmark estimation and deformation
grid plots.

Based on Bookstein (1989) "Principal warps: thin-plate splines and the
decomposition of deformations".
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import scipy.linalg as sp

if TYPE_CHECKING:
    from numpy.typing import NDArray


def kernel(distances: NDArray[np.floating], n_dims: int) -> NDArray[np.floating]:
    """Evaluate the TPS radial basis function.

    Uses r^2 log(r^2) in two dimensions and -r in three.

    Args:
        distances: Euclidean distances, any shape
        n_dims: Dimensionality of the landmark space (2 or 3)

    Returns:
        Kernel values with the same shape as ``distances``
    """
    if n_dims == 2:
        r2 = distances**2
        with np.errstate(divide="ignore", invalid="ignore"):
            values = r2 * np.log(r2)
        return np.where(r2 > 0, values, 0.0)
    if n_dims == 3:
        return -distances
    raise ValueError(f"TPS is defined for 2D or 3D landmarks, got {n_dims}D")


def _system_matrix(reference: NDArray[np.floating]) -> NDArray[np.floating]:
    """Build the (p + k + 1) square TPS system matrix L for a reference."""
    n_landmarks, n_dims = reference.shape
    dists = np.linalg.norm(reference[:, None, :] - reference[None, :, :], axis=2)
    k = kernel(dists, n_dims)
    p = np.hstack([np.ones((n_landmarks, 1)), reference])

    size = n_landmarks + n_dims + 1
    system = np.zeros((size, size))
    system[:n_landmarks, :n_landmarks] = k
    system[:n_landmarks, n_landmarks:] = p
    system[n_landmarks:, :n_landmarks] = p.T
    return system


def bending_energy_matrix(reference: NDArray[np.floating]) -> NDArray[np.floating]:
    """Compute the bending energy matrix of a reference configuration.

    The bending energy of a deformation taking ``reference`` onto a target
    ``Y`` is ``trace(Y.T @ Be @ Y)``.

    Args:
        reference: Reference landmarks, shape (n_landmarks, n_dims)

    Returns:
        Bending energy matrix, shape (n_landmarks, n_landmarks)
    """
    n_landmarks = reference.shape[0]
    inverse = sp.pinv(_system_matrix(reference))
    return inverse[:n_landmarks, :n_landmarks]


def tps_coefficients(
    reference: NDArray[np.floating],
    target: NDArray[np.floating],
) -> tuple[NDArray[np.floating], NDArray[np.floating]]:
    """Solve for the TPS warp taking ``reference`` onto ``target``.

    Returns:
        Tuple ``(weights, affine)`` with shapes (n_landmarks, n_dims) and
        (n_dims + 1, n_dims)
    """
    if reference.shape != target.shape:
        raise ValueError(
            f"Reference and target shapes differ: {reference.shape} vs {target.shape}"
        )
    n_landmarks, n_dims = reference.shape
    if n_landmarks < n_dims + 1:
        raise ValueError(
            f"At least {n_dims + 1} landmarks are needed for a {n_dims}D TPS, "
            f"got {n_landmarks}"
        )

    rhs = np.vstack([target, np.zeros((n_dims + 1, n_dims))])
    solution = sp.lstsq(_system_matrix(reference), rhs)[0]
    return solution[:n_landmarks], solution[n_landmarks:]


def tps_transform(
    reference: NDArray[np.floating],
    target: NDArray[np.floating],
    points: NDArray[np.floating],
) -> NDArray[np.floating]:
    """Map arbitrary points through the TPS defined by reference -> target.

    Args:
        reference: Reference landmarks, shape (n_landmarks, n_dims)
        target: Target landmarks, shape (n_landmarks, n_dims)
        points: Points in reference space, shape (n_points, n_dims)

    Returns:
        Warped points, shape (n_points, n_dims)
    """
    weights, affine = tps_coefficients(reference, target)
    points = np.atleast_2d(points)
    n_dims = reference.shape[1]

    dists = np.linalg.norm(points[:, None, :] - reference[None, :, :], axis=2)
    basis = kernel(dists, n_dims)
    design = np.hstack([np.ones((points.shape[0], 1)), points])
    return design @ affine + basis @ weights


def deformation_grid(
    reference: NDArray[np.floating],
    target: NDArray[np.floating],
    n: int = 20,
    margin: float = 0.1,
) -> tuple[NDArray[np.floating], NDArray[np.floating]]:
    """Warp a regular grid laid over the reference onto the target.

    Args:
        reference: Reference landmarks, shape (n_landmarks, 2)
        target: Target landmarks, shape (n_landmarks, 2)
        n: Number of grid lines along the longer axis
        margin: Fraction of the landmark extent added on every side

    Returns:
        Tuple ``(grid_x, grid_y)`` of warped grid coordinates, each of
        shape (n_rows, n_cols)
    """
    if reference.shape[1] != 2:
        raise ValueError("Deformation grids are only drawn for 2D landmarks")

    lo = reference.min(axis=0)
    hi = reference.max(axis=0)
    extent = hi - lo
    lo = lo - margin * extent
    hi = hi + margin * extent
    extent = hi - lo

    # Keep grid cells square
    longest = extent.max()
    n_x = max(2, int(round(n * extent[0] / longest)))
    n_y = max(2, int(round(n * extent[1] / longest)))

    xs = np.linspace(lo[0], hi[0], n_x)
    ys = np.linspace(lo[1], hi[1], n_y)
    grid_x, grid_y = np.meshgrid(xs, ys)
    points = np.column_stack([grid_x.ravel(), grid_y.ravel()])

    warped = tps_transform(reference, target, points)
    return warped[:, 0].reshape(grid_x.shape), warped[:, 1].reshape(grid_y.shape)
