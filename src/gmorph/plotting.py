"""
Diagnostic and presentation figures for landmark data.

All functions draw with matplotlib and return the ``Figure``. Pass ``ax``
to draw into an existing axes; otherwise a new figure is created. Use
:func:`finish_figure` to save or show it.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Mapping, Sequence

import matplotlib.pyplot as plt
import numpy as np
import seaborn as sns
from scipy.spatial import ConvexHull

from gmorph.tps import deformation_grid

if TYPE_CHECKING:
    from matplotlib.axes import Axes
    from matplotlib.figure import Figure
    from numpy.typing import ArrayLike, NDArray

    from gmorph.disparity import DisparityResult

logger = logging.getLogger(__name__)

DEFAULT_PALETTE = "Set2"
MEAN_COLOR = "black"
SPECIMEN_COLOR = "lightgray"
GRID_COLOR = "gray"


def group_colors(
    groups: ArrayLike,
    palette: str | Sequence | Mapping | None = None,
) -> dict:
    """Map each group label to a color.

    Args:
        groups: Group label of each specimen
        palette: A mapping of label to color, a seaborn/matplotlib palette
            name, or a list of colors (assigned in order of first appearance).
            Labels a mapping does not cover get ``SPECIMEN_COLOR``.

    Returns:
        Dict of label -> color
    """
    levels = list(dict.fromkeys(np.asarray(groups, dtype=object).tolist()))
    if isinstance(palette, Mapping):
        missing = [level for level in levels if level not in palette]
        if missing:
            logger.warning(
                "Palette has no color for groups %s; drawing them in %s",
                ", ".join(map(str, missing)),
                SPECIMEN_COLOR,
            )
        return {level: palette.get(level, SPECIMEN_COLOR) for level in levels}

    colors = sns.color_palette(palette or DEFAULT_PALETTE, n_colors=len(levels))
    return {level: colors[i] for i, level in enumerate(levels)}


def plot_specimens(
    landmarks: NDArray[np.floating],
    mean: NDArray[np.floating] | None = None,
    links: Sequence[Sequence[int]] | None = None,
    label_landmarks: bool = False,
    ax: Axes | None = None,
    title: str | None = None,
) -> Figure:
    """Plot every specimen's landmarks with the consensus on top.

    Args:
        landmarks: Coordinates, shape (n_landmarks, 2, n_specimens)
        mean: Consensus shape; defaults to the landmark-wise mean
        links: Optional pairs of landmark indices to join with lines
        label_landmarks: If True, number the consensus landmarks
    """
    _require_2d(landmarks.shape[1])
    fig, ax = _figure(ax)
    if mean is None:
        mean = np.nanmean(landmarks, axis=2)

    ax.scatter(
        landmarks[:, 0, :].ravel(),
        landmarks[:, 1, :].ravel(),
        s=4,
        color=SPECIMEN_COLOR,
        label="Specimens",
    )
    _draw_links(ax, mean, links, color=MEAN_COLOR)
    ax.scatter(mean[:, 0], mean[:, 1], s=25, color=MEAN_COLOR, label="Consensus")
    if label_landmarks:
        for i, (x, y) in enumerate(mean):
            ax.annotate(
                str(i + 1),
                (x, y),
                textcoords="offset points",
                xytext=(3, 3),
                fontsize=7,
            )

    ax.set_aspect("equal")
    ax.legend(loc="best", fontsize=8)
    if title:
        ax.set_title(title)
    return fig


def plot_outliers(
    outliers,
    ax: Axes | None = None,
    title: str | None = "Procrustes distance from consensus",
) -> Figure:
    """Plot specimens ranked by Procrustes distance, outliers highlighted.

    Args:
        outliers: Table returned by :func:`gmorph.gpa.find_outliers`
    """
    fig, ax = _figure(ax)
    positions = np.arange(len(outliers))
    colors = np.where(outliers["outlier"], "tab:red", "tab:blue")

    ax.scatter(positions, outliers["distance"], c=colors, s=15)
    threshold = outliers.attrs.get("threshold")
    if threshold is not None:
        ax.axhline(threshold, color=GRID_COLOR, linestyle="--", linewidth=1)
    for pos, row in zip(positions, outliers.itertuples()):
        if row.outlier:
            ax.annotate(
                str(row.id),
                (pos, row.distance),
                textcoords="offset points",
                xytext=(3, 3),
                fontsize=7,
            )

    ax.set_xlabel("Specimen rank")
    ax.set_ylabel("Procrustes distance")
    if title:
        ax.set_title(title)
    return fig


def plot_reference_to_target(
    reference: NDArray[np.floating],
    target: NDArray[np.floating],
    method: str = "tps",
    mag: float = 1.0,
    links: Sequence[Sequence[int]] | None = None,
    grid_n: int = 20,
    ax: Axes | None = None,
    title: str | None = None,
) -> Figure:
    """Visualize the shape change from a reference to a target.

    Args:
        reference: Reference shape, shape (n_landmarks, 2)
        target: Target shape, shape (n_landmarks, 2)
        method: ``"tps"`` (deformation grid), ``"vector"`` (displacement
            arrows) or ``"points"`` (both configurations overlaid)
        mag: Magnification of the difference between reference and target
        links: Optional pairs of landmark indices to join with lines
        grid_n: Number of grid lines for the ``"tps"`` method
    """
    _require_2d(reference.shape[1])
    if method not in ("tps", "vector", "points"):
        raise ValueError(f"Unknown method: {method}. Supported: tps, vector, points")

    fig, ax = _figure(ax)
    target = reference + (target - reference) * mag

    if method == "tps":
        grid_x, grid_y = deformation_grid(reference, target, n=grid_n)
        ax.plot(grid_x, grid_y, color=GRID_COLOR, linewidth=0.5)
        ax.plot(grid_x.T, grid_y.T, color=GRID_COLOR, linewidth=0.5)
        _draw_links(ax, target, links, color=MEAN_COLOR)
        ax.scatter(target[:, 0], target[:, 1], s=20, color=MEAN_COLOR)
    elif method == "vector":
        _draw_links(ax, reference, links, color=SPECIMEN_COLOR)
        ax.scatter(reference[:, 0], reference[:, 1], s=20, color=MEAN_COLOR)
        delta = target - reference
        ax.quiver(
            reference[:, 0],
            reference[:, 1],
            delta[:, 0],
            delta[:, 1],
            angles="xy",
            scale_units="xy",
            scale=1,
            color="tab:red",
            width=0.004,
        )
    else:
        _draw_links(ax, reference, links, color=SPECIMEN_COLOR)
        _draw_links(ax, target, links, color=MEAN_COLOR)
        ax.scatter(
            reference[:, 0],
            reference[:, 1],
            s=20,
            color=SPECIMEN_COLOR,
            label="Reference",
        )
        ax.scatter(target[:, 0], target[:, 1], s=20, color=MEAN_COLOR, label="Target")
        ax.legend(loc="best", fontsize=8)

    ax.set_aspect("equal")
    ax.set_xticks([])
    ax.set_yticks([])
    if title:
        ax.set_title(title)
    return fig


def plot_pca(
    scores: NDArray[np.floating],
    variance_explained: NDArray[np.floating],
    groups: ArrayLike | None = None,
    palette: str | Sequence | Mapping | None = None,
    pc_x: int = 1,
    pc_y: int = 2,
    hulls: bool = True,
    xlim: Sequence[float] | None = None,
    ylim: Sequence[float] | None = None,
    point_size: float = 30,
    ax: Axes | None = None,
    title: str | None = None,
) -> Figure:
    """Scatter plot of PC scores, optionally colored by group.

    Args:
        scores: PC scores, shape (n_specimens, n_components)
        variance_explained: Proportion of variance of each PC
        groups: Optional group label of each specimen
        palette: Colors for groups, see :func:`group_colors`
        pc_x: PC number for the x-axis (1-indexed)
        pc_y: PC number for the y-axis (1-indexed)
        hulls: If True, outline each group with its convex hull
        xlim: Optional x-axis limits
        ylim: Optional y-axis limits
    """
    n_components = scores.shape[1]
    for pc in (pc_x, pc_y):
        if pc < 1 or pc > n_components:
            raise ValueError(f"PC {pc} is out of range. Available: 1-{n_components}")

    fig, ax = _figure(ax)
    x = scores[:, pc_x - 1]
    y = scores[:, pc_y - 1]

    if groups is None:
        ax.scatter(x, y, s=point_size, color="tab:blue", edgecolor="none")
    else:
        labels = np.asarray(groups, dtype=object)
        colors = group_colors(labels, palette)
        for level, color in colors.items():
            member = labels == level
            ax.scatter(
                x[member],
                y[member],
                s=point_size,
                color=color,
                edgecolor="none",
                label=str(level),
            )
            if hulls:
                _draw_hull(ax, np.column_stack([x[member], y[member]]), color)
        ax.legend(loc="best", fontsize=8, frameon=False)

    ax.axhline(0, color=GRID_COLOR, linewidth=0.5, zorder=0)
    ax.axvline(0, color=GRID_COLOR, linewidth=0.5, zorder=0)
    ax.set_xlabel(f"PC{pc_x} ({variance_explained[pc_x - 1] * 100:.1f}%)")
    ax.set_ylabel(f"PC{pc_y} ({variance_explained[pc_y - 1] * 100:.1f}%)")
    if xlim is not None:
        ax.set_xlim(*xlim)
    if ylim is not None:
        ax.set_ylim(*ylim)
    if title:
        ax.set_title(title)
    return fig


def plot_allometry(
    size: NDArray[np.floating],
    shape_scores: NDArray[np.floating],
    groups: ArrayLike | None = None,
    palette: str | Sequence | Mapping | None = None,
    xlabel: str = "log(Centroid size)",
    ylabel: str = "Regression score",
    ax: Axes | None = None,
    title: str | None = None,
) -> Figure:
    """Plot shape scores (regression score or predicted line) against size."""
    fig, ax = _figure(ax)

    if groups is None:
        ax.scatter(size, shape_scores, s=20, color="tab:blue", edgecolor="none")
        _draw_fit(ax, size, shape_scores, "tab:blue")
    else:
        labels = np.asarray(groups, dtype=object)
        for level, color in group_colors(labels, palette).items():
            member = labels == level
            ax.scatter(
                size[member],
                shape_scores[member],
                s=20,
                color=color,
                edgecolor="none",
                label=str(level),
            )
            _draw_fit(ax, size[member], shape_scores[member], color)
        ax.legend(loc="best", fontsize=8, frameon=False)

    ax.set_xlabel(xlabel)
    ax.set_ylabel(ylabel)
    if title:
        ax.set_title(title)
    return fig


def plot_disparity(
    result: DisparityResult,
    palette: str | Sequence | Mapping | None = None,
    ax: Axes | None = None,
    title: str | None = "Morphological disparity",
) -> Figure:
    """Bar chart of Procrustes variance per group."""
    fig, ax = _figure(ax)
    names = list(result.variances.index)
    colors = group_colors(names, palette)
    ax.bar(names, result.variances.to_numpy(), color=[colors[n] for n in names])
    ax.set_ylabel("Procrustes variance")
    if title:
        ax.set_title(title)
    return fig


def finish_figure(
    fig: Figure,
    path: str | Path | None = None,
    show: bool = True,
    dpi: int = 300,
) -> None:
    """Save a figure if a path is given, otherwise show it, then close it."""
    if path is not None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(path, dpi=dpi, bbox_inches="tight")
        logger.info("Saved figure to %s", path)
    elif show:
        plt.show()
    plt.close(fig)


def _figure(ax: Axes | None) -> tuple[Figure, Axes]:
    if ax is None:
        fig, ax = plt.subplots(figsize=(6, 5))
        return fig, ax
    return ax.figure, ax


def _require_2d(n_dims: int) -> None:
    if n_dims != 2:
        raise ValueError(f"Only 2D landmarks can be plotted, got {n_dims}D")


def _draw_links(ax: Axes, shape, links, color) -> None:
    if not links:
        return
    for a, b in links:
        ax.plot(
            [shape[a, 0], shape[b, 0]],
            [shape[a, 1], shape[b, 1]],
            color=color,
            linewidth=1,
        )


def _draw_hull(ax: Axes, points: NDArray[np.floating], color) -> None:
    if points.shape[0] < 3 or np.linalg.matrix_rank(points - points.mean(axis=0)) < 2:
        return
    hull = ConvexHull(points)
    vertices = np.append(hull.vertices, hull.vertices[0])
    ax.plot(points[vertices, 0], points[vertices, 1], color=color, linewidth=1)
    ax.fill(points[hull.vertices, 0], points[hull.vertices, 1], color=color, alpha=0.15)


def _draw_fit(ax: Axes, x, y, color) -> None:
    if len(x) < 2 or np.ptp(x) == 0:
        return
    slope, intercept = np.polyfit(x, y, 1)
    xs = np.array([np.min(x), np.max(x)])
    ax.plot(xs, intercept + slope * xs, color=color, linewidth=1)
