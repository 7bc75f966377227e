"""
Procrustes linear models and allometry.

This module fits multivariate linear models to Procrustes shape variables
and evaluates each term with a Procrustes ANOVA. Significance comes from
randomized residual permutation (RRPP): for every term, residuals of the
model without that term are shuffled among specimens, added back to its
fitted values, and the term's F statistic is recomputed.

Based on Goodall (1991), Collyer et al. (2015) "A method for analysis of
phenotypic change for phenotypes described by high-dimensional data" and
Drake & Klingenberg (2008) for regression scores.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Mapping

import numpy as np
import pandas as pd
import scipy.linalg as sp

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

logger = logging.getLogger(__name__)

ANOVA_COLUMNS = ["Df", "SS", "MS", "Rsq", "F", "Z", "Pr(>F)"]


@dataclass
class ProcrustesANOVA:
    """Result of a Procrustes linear model.

    Attributes:
        table: ANOVA table indexed by term, with ``Residuals`` and ``Total`` rows
        coefficients: Model coefficients, shape (n_parameters, n_coords)
        fitted: Fitted shapes, shape (n_landmarks, n_dims, n_specimens)
        residuals: Residual shapes, shape (n_landmarks, n_dims, n_specimens)
        design: Design matrix, one column per parameter
        random_f: F statistic of each term in every permutation
            (the observed value first)
    """

    table: pd.DataFrame
    coefficients: NDArray[np.floating]
    fitted: NDArray[np.floating]
    residuals: NDArray[np.floating]
    design: pd.DataFrame
    random_f: dict[str, NDArray[np.floating]] = field(default_factory=dict)

    @property
    def iterations(self) -> int:
        first = next(iter(self.random_f.values()), None)
        return 0 if first is None else first.size - 1


@dataclass
class AllometryResult:
    """Result of an allometry analysis.

    Attributes:
        anova: Procrustes ANOVA of shape on size (and group terms, if any)
        size: Size variable used as predictor (log centroid size by default)
        regression_scores: Shape projected on the size regression vector
        predicted_line: First principal component of the fitted values
        corrected: Size-corrected shapes (residuals of the size model added
            to the consensus), shape (n_landmarks, n_dims, n_specimens)
        groups: Group label of each specimen, if groups were given
    """

    anova: ProcrustesANOVA
    size: NDArray[np.floating]
    regression_scores: NDArray[np.floating]
    predicted_line: NDArray[np.floating]
    corrected: NDArray[np.floating]
    groups: NDArray[np.object_] | None = None


def procd_lm(
    landmarks: NDArray[np.floating],
    terms: Mapping[str, ArrayLike],
    iterations: int = 999,
    seed: int | None = None,
) -> ProcrustesANOVA:
    """Fit a Procrustes linear model with sequential (type I) sums of squares.

    Args:
        landmarks: Aligned coordinates, shape (n_landmarks, n_dims, n_specimens)
        terms: Ordered mapping of term name to predictor. A 1D numeric array
            is a covariate; a 1D array of strings (or a categorical) is a
            factor, dummy coded with the first level dropped; a 2D numeric
            array is used as given (e.g. interaction columns).
        iterations: Number of random permutations
        seed: Seed for the permutation generator

    Returns:
        ProcrustesANOVA with ANOVA table, coefficients, fitted values and residuals

    Raises:
        ValueError: If a predictor length does not match the specimens, a term
            adds no information to the model, or there are no residual degrees
            of freedom
    """
    n_landmarks, n_dims, n_specimens = landmarks.shape
    y = _specimen_matrix(landmarks)

    blocks = [pd.DataFrame({"(Intercept)": np.ones(n_specimens)})]
    for name, values in terms.items():
        blocks.append(_term_columns(name, values, n_specimens))

    # Nested designs: intercept, intercept + term 1, ...
    designs = [
        pd.concat(blocks[: j + 1], axis=1).to_numpy(dtype=float)
        for j in range(len(blocks))
    ]
    ranks = [np.linalg.matrix_rank(x) for x in designs]
    residual_makers = [np.eye(n_specimens) - _hat(x) for x in designs]

    names = list(terms.keys())
    dfs = []
    for j, name in enumerate(names, start=1):
        df = ranks[j] - ranks[j - 1]
        if df == 0:
            raise ValueError(f"Term '{name}' adds no information to the model")
        dfs.append(df)

    df_residual = n_specimens - ranks[-1]
    if df_residual <= 0:
        raise ValueError(
            f"No residual degrees of freedom: {n_specimens} specimens, "
            f"{ranks[-1]} model parameters"
        )

    full_maker = residual_makers[-1]
    rng = np.random.default_rng(seed)
    permutations = [np.arange(n_specimens)] + [
        rng.permutation(n_specimens) for _ in range(iterations)
    ]

    random_f = {}
    observed_ss = []
    for j, name in enumerate(names, start=1):
        reduced_maker = residual_makers[j - 1]
        term_maker = residual_makers[j]
        reduced_residuals = reduced_maker @ y
        reduced_fitted = y - reduced_residuals

        f_values = np.zeros(len(permutations))
        for r, perm in enumerate(permutations):
            y_random = reduced_fitted + reduced_residuals[perm]
            ss = _rss(reduced_maker, y_random) - _rss(term_maker, y_random)
            rss = _rss(full_maker, y_random)
            f_values[r] = (ss / dfs[j - 1]) / (rss / df_residual) if rss > 0 else np.inf
            if r == 0:
                observed_ss.append(ss)
        random_f[name] = f_values

    ss_total = _rss(residual_makers[0], y)
    ss_residual = _rss(full_maker, y)

    rows = []
    for j, name in enumerate(names):
        f_values = random_f[name]
        ss = observed_ss[j]
        rows.append(
            {
                "Df": dfs[j],
                "SS": ss,
                "MS": ss / dfs[j],
                "Rsq": ss / ss_total if ss_total > 0 else np.nan,
                "F": f_values[0],
                "Z": effect_size(f_values),
                "Pr(>F)": p_value(f_values),
            }
        )
    rows.append(
        {
            "Df": df_residual,
            "SS": ss_residual,
            "MS": ss_residual / df_residual,
            "Rsq": ss_residual / ss_total if ss_total > 0 else np.nan,
        }
    )
    rows.append({"Df": n_specimens - 1, "SS": ss_total})
    table = pd.DataFrame(
        rows, index=names + ["Residuals", "Total"], columns=ANOVA_COLUMNS
    )

    design = pd.concat(blocks, axis=1)
    full = designs[-1]
    coefficients = sp.lstsq(full, y)[0]
    fitted = y - full_maker @ y

    logger.debug(
        "Procrustes ANOVA on %d specimens, %d terms, %d permutations",
        n_specimens,
        len(names),
        iterations,
    )

    return ProcrustesANOVA(
        table=table,
        coefficients=coefficients,
        fitted=_landmark_array(fitted, n_landmarks, n_dims),
        residuals=_landmark_array(y - fitted, n_landmarks, n_dims),
        design=design,
        random_f=random_f,
    )


def allometry(
    landmarks: NDArray[np.floating],
    centroid_sizes: ArrayLike,
    groups: ArrayLike | None = None,
    iterations: int = 999,
    seed: int | None = None,
    log_size: bool = True,
) -> AllometryResult:
    """Test for allometry: the association of shape with size.

    Fits ``shape ~ size``, or, with groups,
    ``shape ~ size + group + size:group`` so that the interaction term tests
    homogeneity of allometric slopes among groups.

    Args:
        landmarks: Aligned coordinates, shape (n_landmarks, n_dims, n_specimens)
        centroid_sizes: Centroid size of each specimen
        groups: Optional group label of each specimen
        iterations: Number of random permutations
        seed: Seed for the permutation generator
        log_size: If True (default), use log centroid size as predictor

    Returns:
        AllometryResult
    """
    n_landmarks, n_dims, n_specimens = landmarks.shape
    sizes = np.asarray(centroid_sizes, dtype=float)
    if sizes.shape != (n_specimens,):
        raise ValueError(
            f"Expected {n_specimens} centroid sizes, got {sizes.shape[0]}"
        )
    if log_size:
        if (sizes <= 0).any():
            raise ValueError("Centroid sizes must be positive to take logarithms")
        sizes = np.log(sizes)
    size_name = "log(Csize)" if log_size else "Csize"

    terms: dict[str, ArrayLike] = {size_name: sizes}
    labels = None
    if groups is not None:
        labels = np.asarray(groups, dtype=object)
        if pd.Series(labels).nunique() < 2:
            logger.warning("Only one group present; fitting shape on size alone")
        else:
            dummies = _term_columns("group", labels, n_specimens)
            terms["group"] = labels
            terms[f"{size_name}:group"] = dummies.to_numpy(dtype=float) * sizes[:, None]

    anova = procd_lm(landmarks, terms, iterations=iterations, seed=seed)

    y = _specimen_matrix(landmarks)
    y_centered = y - y.mean(axis=0)

    # Regression vector of the size term
    slope = anova.coefficients[1]
    norm = np.linalg.norm(slope)
    if norm > 0:
        regression_scores = y_centered @ (slope / norm)
    else:
        regression_scores = np.zeros(n_specimens)

    fitted = _specimen_matrix(anova.fitted)
    fitted_centered = fitted - fitted.mean(axis=0)
    u, s, vt = sp.svd(fitted_centered, full_matrices=False)
    predicted_line = fitted_centered @ vt[0]
    if np.corrcoef(predicted_line, sizes)[0, 1] < 0:
        predicted_line = -predicted_line

    corrected = size_corrected(landmarks, sizes)

    logger.info(
        "Allometry: Rsq=%.4f F=%.3f P=%.4f for %s",
        anova.table.loc[size_name, "Rsq"],
        anova.table.loc[size_name, "F"],
        anova.table.loc[size_name, "Pr(>F)"],
        size_name,
    )

    return AllometryResult(
        anova=anova,
        size=sizes,
        regression_scores=regression_scores,
        predicted_line=predicted_line,
        corrected=corrected,
        groups=labels,
    )


def size_corrected(
    landmarks: NDArray[np.floating],
    size: ArrayLike,
) -> NDArray[np.floating]:
    """Remove the linear effect of size from shape.

    Returns the residuals of ``shape ~ size`` added to the mean shape.

    Args:
        landmarks: Aligned coordinates, shape (n_landmarks, n_dims, n_specimens)
        size: Size predictor of each specimen (already log transformed if wanted)

    Returns:
        Corrected coordinates, shape (n_landmarks, n_dims, n_specimens)
    """
    n_landmarks, n_dims, n_specimens = landmarks.shape
    y = _specimen_matrix(landmarks)
    x = np.column_stack([np.ones(n_specimens), np.asarray(size, dtype=float)])
    residuals = y - x @ sp.lstsq(x, y)[0]
    return _landmark_array(residuals + y.mean(axis=0), n_landmarks, n_dims)


def effect_size(random_values: NDArray[np.floating]) -> float:
    """Standardized effect size (Z) of the first value in a permutation distribution.

    Computed on log-transformed statistics.
    """
    values = np.asarray(random_values, dtype=float)
    finite = values[np.isfinite(values) & (values > 0)]
    if finite.size < 2 or not np.isfinite(values[0]) or values[0] <= 0:
        return np.nan
    logs = np.log(finite)
    sd = logs.std(ddof=1)
    if sd == 0:
        return np.nan
    return float((np.log(values[0]) - logs.mean()) / sd)


def p_value(random_values: NDArray[np.floating]) -> float:
    """Proportion of permutations at least as extreme as the first (observed) value."""
    values = np.asarray(random_values, dtype=float)
    observed = values[0]
    tolerance = 1e-10 * max(abs(observed), 1.0)
    return float(np.mean(values >= observed - tolerance))


def _term_columns(name: str, values: ArrayLike, n_specimens: int) -> pd.DataFrame:
    """Code one model term as design matrix columns."""
    array = np.asarray(values)
    if array.shape[0] != n_specimens:
        raise ValueError(
            f"Term '{name}' has {array.shape[0]} values for {n_specimens} specimens"
        )

    if array.ndim == 2:
        columns = [f"{name}{i + 1}" for i in range(array.shape[1])]
        return pd.DataFrame(array.astype(float), columns=columns)
    if array.ndim != 1:
        raise ValueError(f"Term '{name}' must be 1D or 2D, got {array.ndim}D")

    if isinstance(values, pd.Categorical) or not np.issubdtype(array.dtype, np.number):
        categories = pd.Categorical(values)
        dummies = pd.get_dummies(categories, prefix=name, drop_first=True, dtype=float)
        return dummies.reset_index(drop=True)

    return pd.DataFrame({name: array.astype(float)})


def _hat(x: NDArray[np.floating]) -> NDArray[np.floating]:
    return x @ sp.pinv(x)


def _rss(residual_maker: NDArray[np.floating], y: NDArray[np.floating]) -> float:
    return float(np.sum((residual_maker @ y) ** 2))


def _specimen_matrix(landmarks: NDArray[np.floating]) -> NDArray[np.floating]:
    """One row per specimen: (n_specimens, n_landmarks * n_dims)."""
    n_landmarks, n_dims, n_specimens = landmarks.shape
    return landmarks.transpose(2, 0, 1).reshape(n_specimens, n_landmarks * n_dims)


def _landmark_array(
    matrix: NDArray[np.floating],
    n_landmarks: int,
    n_dims: int,
) -> NDArray[np.floating]:
    return matrix.reshape(-1, n_landmarks, n_dims).transpose(1, 2, 0)
