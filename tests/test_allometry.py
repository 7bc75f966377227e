"""Tests for allometry module."""

import numpy as np
import pytest

from conftest import make_specimens
from gmorph import allometry, generalized_procrustes, procd_lm, size_corrected
from gmorph.allometry import effect_size, p_value


@pytest.fixture
def aligned_with_sizes():
    landmarks, _ = make_specimens(n_specimens=40, seed=7)
    result = generalized_procrustes(landmarks)
    return result.aligned, result.centroid_sizes


class TestPermutationStatistics:
    def test_p_value_counts_observed(self):
        assert p_value(np.array([5.0, 1.0, 2.0, 6.0])) == 0.5

    def test_p_value_smallest_possible(self):
        assert p_value(np.array([10.0, 1.0, 2.0, 3.0])) == 0.25

    def test_effect_size_positive_for_extreme_observation(self):
        values = np.concatenate([[20.0], np.random.default_rng(0).uniform(0.5, 2.0, 99)])

        assert effect_size(values) > 2

    def test_effect_size_undefined_without_spread(self):
        assert np.isnan(effect_size(np.ones(10)))


class TestProcdLm:
    def test_table_layout(self, aligned_with_sizes):
        aligned, sizes = aligned_with_sizes

        fit = procd_lm(aligned, {"log(Csize)": np.log(sizes)}, iterations=9, seed=1)

        assert list(fit.table.index) == ["log(Csize)", "Residuals", "Total"]
        assert list(fit.table.columns) == ["Df", "SS", "MS", "Rsq", "F", "Z", "Pr(>F)"]
        assert fit.table.loc["log(Csize)", "Df"] == 1
        assert fit.table.loc["Residuals", "Df"] == 38
        assert fit.table.loc["Total", "Df"] == 39
        assert fit.iterations == 9

    def test_sums_of_squares_add_up(self, aligned_with_sizes):
        aligned, sizes = aligned_with_sizes
        groups = np.array(["a", "b"] * 20, dtype=object)

        fit = procd_lm(aligned, {"size": np.log(sizes), "group": groups}, iterations=9, seed=1)

        table = fit.table
        np.testing.assert_almost_equal(
            table.loc[["size", "group", "Residuals"], "SS"].sum(), table.loc["Total", "SS"]
        )
        np.testing.assert_almost_equal(
            table.loc[["size", "group", "Residuals"], "Rsq"].sum(), 1.0
        )

    def test_fitted_plus_residuals(self, aligned_with_sizes):
        aligned, sizes = aligned_with_sizes

        fit = procd_lm(aligned, {"size": np.log(sizes)}, iterations=0)

        np.testing.assert_array_almost_equal(fit.fitted + fit.residuals, aligned)

    def test_factor_coding(self, aligned_with_sizes):
        aligned, _ = aligned_with_sizes
        groups = np.array(["gill net", "seine", "trap", "seine"] * 10, dtype=object)

        fit = procd_lm(aligned, {"gear": groups}, iterations=0)

        assert list(fit.design.columns) == ["(Intercept)", "gear_seine", "gear_trap"]
        assert fit.table.loc["gear", "Df"] == 2

    def test_strong_size_effect_is_significant(self, aligned_with_sizes):
        aligned, sizes = aligned_with_sizes

        fit = procd_lm(aligned, {"size": np.log(sizes)}, iterations=99, seed=3)

        assert fit.table.loc["size", "Rsq"] > 0.5
        assert fit.table.loc["size", "Pr(>F)"] <= 0.05
        assert fit.table.loc["size", "Z"] > 2

    def test_same_seed_same_result(self, aligned_with_sizes):
        aligned, sizes = aligned_with_sizes

        a = procd_lm(aligned, {"size": np.log(sizes)}, iterations=19, seed=11)
        b = procd_lm(aligned, {"size": np.log(sizes)}, iterations=19, seed=11)

        np.testing.assert_array_equal(a.random_f["size"], b.random_f["size"])

    def test_collinear_term_raises(self, aligned_with_sizes):
        aligned, _ = aligned_with_sizes

        with pytest.raises(ValueError, match="adds no information"):
            procd_lm(aligned, {"constant": np.full(40, 3.0)}, iterations=0)

    def test_wrong_length_raises(self, aligned_with_sizes):
        aligned, sizes = aligned_with_sizes

        with pytest.raises(ValueError, match="39 values for 40 specimens"):
            procd_lm(aligned, {"size": sizes[:-1]}, iterations=0)


class TestAllometry:
    def test_regression_scores_track_size(self, aligned_with_sizes):
        aligned, sizes = aligned_with_sizes

        result = allometry(aligned, sizes, iterations=19, seed=1)

        assert abs(np.corrcoef(result.regression_scores, np.log(sizes))[0, 1]) > 0.9
        assert np.corrcoef(result.predicted_line, np.log(sizes))[0, 1] > 0.9
        np.testing.assert_array_almost_equal(result.size, np.log(sizes))

    def test_raw_size(self, aligned_with_sizes):
        aligned, sizes = aligned_with_sizes

        result = allometry(aligned, sizes, iterations=0, log_size=False)

        assert "Csize" in result.anova.table.index
        np.testing.assert_array_almost_equal(result.size, sizes)

    def test_group_model_terms(self, aligned_with_sizes):
        aligned, sizes = aligned_with_sizes
        groups = np.array(["macrochirus", "cyanellus"] * 20, dtype=object)

        result = allometry(aligned, sizes, groups=groups, iterations=9, seed=1)

        assert list(result.anova.table.index) == [
            "log(Csize)",
            "group",
            "log(Csize):group",
            "Residuals",
            "Total",
        ]
        assert list(result.groups) == list(groups)

    def test_single_group_falls_back_to_size_only(self, aligned_with_sizes):
        aligned, sizes = aligned_with_sizes

        result = allometry(aligned, sizes, groups=["one"] * 40, iterations=0)

        assert list(result.anova.table.index) == ["log(Csize)", "Residuals", "Total"]

    def test_corrected_shapes_have_no_size_signal(self, aligned_with_sizes):
        aligned, sizes = aligned_with_sizes

        result = allometry(aligned, sizes, iterations=0)
        refit = procd_lm(result.corrected, {"size": np.log(sizes)}, iterations=0)

        np.testing.assert_almost_equal(refit.table.loc["size", "SS"], 0.0)
        np.testing.assert_array_almost_equal(
            result.corrected.mean(axis=2), aligned.mean(axis=2)
        )

    def test_nonpositive_size_raises(self, aligned_with_sizes):
        aligned, sizes = aligned_with_sizes
        sizes = sizes.copy()
        sizes[0] = 0.0

        with pytest.raises(ValueError, match="must be positive"):
            allometry(aligned, sizes, iterations=0)

    def test_size_count_mismatch_raises(self, aligned_with_sizes):
        aligned, sizes = aligned_with_sizes

        with pytest.raises(ValueError, match="Expected 40 centroid sizes"):
            allometry(aligned, sizes[:10], iterations=0)


class TestSizeCorrected:
    def test_shape_preserved(self, aligned_with_sizes):
        aligned, sizes = aligned_with_sizes

        corrected = size_corrected(aligned, np.log(sizes))

        assert corrected.shape == aligned.shape
