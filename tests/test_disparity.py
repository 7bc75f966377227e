"""Tests for disparity module."""

import numpy as np
import pytest

from gmorph import morphological_disparity
from gmorph.disparity import procrustes_variance


@pytest.fixture
def two_groups():
    """40 specimens around a common mean; group 'wide' is five times noisier."""
    rng = np.random.default_rng(5)
    mean = np.array([[0.0, 0.0], [1.0, 0.0], [1.0, 1.0], [0.0, 1.0], [0.5, 1.5]])
    landmarks = np.zeros((5, 2, 40))
    groups = np.array(["narrow"] * 20 + ["wide"] * 20, dtype=object)
    for i in range(40):
        spread = 0.01 if groups[i] == "narrow" else 0.05
        landmarks[:, :, i] = mean + rng.normal(0, spread, mean.shape)
    return landmarks, groups


class TestProcrustesVariance:
    def test_known_values(self):
        residuals = np.array([[1.0, 0.0], [0.0, 1.0], [2.0, 0.0], [0.0, 0.0]])
        groups = np.array(["a", "a", "b", "b"], dtype=object)

        variances = procrustes_variance(residuals, groups, ["a", "b"])

        np.testing.assert_array_almost_equal(variances, [1.0, 2.0])

    def test_partial_denominator(self):
        residuals = np.array([[1.0, 0.0], [0.0, 1.0], [2.0, 0.0], [0.0, 0.0]])
        groups = np.array(["a", "a", "b", "b"], dtype=object)

        variances = procrustes_variance(residuals, groups, ["a", "b"], denominator=3)

        np.testing.assert_array_almost_equal(variances, [2.0 / 3.0, 4.0 / 3.0])


class TestMorphologicalDisparity:
    def test_noisier_group_has_more_disparity(self, two_groups):
        landmarks, groups = two_groups

        result = morphological_disparity(landmarks, groups, iterations=199, seed=2)

        assert result.variances["wide"] > 5 * result.variances["narrow"]
        assert result.p_values.loc["narrow", "wide"] <= 0.05

    def test_group_mean_reference(self, two_groups):
        landmarks, groups = two_groups

        result = morphological_disparity(
            landmarks, groups, around="group_mean", iterations=199, seed=2
        )

        assert result.variances["wide"] > result.variances["narrow"]
        assert result.p_values.loc["wide", "narrow"] <= 0.05

    def test_tables_are_symmetric(self, two_groups):
        landmarks, groups = two_groups

        result = morphological_disparity(landmarks, groups, iterations=19, seed=2)

        np.testing.assert_array_almost_equal(result.differences, result.differences.T)
        np.testing.assert_array_almost_equal(result.p_values, result.p_values.T)
        np.testing.assert_array_equal(np.diag(result.p_values), [1.0, 1.0])
        assert result.iterations == 19

    def test_partial_disparities_sum_to_total(self, two_groups):
        landmarks, groups = two_groups

        result = morphological_disparity(landmarks, groups, partial=True, iterations=0)

        flat = landmarks.reshape(-1, 40).T
        total = np.sum((flat - flat.mean(axis=0)) ** 2) / 39
        np.testing.assert_almost_equal(result.variances.sum(), total)

    def test_group_order_follows_first_appearance(self, two_groups):
        landmarks, groups = two_groups

        result = morphological_disparity(landmarks, groups[::-1], iterations=0)

        assert list(result.variances.index) == ["wide", "narrow"]

    def test_single_group_raises(self, two_groups):
        landmarks, _ = two_groups

        with pytest.raises(ValueError, match="at least two groups"):
            morphological_disparity(landmarks, ["a"] * 40)

    def test_label_count_mismatch_raises(self, two_groups):
        landmarks, groups = two_groups

        with pytest.raises(ValueError, match="Expected 40 group labels"):
            morphological_disparity(landmarks, groups[:5])

    def test_unknown_reference_raises(self, two_groups):
        landmarks, groups = two_groups

        with pytest.raises(ValueError, match="Unknown reference"):
            morphological_disparity(landmarks, groups, around="median")
