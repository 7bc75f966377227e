"""Tests for plotting module."""

import matplotlib.pyplot as plt
import numpy as np
import pytest

from gmorph import find_outliers, generalized_procrustes, morphological_disparity, pca
from gmorph import plotting


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close("all")


@pytest.fixture
def aligned(specimens):
    return generalized_procrustes(specimens)


@pytest.fixture
def groups(specimens):
    return np.array(["Seine", "Electrofishing", "Gill net"] * (specimens.shape[2] // 3), dtype=object)


class TestGroupColors:
    def test_palette_name(self):
        colors = plotting.group_colors(["a", "b", "a", "c"], "Set1")

        assert list(colors) == ["a", "b", "c"]

    def test_mapping(self):
        colors = plotting.group_colors(["a", "b"], {"a": "red", "b": "blue", "c": "green"})

        assert colors == {"a": "red", "b": "blue"}

    def test_mapping_missing_group(self, caplog):
        colors = plotting.group_colors(["a", "b"], {"a": "red"})

        assert colors == {"a": "red", "b": plotting.SPECIMEN_COLOR}
        assert "no color for groups b" in caplog.text


class TestPlots:
    def test_plot_specimens(self, aligned):
        fig = plotting.plot_specimens(
            aligned.aligned, aligned.mean_shape, links=[[0, 1], [1, 2]], label_landmarks=True
        )

        ax = fig.axes[0]
        assert len(ax.collections) == 2
        assert len(ax.lines) == 2

    def test_plot_specimens_rejects_3d(self):
        with pytest.raises(ValueError, match="Only 2D"):
            plotting.plot_specimens(np.zeros((4, 3, 2)))

    def test_plot_outliers(self, aligned):
        table = find_outliers(aligned.distances)

        fig = plotting.plot_outliers(table)

        assert fig.axes[0].get_ylabel() == "Procrustes distance"

    @pytest.mark.parametrize("method", ["tps", "vector", "points"])
    def test_plot_reference_to_target(self, aligned, method):
        target = aligned.aligned[:, :, 0]

        fig = plotting.plot_reference_to_target(aligned.mean_shape, target, method=method, mag=2.0)

        assert len(fig.axes) == 1

    def test_plot_reference_to_target_unknown_method(self, aligned):
        with pytest.raises(ValueError, match="Unknown method"):
            plotting.plot_reference_to_target(aligned.mean_shape, aligned.mean_shape, method="surface")

    def test_plot_pca_with_groups(self, aligned, groups):
        result = pca(aligned.aligned)

        fig = plotting.plot_pca(
            result.scores,
            result.variance_explained,
            groups=groups,
            palette={"Seine": "tab:blue", "Electrofishing": "tab:orange", "Gill net": "tab:green"},
            xlim=(-0.1, 0.1),
            ylim=(-0.05, 0.05),
        )

        ax = fig.axes[0]
        assert ax.get_xlabel().startswith("PC1 (")
        assert ax.get_xlim() == (-0.1, 0.1)
        assert [t.get_text() for t in ax.get_legend().get_texts()] == [
            "Seine",
            "Electrofishing",
            "Gill net",
        ]

    def test_plot_pca_invalid_pc(self, aligned):
        result = pca(aligned.aligned, n_components=3)

        with pytest.raises(ValueError, match="PC 4 is out of range"):
            plotting.plot_pca(result.scores, result.variance_explained, pc_y=4)

    def test_plot_allometry(self, aligned, groups):
        size = np.log(aligned.centroid_sizes)

        fig = plotting.plot_allometry(size, size * 2.0, groups=groups)

        assert fig.axes[0].get_ylabel() == "Regression score"

    def test_plot_disparity(self, aligned, groups):
        result = morphological_disparity(aligned.aligned, groups, iterations=0)

        fig = plotting.plot_disparity(result)

        assert len(fig.axes[0].patches) == 3


class TestFinishFigure:
    def test_saves_to_path(self, tmp_path, aligned):
        fig = plotting.plot_specimens(aligned.aligned)
        path = tmp_path / "figures" / "aligned.png"

        plotting.finish_figure(fig, path)

        assert path.exists()
        assert not plt.fignum_exists(fig.number)

    def test_no_path_no_show_just_closes(self, aligned):
        fig = plotting.plot_specimens(aligned.aligned)

        plotting.finish_figure(fig, show=False)

        assert not plt.fignum_exists(fig.number)
