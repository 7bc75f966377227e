"""Tests for config module."""

import json

import pytest

from gmorph import ConfigError, load_config
from gmorph.config import config_from_dict


def write_config(path, **values):
    base = {"tps_file": "data/fish.tps", "metadata_file": "data/env.csv"}
    base.update(values)
    path.write_text(json.dumps(base))
    return path


class TestLoadConfig:
    def test_paths_resolved_against_config_dir(self, tmp_path):
        path = write_config(tmp_path / "analysis.json", output_dir="figures")

        config = load_config(path)

        assert config.tps_file == tmp_path / "data" / "fish.tps"
        assert config.metadata_file == tmp_path / "data" / "env.csv"
        assert config.output_dir == tmp_path / "figures"
        assert config.log_file is None

    def test_defaults(self, tmp_path):
        config = load_config(write_config(tmp_path / "analysis.json"))

        assert config.id_column == "ID"
        assert config.neg_na is True
        assert config.iterations == 999
        assert config.species == []
        assert config.metadata_selection() is None

    def test_dataset_parameters(self, tmp_path):
        path = write_config(
            tmp_path / "analysis.json",
            metadata_columns=[0, 10],
            group_column="Gear",
            species=["Lepomis macrochirus", "Lepomis cyanellus"],
            palette={"Seine": "#1b9e77", "Electrofishing": "#d95f02"},
            xlim=[-0.1, 0.1],
            sliders=[[0, 8, 9, 10, 1]],
            seed=42,
        )

        config = load_config(path)

        assert config.metadata_selection() == slice(0, 10)
        assert config.palette["Seine"] == "#1b9e77"
        assert config.sliders == [[0, 8, 9, 10, 1]]
        assert config.seed == 42

    def test_metadata_column_names(self, tmp_path):
        path = write_config(tmp_path / "analysis.json", metadata_columns=["Gear", "Temp"])

        config = load_config(path)

        assert config.metadata_selection() == ["Gear", "Temp"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "nope.json")

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{tps_file: ")

        with pytest.raises(ConfigError, match="Failed to parse JSON"):
            load_config(path)

    def test_not_an_object(self, tmp_path):
        path = tmp_path / "list.json"
        path.write_text("[1, 2]")

        with pytest.raises(ConfigError, match="must be a JSON object"):
            load_config(path)


class TestConfigFromDict:
    def test_unknown_keys(self):
        with pytest.raises(ConfigError, match="Unknown config keys: colour"):
            config_from_dict({"tps_file": "a.tps", "metadata_file": "b.csv", "colour": "red"})

    def test_required_keys(self):
        with pytest.raises(ConfigError, match="Missing required config keys: metadata_file"):
            config_from_dict({"tps_file": "a.tps"})

    @pytest.mark.parametrize(
        "values, message",
        [
            ({"spec_id": "filename"}, "spec_id"),
            ({"slide_method": "spline"}, "slide_method"),
            ({"missing_method": "regression"}, "missing_method"),
            ({"metadata_columns": [1, 2, 3]}, "metadata_columns"),
            ({"metadata_columns": ["Gear", 3]}, "metadata_columns"),
            ({"metadata_columns": []}, "metadata_columns"),
            ({"iterations": -1}, "iterations"),
            ({"pc_x": 0}, "1-indexed"),
            ({"ylim": [1.0]}, "ylim"),
            ({"sliders": [[0, 1]]}, "at least 3"),
            ({"links": [[0, 1, 2]]}, "pair"),
        ],
    )
    def test_invalid_values(self, values, message):
        raw = {"tps_file": "a.tps", "metadata_file": "b.csv", **values}

        with pytest.raises(ConfigError, match=message):
            config_from_dict(raw)
