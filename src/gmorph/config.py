"""
Analysis configuration.

Every dataset-specific choice of an analysis run (input files, metadata
column offsets, grouping columns, palettes, plot limits, permutation
counts) lives in a JSON file loaded into :class:`AnalysisConfig`.
Relative paths are resolved against the directory of the JSON file.
"""

from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from gmorph.gpa import SLIDE_METHODS
from gmorph.io import SPEC_ID_MODES


class ConfigError(ValueError):
    """Raised when the analysis configuration is missing or invalid."""


@dataclass
class AnalysisConfig:
    tps_file: Path
    metadata_file: Path
    id_column: str = "ID"
    spec_id: str = "id"
    read_curves: bool = False
    neg_na: bool = True
    metadata_sep: str = ","
    na_values: list[str] = field(default_factory=lambda: ["NA"])
    # [start, stop) column offsets, or column names, of the metadata table
    metadata_columns: list[int] | list[str] | None = None

    group_column: str | None = None
    species_column: str = "Species"
    species: list[str] = field(default_factory=list)
    palette: dict[str, str] | str | None = None
    species_palette: dict[str, str] | str | None = None

    sliders: list[list[int]] = field(default_factory=list)
    slide_method: str = "bending_energy"
    missing_method: str = "tps"
    size_correct: bool = False
    links: list[list[int]] = field(default_factory=list)

    pc_x: int = 1
    pc_y: int = 2
    xlim: list[float] | None = None
    ylim: list[float] | None = None
    magnification: float = 1.0

    iterations: int = 999
    seed: int | None = None

    output_dir: Path | None = None
    show: bool = True
    log_file: Path | None = None
    log_level: str = "INFO"

    def metadata_selection(self) -> slice | list[str] | None:
        if self.metadata_columns is None:
            return None
        if all(isinstance(c, str) for c in self.metadata_columns):
            return list(self.metadata_columns)
        return slice(*self.metadata_columns)

    def validate(self) -> None:
        """Check value ranges; raise ConfigError on the first problem."""
        if self.spec_id.lower() not in SPEC_ID_MODES:
            raise ConfigError(f"spec_id must be one of {', '.join(SPEC_ID_MODES)}")
        if self.slide_method not in SLIDE_METHODS:
            raise ConfigError(f"slide_method must be one of {', '.join(SLIDE_METHODS)}")
        if self.missing_method not in ("tps", "mean"):
            raise ConfigError("missing_method must be one of tps, mean")
        if self.metadata_columns is not None:
            _check_metadata_columns(self.metadata_columns)
        if self.iterations < 0:
            raise ConfigError("iterations must not be negative")
        if self.pc_x < 1 or self.pc_y < 1:
            raise ConfigError("pc_x and pc_y are 1-indexed")
        for name in ("xlim", "ylim"):
            value = getattr(self, name)
            if value is not None and len(value) != 2:
                raise ConfigError(f"{name} must be [min, max]")
        for curve in self.sliders:
            if len(curve) < 3:
                raise ConfigError("each slider curve needs at least 3 landmark indices")
        for link in self.links:
            if len(link) != 2:
                raise ConfigError("each link must be a pair of landmark indices")


def _check_metadata_columns(columns: list) -> None:
    if columns and all(isinstance(c, str) for c in columns):
        return
    offsets = all(isinstance(c, int) and not isinstance(c, bool) for c in columns)
    if not offsets or len(columns) not in (1, 2):
        raise ConfigError(
            "metadata_columns must be [stop], [start, stop] or a list of column names"
        )


_PATH_FIELDS = ("tps_file", "metadata_file", "output_dir", "log_file")


def load_config(path: str | Path) -> AnalysisConfig:
    """Load an analysis configuration from JSON.

    Raises:
        ConfigError: If the file is missing, is not valid JSON, lacks
            required keys, has unknown keys, or holds invalid values
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Config file not found at: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Failed to parse JSON at {path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"Config at {path} must be a JSON object")

    return config_from_dict(raw, base_dir=path.parent)


def config_from_dict(raw: dict[str, Any], base_dir: str | Path = ".") -> AnalysisConfig:
    """Build a validated AnalysisConfig from a plain dict."""
    known = {f.name for f in dataclasses.fields(AnalysisConfig)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")

    missing = [name for name in ("tps_file", "metadata_file") if name not in raw]
    if missing:
        raise ConfigError(f"Missing required config keys: {', '.join(missing)}")

    values = dict(raw)
    base_dir = Path(base_dir)
    for name in _PATH_FIELDS:
        if values.get(name) is not None:
            values[name] = base_dir / Path(values[name]).expanduser()

    config = AnalysisConfig(**values)
    config.validate()
    return config
