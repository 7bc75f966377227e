"""Shared fixtures: synthetic 2D landmark data with size-related shape change."""

import matplotlib

matplotlib.use("Agg")

import logging

import numpy as np
import pytest

from gmorph.io import write_tps

BASE_SHAPE = np.array(
    [
        [0.0, 0.0],
        [4.0, 0.2],
        [5.0, 1.0],
        [4.0, 1.8],
        [1.0, 1.6],
        [0.5, 0.8],
    ]
)

# Landmark 2 moves out (snout elongates) as size grows
ALLOMETRIC_DIRECTION = np.zeros_like(BASE_SHAPE)
ALLOMETRIC_DIRECTION[2] = [1.0, 0.0]


def rotation_2d(theta):
    return np.array([[np.cos(theta), -np.sin(theta)], [np.sin(theta), np.cos(theta)]])


def make_specimens(n_specimens=30, seed=0, noise=0.01, allometric_strength=0.5):
    """Build (landmarks, sizes) with shape linearly dependent on log size.

    Specimens are randomly rotated, scaled and translated.
    """
    rng = np.random.default_rng(seed)
    sizes = np.exp(rng.normal(1.0, 0.3, n_specimens))
    log_sizes = np.log(sizes)
    landmarks = np.zeros((BASE_SHAPE.shape[0], 2, n_specimens))
    for i in range(n_specimens):
        shape = (
            BASE_SHAPE
            + allometric_strength * (log_sizes[i] - log_sizes.mean()) * ALLOMETRIC_DIRECTION
            + rng.normal(0, noise, BASE_SHAPE.shape)
        )
        shape = shape @ rotation_2d(rng.uniform(-0.5, 0.5)) * sizes[i]
        landmarks[:, :, i] = shape + rng.uniform(50, 100, 2)
    return landmarks, sizes


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo configure_logging so caplog keeps seeing package records."""
    yield
    logger = logging.getLogger("gmorph")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def specimens():
    landmarks, _ = make_specimens()
    return landmarks


@pytest.fixture
def tps_text():
    """A small TPS file: 3 specimens, 4 landmarks, one curve of 3 points."""
    return """LM=4
1.0 2.0
3.0 2.0
3.0 4.0
1.0 4.0
CURVES=1
POINTS=3
1.5 2.0
2.0 2.0
2.5 2.0
IMAGE=fish_001.jpg
ID=F001
SCALE=0.5
LM=4
2.0 2.0
4.0 2.0
4.0 4.0
2.0 4.0
CURVES=1
POINTS=3
2.5 2.0
3.0 2.0
3.5 2.0
IMAGE=fish_002.jpg
ID=F002
SCALE=0.5
LM=4
1.0 1.0
3.0 1.0
-1 -1
1.0 3.0
CURVES=1
POINTS=3
1.5 1.0
2.0 1.0
2.5 1.0
IMAGE=C:\\photos\\fish_003.JPG
ID=F003
COMMENT=damaged fin
SCALE=0.5
"""


def write_dataset(directory, n_specimens=30, seed=0, missing=False):
    """Write a TPS file and a matching metadata table; return their paths."""
    landmarks, _ = make_specimens(n_specimens=n_specimens, seed=seed)
    if missing:
        landmarks[3, :, 5] = np.nan
    ids = [f"S{i:03d}" for i in range(n_specimens)]
    tps_path = directory / "specimens.tps"
    write_tps(tps_path, landmarks, ids=ids)

    rng = np.random.default_rng(seed)
    species = ["Lepomis macrochirus", "Lepomis cyanellus", "Micropterus salmoides"]
    gears = ["Electrofishing", "Seine", "Gill net"]
    rows = ["ID,Species,Gear,Length,Weight,Temp,DO,pH,Conductivity,Turbidity"]
    # Listed in reverse to check that rows are matched by identifier
    for i in reversed(range(n_specimens)):
        rows.append(
            ",".join(
                [
                    ids[i],
                    species[i % 3],
                    gears[(i // 3) % 3],
                    f"{rng.uniform(50, 200):.1f}",
                    f"{rng.uniform(5, 150):.1f}",
                    f"{rng.uniform(10, 30):.1f}",
                    "NA" if i == 4 else f"{rng.uniform(4, 12):.2f}",
                    f"{rng.uniform(6.5, 8.5):.2f}",
                    f"{rng.uniform(100, 600):.0f}",
                    f"{rng.uniform(0, 50):.1f}",
                ]
            )
        )
    metadata_path = directory / "environment.csv"
    metadata_path.write_text("\n".join(rows) + "\n")
    return tps_path, metadata_path
