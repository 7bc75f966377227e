"""
I/O functions for reading and writing landmark and metadata files.

Supports:
- TPS format (.tps) - the tpsDig/tpsUtil landmark interchange format
- Delimited metadata tables (.csv, .txt, .tsv) keyed by specimen ID

TPS files hold one record per specimen: an ``LM=`` (``LM3=`` for 3D) count
followed by the fixed landmark coordinates, optional ``CURVES=``/``POINTS=`` blocks of
curve points, and ``IMAGE=``, ``ID=``, ``SCALE=`` and ``COMMENT=`` tags.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Sequence

import numpy as np
import pandas as pd

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

SPEC_ID_MODES = ("id", "imageid", "none")

_TAG = re.compile(r"^\s*([A-Za-z]+)\d?\s*=\s*(.*?)\s*$")


@dataclass
class TPSData:
    """Landmarks read from a TPS file.

    Attributes:
        landmarks: Coordinates, shape (n_landmarks, n_dims, n_specimens)
        ids: Specimen identifiers, one per specimen
        scales: Scale factor of each specimen (NaN where absent)
        n_fixed: Number of fixed landmarks (the ``LM=`` count)
        curve_points: Number of points in each curve appended after the
            fixed landmarks (empty unless curves were read)
        comments: ``COMMENT=`` value of each specimen (empty string if absent)
    """

    landmarks: NDArray[np.floating]
    ids: list[str]
    scales: NDArray[np.floating]
    n_fixed: int
    curve_points: list[int] = field(default_factory=list)
    comments: list[str] = field(default_factory=list)

    @property
    def n_specimens(self) -> int:
        return self.landmarks.shape[2]

    def curve_indices(self) -> list[list[int]]:
        """Landmark indices of each curve, in the order they were read."""
        indices = []
        start = self.n_fixed
        for n_points in self.curve_points:
            indices.append(list(range(start, start + n_points)))
            start += n_points
        return indices


@dataclass
class _Record:
    landmarks: list[list[float]] = field(default_factory=list)
    curves: list[list[list[float]]] = field(default_factory=list)
    tags: dict[str, str] = field(default_factory=dict)


def read_tps(
    filepath: str | Path,
    spec_id: str = "id",
    read_curves: bool = False,
    neg_na: bool = False,
    apply_scale: bool = True,
) -> TPSData:
    """Read landmarks from a TPS file.

    Args:
        filepath: Path to the .tps file
        spec_id: Where specimen identifiers come from: ``"id"`` (the ``ID=``
            tag), ``"imageid"`` (the ``IMAGE=`` tag without extension) or
            ``"none"`` (numbered from 1)
        read_curves: If True, append curve points after the fixed landmarks
        neg_na: If True, negative coordinates are treated as missing (NaN)
        apply_scale: If True, multiply coordinates by ``SCALE=`` when every
            specimen has one

    Returns:
        TPSData with landmarks of shape (n_landmarks, n_dims, n_specimens)

    Raises:
        FileNotFoundError: If file does not exist
        ValueError: If the file is malformed, specimens have inconsistent
            landmark counts, or identifiers cannot be resolved
    """
    filepath = Path(filepath)

    if not filepath.exists():
        raise FileNotFoundError(f"File not found: {filepath}")

    spec_id = spec_id.lower()
    if spec_id not in SPEC_ID_MODES:
        raise ValueError(
            f"Unsupported spec_id: {spec_id}. Supported: {', '.join(SPEC_ID_MODES)}"
        )

    text = filepath.read_text(encoding="utf-8", errors="replace")
    records = _parse_tps(text.splitlines(), filepath)
    if not records:
        raise ValueError(f"No specimens found in {filepath}")

    # Assemble coordinate blocks per specimen
    blocks = []
    for record in records:
        points = list(record.landmarks)
        if read_curves:
            for curve in record.curves:
                points.extend(curve)
        blocks.append(points)

    n_fixed = len(records[0].landmarks)
    curve_points = [len(c) for c in records[0].curves] if read_curves else []
    n_landmarks = len(blocks[0])
    n_dims = len(blocks[0][0]) if n_landmarks else 0
    if n_landmarks == 0:
        raise ValueError(f"No landmarks found in {filepath}")

    landmarks = np.zeros((n_landmarks, n_dims, len(records)))
    for i, (record, points) in enumerate(zip(records, blocks)):
        curves = [len(c) for c in record.curves] if read_curves else []
        if len(record.landmarks) != n_fixed or curves != curve_points:
            raise ValueError(
                f"Inconsistent landmark count in {filepath} for specimen {i + 1}: "
                f"expected {n_fixed} landmarks and curves {curve_points}, "
                f"got {len(record.landmarks)} landmarks and curves {curves}"
            )
        coords = np.array(points, dtype=float)
        if coords.shape != (n_landmarks, n_dims):
            raise ValueError(
                f"Inconsistent landmark shape in {filepath} for specimen {i + 1}: "
                f"expected {(n_landmarks, n_dims)}, got {coords.shape}"
            )
        landmarks[:, :, i] = coords

    if neg_na:
        negative = (landmarks < 0).any(axis=1)
        n_missing = int(negative.sum())
        landmarks[np.repeat(negative[:, None, :], n_dims, axis=1)] = np.nan
        if n_missing:
            logger.info(
                "Marked %d landmarks with negative coordinates as missing", n_missing
            )

    scales = np.array(
        [_parse_float(r.tags.get("SCALE"), filepath) for r in records], dtype=float
    )
    if apply_scale:
        has_scale = ~np.isnan(scales)
        if has_scale.all():
            landmarks = landmarks * scales[None, None, :]
        elif has_scale.any():
            logger.warning(
                "Only %d of %d specimens in %s have SCALE; coordinates left unscaled",
                int(has_scale.sum()),
                scales.size,
                filepath,
            )

    ids = _specimen_ids(records, spec_id, filepath)
    comments = [r.tags.get("COMMENT", "") for r in records]

    logger.debug(
        "Read %d specimens with %d landmarks (%dD) from %s",
        len(records),
        n_landmarks,
        n_dims,
        filepath,
    )

    return TPSData(
        landmarks=landmarks,
        ids=ids,
        scales=scales,
        n_fixed=n_fixed,
        curve_points=curve_points,
        comments=comments,
    )


def write_tps(
    filepath: str | Path,
    landmarks: NDArray[np.floating],
    ids: Sequence[str] | None = None,
    scales: Sequence[float] | None = None,
) -> None:
    """Write landmarks to a TPS file.

    Missing values (NaN) are written as -1, the usual TPS convention.

    Args:
        filepath: Output file path
        landmarks: Coordinates, shape (n_landmarks, n_dims, n_specimens)
        ids: Optional identifiers written as ``ID=`` tags
        scales: Optional scale factors written as ``SCALE=`` tags
    """
    filepath = Path(filepath)
    n_landmarks, n_dims, n_specimens = landmarks.shape

    if ids is None:
        ids = [str(i + 1) for i in range(n_specimens)]

    lines = []
    for i in range(n_specimens):
        lines.append(f"LM={n_landmarks}")
        for row in landmarks[:, :, i]:
            lines.append(" ".join("-1" if np.isnan(v) else repr(float(v)) for v in row))
        if scales is not None:
            lines.append(f"SCALE={scales[i]}")
        lines.append(f"ID={ids[i]}")

    filepath.write_text("\n".join(lines) + "\n")


def read_metadata(
    filepath: str | Path,
    id_column: str,
    sep: str = ",",
    na_values: Sequence[str] = ("NA",),
    columns: slice | Sequence[str] | None = None,
) -> pd.DataFrame:
    """Read a delimited metadata table indexed by specimen identifier.

    Args:
        filepath: Path to the table (header row required)
        id_column: Name of the column holding specimen identifiers
        sep: Field delimiter
        na_values: Strings treated as missing values
        columns: Optional column selection, either a positional slice
            (column offsets) or a list of column names. The identifier
            column is always kept.

    Returns:
        DataFrame indexed by identifier (as strings)

    Raises:
        FileNotFoundError: If file does not exist
        ValueError: If the identifier column is absent or identifiers repeat
    """
    filepath = Path(filepath)

    if not filepath.exists():
        raise FileNotFoundError(f"File not found: {filepath}")

    # Identifiers stay text so zero-padded numbers match the TPS IDs
    table = pd.read_csv(
        filepath,
        sep=sep,
        na_values=list(na_values),
        header=0,
        dtype={id_column: str},
    )

    if id_column not in table.columns:
        raise ValueError(
            f"Identifier column '{id_column}' not found in {filepath}. "
            f"Columns: {', '.join(map(str, table.columns))}"
        )

    ids = table[id_column].astype(str).str.strip()
    if columns is not None:
        if isinstance(columns, slice):
            table = table.iloc[:, columns]
        else:
            table = table.loc[:, list(columns)]
    table = table.drop(columns=[id_column], errors="ignore")
    table.index = pd.Index(ids, name=id_column)

    duplicated = table.index[table.index.duplicated()].unique()
    if len(duplicated):
        raise ValueError(
            f"Duplicate identifiers in {filepath}: {', '.join(duplicated[:10])}"
        )

    return table


def match_metadata(
    ids: Sequence[str],
    metadata: pd.DataFrame,
) -> pd.DataFrame:
    """Reorder a metadata table to follow the landmark specimen order.

    Args:
        ids: Specimen identifiers in landmark order
        metadata: Table indexed by identifier (see :func:`read_metadata`)

    Returns:
        Table with one row per identifier, in ``ids`` order

    Raises:
        ValueError: If any identifier has no metadata row
    """
    ids = [str(i) for i in ids]
    absent = [i for i in ids if i not in metadata.index]
    if absent:
        raise ValueError(
            f"{len(absent)} specimen(s) have no metadata row: {', '.join(absent[:10])}"
        )

    extra = len(metadata.index.difference(ids))
    if extra:
        logger.info("Ignoring %d metadata rows without landmark data", extra)

    return metadata.loc[ids]


def subset_specimens(
    data: TPSData,
    mask: Sequence[bool] | NDArray[np.bool_],
) -> TPSData:
    """Keep only the specimens selected by a boolean mask."""
    mask = np.asarray(mask, dtype=bool)
    if mask.shape != (data.n_specimens,):
        raise ValueError(
            f"Mask length {mask.shape[0]} does not match {data.n_specimens} specimens"
        )
    keep = np.flatnonzero(mask)
    return TPSData(
        landmarks=data.landmarks[:, :, keep],
        ids=[data.ids[i] for i in keep],
        scales=data.scales[keep],
        n_fixed=data.n_fixed,
        curve_points=list(data.curve_points),
        comments=[data.comments[i] for i in keep] if data.comments else [],
    )


def _parse_tps(lines: list[str], filepath: Path) -> list[_Record]:
    """Split TPS lines into specimen records."""
    records: list[_Record] = []
    i = 0
    n_lines = len(lines)

    while i < n_lines:
        line = lines[i].strip()
        i += 1
        if not line:
            continue

        match = _TAG.match(line)
        if match is None:
            raise ValueError(f"Unexpected line {i} in {filepath}: {line!r}")
        key, value = match.group(1).upper(), match.group(2)

        if key == "LM":
            count = _parse_count(value, i, filepath)
            record = _Record()
            record.landmarks, i = _read_points(lines, i, count, filepath)
            records.append(record)
        elif not records:
            raise ValueError(f"Tag {key} before first LM= in {filepath} (line {i})")
        elif key == "CURVES":
            n_curves = _parse_count(value, i, filepath)
            for _ in range(n_curves):
                while i < n_lines and not lines[i].strip():
                    i += 1
                match = _TAG.match(lines[i]) if i < n_lines else None
                if match is None or match.group(1).upper() != "POINTS":
                    raise ValueError(f"Expected POINTS= at line {i + 1} in {filepath}")
                i += 1
                count = _parse_count(match.group(2), i, filepath)
                points, i = _read_points(lines, i, count, filepath)
                records[-1].curves.append(points)
        else:
            records[-1].tags[key] = value

    return records


def _read_points(
    lines: list[str],
    start: int,
    count: int,
    filepath: Path,
) -> tuple[list[list[float]], int]:
    points = []
    i = start
    while len(points) < count:
        if i >= len(lines):
            raise ValueError(
                f"Unexpected end of {filepath}: expected {count} coordinate lines"
            )
        line = lines[i].strip()
        i += 1
        if not line:
            continue
        try:
            points.append([float(v) for v in line.split()])
        except ValueError as e:
            raise ValueError(
                f"Invalid coordinates at line {i} in {filepath}: {line!r}"
            ) from e
    return points, i


def _parse_count(value: str, line_no: int, filepath: Path) -> int:
    try:
        count = int(value)
    except ValueError as e:
        raise ValueError(
            f"Invalid count {value!r} at line {line_no} in {filepath}"
        ) from e
    if count < 0:
        raise ValueError(f"Negative count at line {line_no} in {filepath}")
    return count


def _parse_float(value: str | None, filepath: Path) -> float:
    if value is None or value == "":
        return np.nan
    try:
        return float(value)
    except ValueError as e:
        raise ValueError(f"Invalid SCALE value {value!r} in {filepath}") from e


def _specimen_ids(records: list[_Record], spec_id: str, filepath: Path) -> list[str]:
    if spec_id == "none":
        return [str(i + 1) for i in range(len(records))]

    tag = "ID" if spec_id == "id" else "IMAGE"
    ids = []
    for i, record in enumerate(records):
        value = record.tags.get(tag)
        if value is None or value == "":
            raise ValueError(f"Specimen {i + 1} in {filepath} has no {tag}= tag")
        if spec_id == "imageid":
            value = Path(value.replace("\\", "/")).stem
        ids.append(value)
    return ids
