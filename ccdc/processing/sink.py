"""Per-row output shards for segment records.

Every row is written to its own CSV file so that workers never share an
output file; a shard appears only once its row is complete.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Iterable, Optional

import pandas as pd
from loguru import logger

SHARD_TEMPLATE = "segments_row{row:05d}.csv"
SHARD_RE = re.compile(r"^segments_row(\d{5})\.csv$")


def shard_path(output_dir: Path, row: int) -> Path:
    return Path(output_dir) / SHARD_TEMPLATE.format(row=row)


def write_row_shard(records: pd.DataFrame, row: int, output_dir: Path) -> Path:
    """Write the segment records of one row.

    The shard is written to a temporary name and renamed into place, so a
    cancelled or crashed worker never leaves a partial shard behind.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    path = shard_path(output_dir, row)
    tmp_path = path.with_suffix(".csv.tmp")

    records.to_csv(tmp_path, index=False)
    os.replace(tmp_path, path)
    logger.debug("Wrote {} segments for row {} to {}", len(records), row, path)
    return path


def completed_rows(output_dir: Path) -> set[int]:
    """Rows that already have a shard in ``output_dir``."""
    output_dir = Path(output_dir)
    if not output_dir.exists():
        return set()
    rows = set()
    for path in output_dir.iterdir():
        match = SHARD_RE.match(path.name)
        if match:
            rows.add(int(match.group(1)))
    return rows


def load_segments(output_dir: Path, rows: Optional[Iterable[int]] = None) -> pd.DataFrame:
    """Load segment records from the shards of ``output_dir``.

    Parameters
    ----------
    output_dir : Path
        Directory written by the batch runner.
    rows : iterable of int, optional
        Restrict to these rows. Defaults to every completed row.

    Returns
    -------
    pd.DataFrame
        Records sorted by row, column and start date.
    """
    available = completed_rows(output_dir)
    wanted = sorted(available if rows is None else set(rows) & available)
    if not wanted:
        return pd.DataFrame()

    df = pd.concat(
        [pd.read_csv(shard_path(output_dir, row)) for row in wanted],
        ignore_index=True,
    )
    return df.sort_values(["row", "col", "start_date"]).reset_index(drop=True)
