"""Row-parallel CCDC processing of a scene stack.

Pixels are independent, so the unit of work is a raster row: a worker reads
the row once from every scene, runs the detector pixel by pixel and writes
its own output shard. A batch can be stopped between rows; rows already
written are kept.
"""

from __future__ import annotations

import threading
from concurrent.futures import FIRST_COMPLETED, Future, ProcessPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Sequence

import pandas as pd
from loguru import logger

from config.settings import DEFAULT_WORKERS, STOP_FILE
from ccdc.acquisition.reader import read_row_stack, row_records
from ccdc.acquisition.scenes import Scene, SceneListError
from ccdc.detection.change_detect import process_pixel
from ccdc.detection.params import RunConfig
from ccdc.processing.sink import completed_rows, write_row_shard


@dataclass(frozen=True)
class RowResult:
    """Outcome of one processed (or failed) row."""

    row: int
    n_pixels: int = 0
    n_segments: int = 0
    n_breaks: int = 0
    shard: Optional[Path] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def segment_row(scenes: Sequence[Scene], row: int, config: RunConfig) -> pd.DataFrame:
    """Run the detector over every pixel of one row and collect its records."""
    stack = read_row_stack(scenes, row)
    records = []
    for col in range(stack.sizes["x"]):
        store = process_pixel(row_records(stack, col), config, row=row, col=col)
        records.extend(store.to_records())
    return pd.DataFrame(records)


def process_row(
    scenes: Sequence[Scene],
    row: int,
    config: RunConfig,
    output_dir: Path,
) -> RowResult:
    """Segment one row and write its shard."""
    df = segment_row(scenes, row, config)
    shard = write_row_shard(df, row, output_dir)
    n_breaks = int(df["break_date"].notna().sum()) if not df.empty else 0
    return RowResult(
        row=row,
        n_pixels=int(df["col"].nunique()) if not df.empty else 0,
        n_segments=len(df),
        n_breaks=n_breaks,
        shard=shard,
    )


def _stop_requested(stop_event: Optional[threading.Event], output_dir: Path) -> bool:
    if stop_event is not None and stop_event.is_set():
        return True
    return (Path(output_dir) / STOP_FILE).exists()


def _log_result(result: RowResult) -> None:
    if result.ok:
        logger.info(
            "Row {}: {} pixels, {} segments, {} breaks",
            result.row, result.n_pixels, result.n_segments, result.n_breaks,
        )
    else:
        logger.error("Row {} failed: {}", result.row, result.error)


def process_rows(
    scenes: Sequence[Scene],
    rows: Iterable[int],
    config: RunConfig,
    output_dir: Path,
    workers: int = DEFAULT_WORKERS,
    stop_event: Optional[threading.Event] = None,
    resume: bool = True,
) -> list[RowResult]:
    """Process rows of a scene stack, in parallel when ``workers > 1``.

    Parameters
    ----------
    scenes : sequence of Scene
        Date-sorted scenes of the stack.
    rows : iterable of int
        Rows to process.
    config : RunConfig
        Detection thresholds shared by all rows.
    output_dir : Path
        Directory receiving one shard per row.
    workers : int
        Number of worker processes; 1 runs in the calling process.
    stop_event : threading.Event, optional
        When set, no further row is started. A ``STOP`` file in
        ``output_dir`` has the same effect.
    resume : bool
        Skip rows that already have a shard.

    Returns
    -------
    list[RowResult]
        Results of the rows that ran, sorted by row.

    Raises
    ------
    SceneListError
        If there are no scenes.
    ValueError
        If no rows are requested.
    """
    if not scenes:
        raise SceneListError("No scenes to process")
    rows = sorted(set(rows))
    if not rows:
        raise ValueError("No rows requested")

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    if resume:
        done = completed_rows(output_dir)
        skipped = [r for r in rows if r in done]
        if skipped:
            logger.info("Skipping {} rows with existing output", len(skipped))
        rows = [r for r in rows if r not in done]

    logger.info("Processing {} rows with {} worker(s)", len(rows), workers)

    if workers <= 1:
        results = _run_sequential(scenes, rows, config, output_dir, stop_event)
    else:
        results = _run_parallel(scenes, rows, config, output_dir, workers, stop_event)

    n_failed = sum(1 for r in results if not r.ok)
    logger.info(
        "Batch finished: {} rows done, {} failed, {} not started",
        len(results) - n_failed, n_failed, len(rows) - len(results),
    )
    return sorted(results, key=lambda r: r.row)


def _run_sequential(
    scenes: Sequence[Scene],
    rows: list[int],
    config: RunConfig,
    output_dir: Path,
    stop_event: Optional[threading.Event],
) -> list[RowResult]:
    results = []
    for row in rows:
        if _stop_requested(stop_event, output_dir):
            logger.warning("Stop requested, {} rows left unprocessed", len(rows) - len(results))
            break
        try:
            result = process_row(scenes, row, config, output_dir)
        except Exception as e:
            result = RowResult(row=row, error=str(e))
        _log_result(result)
        results.append(result)
    return results


def _run_parallel(
    scenes: Sequence[Scene],
    rows: list[int],
    config: RunConfig,
    output_dir: Path,
    workers: int,
    stop_event: Optional[threading.Event],
) -> list[RowResult]:
    results = []
    pending_rows = list(rows)
    running: dict[Future, int] = {}

    with ProcessPoolExecutor(max_workers=workers) as executor:
        while pending_rows or running:
            stopping = _stop_requested(stop_event, output_dir)
            while pending_rows and len(running) < workers and not stopping:
                row = pending_rows.pop(0)
                running[executor.submit(process_row, scenes, row, config, output_dir)] = row

            if not running:
                break

            done, _ = wait(running, timeout=1.0, return_when=FIRST_COMPLETED)
            for future in done:
                row = running.pop(future)
                try:
                    result = future.result()
                except Exception as e:
                    result = RowResult(row=row, error=str(e))
                _log_result(result)
                results.append(result)

            if stopping and pending_rows:
                logger.warning("Stop requested, {} rows left unprocessed", len(pending_rows))
                pending_rows = []

    return results
