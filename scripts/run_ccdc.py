"""Run continuous change detection over a Landsat scene stack.

Single pixel (prints its segments):
    python scripts/run_ccdc.py --data-dir /data/p044r034 --row 120 --col 340

Rows, in parallel, one CSV shard per row:
    python scripts/run_ccdc.py --data-dir /data/p044r034 --rows 0:500 --workers 8
"""

from __future__ import annotations

import sys
from pathlib import Path

import click
from loguru import logger

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config.settings import (
    CONSE,
    DATA_DIR,
    DEFAULT_WORKERS,
    MIN_RMSE,
    OUTPUT_DIR,
    T_CG,
    T_MAX_CG,
)
from ccdc.acquisition.reader import read_pixel_records, read_scene_meta
from ccdc.acquisition.scenes import SceneListError, discover_scenes
from ccdc.detection.change_detect import process_pixel
from ccdc.detection.params import RunConfig
from ccdc.processing.batch import process_rows


def parse_rows(text: str, n_lines: int) -> range:
    """Parse a ``start:stop`` row range; either side may be omitted."""
    start_s, sep, stop_s = text.partition(":")
    if not sep:
        start = int(start_s)
        stop = start + 1
    else:
        start = int(start_s) if start_s else 0
        stop = int(stop_s) if stop_s else n_lines
    return range(max(start, 0), min(stop, n_lines))


@click.command()
@click.option(
    "--data-dir",
    default=str(DATA_DIR),
    type=click.Path(exists=True, file_okay=False),
    help="Directory with the per-scene ENVI band files.",
)
@click.option("--row", type=int, default=None, help="Pixel row (with --col for one pixel).")
@click.option("--col", type=int, default=None, help="Pixel column.")
@click.option("--rows", "row_range", default=None, help="Row range start:stop to process.")
@click.option("--min-rmse", default=MIN_RMSE, show_default=True, help="RMSE floor, fraction of band magnitude.")
@click.option("--t-cg", default=T_CG, show_default=True, help="Change threshold (chi-square).")
@click.option("--t-max-cg", default=T_MAX_CG, show_default=True, help="Immediate-break threshold.")
@click.option("--conse", default=CONSE, show_default=True, help="Consecutive anomalies to confirm a break.")
@click.option("--workers", default=DEFAULT_WORKERS, show_default=True, help="Worker processes.")
@click.option(
    "--output-dir",
    default=str(OUTPUT_DIR),
    type=click.Path(file_okay=False),
    help="Directory for the per-row segment shards.",
)
@click.option("--resume/--no-resume", default=True, help="Skip rows that already have output.")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging.")
def main(
    data_dir: str,
    row: int | None,
    col: int | None,
    row_range: str | None,
    min_rmse: float,
    t_cg: float,
    t_max_cg: float,
    conse: int,
    workers: int,
    output_dir: str,
    resume: bool,
    verbose: bool,
) -> None:
    """Segment pixel time series at confirmed land-cover changes."""
    try:
        config = RunConfig(
            row=row,
            col=col,
            min_rmse=min_rmse,
            t_cg=t_cg,
            t_max_cg=t_max_cg,
            conse=conse,
            verbose=verbose,
        )
    except ValueError as e:
        raise click.BadParameter(str(e)) from e

    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if config.verbose else "INFO")

    logger.info("=== CCDC ===")
    logger.info(
        "Thresholds: t_cg={:.2f}, t_max_cg={:.2f}, conse={}, min_rmse={}",
        config.t_cg, config.t_max_cg, config.conse, config.min_rmse,
    )

    # ─── Scenes and stack geometry ────────────────────────────────────────
    try:
        scenes = discover_scenes(data_dir)
        meta = read_scene_meta(scenes[0])
    except SceneListError as e:
        logger.error("{}", e)
        sys.exit(1)

    # ─── Single pixel ─────────────────────────────────────────────────────
    if row is not None and col is not None:
        if not (0 <= row < meta.lines and 0 <= col < meta.samples):
            logger.error("Pixel ({}, {}) outside the {}x{} stack", row, col, meta.lines, meta.samples)
            sys.exit(1)
        store = process_pixel(read_pixel_records(scenes, row, col), config, row=row, col=col)
        df = store.to_dataframe()
        logger.info("Pixel ({}, {}): {} segments, {} breaks", row, col, len(store), store.n_breaks)
        columns = ["start_date", "end_date", "break_date", "category", "num_c", "num_obs", "change_probability"]
        click.echo(df[columns].to_string(index=False))
        return

    # ─── Batch over rows ──────────────────────────────────────────────────
    if row_range is not None:
        rows = parse_rows(row_range, meta.lines)
    elif row is not None:
        rows = range(row, row + 1) if 0 <= row < meta.lines else range(0)
    else:
        rows = range(meta.lines)

    if len(rows) == 0 or meta.samples == 0:
        logger.error("No pixels to process")
        sys.exit(1)

    results = process_rows(
        scenes,
        rows,
        config,
        Path(output_dir),
        workers=workers,
        resume=resume,
    )

    failed = [r.row for r in results if not r.ok]
    logger.info("=== CCDC Complete ===")
    logger.info("Rows written: {}", len(results) - len(failed))
    logger.info("Breaks found: {}", sum(r.n_breaks for r in results))
    if failed:
        logger.warning("Failed rows: {}", failed)
        sys.exit(2)


if __name__ == "__main__":
    main()
