"""Read per-pixel and per-row scene records from per-band ENVI rasters.

Each scene is stored as one single-band file per band (``*_sr_bandN.img``,
``*_toa_bandN.img``, ``*_cfmask.img``) with an ENVI header beside it. GDAL
handles the header, data type and byte order; this module only decides
which window to read and hands the values over as scene records.
"""

from __future__ import annotations

from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from typing import Iterator, Sequence

import numpy as np
import rasterio
import xarray as xr
from loguru import logger
from rasterio.errors import RasterioIOError
from rasterio.windows import Window

from config.bands import MODEL_BANDS, REFLECTANCE_BANDS, THERMAL_BAND, QualityFlag
from ccdc.acquisition.scenes import Scene, SceneListError
from ccdc.timeseries.observations import Observation

SCENE_BANDS = MODEL_BANDS + ["qa"]


@dataclass(frozen=True)
class SceneMeta:
    """Raster geometry shared by every scene of a stack."""

    lines: int
    samples: int
    dtype: str
    crs: str | None
    upper_left_x: float
    upper_left_y: float
    pixel_size: float


def read_scene_meta(scene: Scene) -> SceneMeta:
    """Read the stack geometry from the band 1 raster of ``scene``.

    Raises
    ------
    SceneListError
        If the raster or its header cannot be opened.
    """
    path = scene.band_path("blue")
    try:
        with rasterio.open(path) as src:
            meta = SceneMeta(
                lines=src.height,
                samples=src.width,
                dtype=src.dtypes[0],
                crs=src.crs.to_string() if src.crs else None,
                upper_left_x=src.transform.c,
                upper_left_y=src.transform.f,
                pixel_size=abs(src.transform.a),
            )
    except RasterioIOError as exc:
        raise SceneListError(f"Cannot read metadata from {path}: {exc}") from exc

    logger.debug(
        "Stack geometry: {} lines x {} samples, {} pixels, dtype {}",
        meta.lines, meta.samples, meta.pixel_size, meta.dtype,
    )
    return meta


@contextmanager
def open_scene(scene: Scene) -> Iterator[dict[str, rasterio.DatasetReader]]:
    """Open all band files of a scene; every file is closed on exit."""
    with ExitStack() as stack:
        yield {
            band: stack.enter_context(rasterio.open(scene.band_path(band)))
            for band in SCENE_BANDS
        }


def _read_window(datasets: dict[str, rasterio.DatasetReader], window: Window) -> dict[str, np.ndarray]:
    return {band: ds.read(1, window=window)[0] for band, ds in datasets.items()}


def _quality(value) -> QualityFlag:
    # Codes outside the CFmask classes are treated as fill
    try:
        return QualityFlag(int(value))
    except ValueError:
        return QualityFlag.FILL


def _to_observation(scene: Scene, values: dict[str, float]) -> Observation:
    return Observation(
        date=scene.ordinal,
        reflectance=tuple(float(values[band]) for band in REFLECTANCE_BANDS),
        thermal=float(values[THERMAL_BAND]),
        quality=_quality(values["qa"]),
    )


def read_pixel_records(scenes: Sequence[Scene], row: int, col: int) -> list[Observation]:
    """Read one pixel from every scene, in scene order.

    Parameters
    ----------
    scenes : sequence of Scene
        Scenes of the stack, usually from ``discover_scenes``.
    row, col : int
        Zero-based pixel location.

    Returns
    -------
    list[Observation]
        One record per scene, unfiltered.
    """
    window = Window(col, row, 1, 1)
    records = []
    for scene in scenes:
        with open_scene(scene) as datasets:
            pixel = _read_window(datasets, window)
        records.append(_to_observation(scene, {band: arr[0] for band, arr in pixel.items()}))
    return records


def iter_scene_rows(scenes: Sequence[Scene], row: int) -> Iterator[tuple[Scene, dict[str, np.ndarray]]]:
    """Yield each scene with its band values along one raster row."""
    for scene in scenes:
        with open_scene(scene) as datasets:
            width = next(iter(datasets.values())).width
            yield scene, _read_window(datasets, Window(0, row, width, 1))


def read_row_stack(scenes: Sequence[Scene], row: int) -> xr.Dataset:
    """Read a full raster row from every scene into one dataset.

    Returns
    -------
    xr.Dataset
        Variables for each modelled band and ``qa``, dims ("time", "x"),
        with ``time`` holding ordinal dates in scene order.
    """
    columns: dict[str, list[np.ndarray]] = {band: [] for band in SCENE_BANDS}
    dates = []
    for scene, values in iter_scene_rows(scenes, row):
        dates.append(scene.ordinal)
        for band in SCENE_BANDS:
            columns[band].append(values[band])

    if not dates:
        raise SceneListError("Cannot read a row stack without scenes")

    ds = xr.Dataset(
        {band: (("time", "x"), np.vstack(arrays)) for band, arrays in columns.items()},
        coords={"time": np.array(dates, dtype=np.int64), "x": np.arange(len(columns["qa"][0]))},
    )
    ds.attrs["row"] = row
    ds.attrs["scene_ids"] = [scene.scene_id for scene in scenes]
    logger.debug("Read row {} from {} scenes", row, len(dates))
    return ds


def row_records(stack: xr.Dataset, col: int) -> list[Observation]:
    """Extract one pixel's scene records from a row stack."""
    pixel = stack.isel(x=col)
    dates = pixel["time"].values
    qa = pixel["qa"].values.astype(np.int64)
    bands = np.column_stack([pixel[band].values.astype(np.float64) for band in MODEL_BANDS])

    records = []
    for date, flag, values in zip(dates, qa, bands):
        records.append(
            Observation(
                date=int(date),
                reflectance=tuple(values[: len(REFLECTANCE_BANDS)]),
                thermal=float(values[-1]),
                quality=_quality(flag),
            )
        )
    return records
