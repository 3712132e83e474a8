"""Shared fixtures: tiny per-band ENVI scene stacks written to tmp_path."""

from datetime import date, timedelta

import numpy as np
import pytest
import rasterio
from rasterio.transform import from_origin

from config.bands import MODEL_BANDS
from ccdc.acquisition.scenes import parse_scene_id, sort_scenes

TRANSFORM = from_origin(500000.0, 4000000.0, 30.0, 30.0)


def scene_id_for(day: date, mission: int = 5) -> str:
    sensor = "C" if mission >= 8 else "T"
    return f"L{sensor}{mission}044034{day.year}{day.timetuple().tm_yday:03d}XXX00"


def write_band(path, data):
    data = np.asarray(data, dtype=np.int16)
    with rasterio.open(
        path,
        "w",
        driver="ENVI",
        height=data.shape[0],
        width=data.shape[1],
        count=1,
        dtype="int16",
        transform=TRANSFORM,
    ) as dst:
        dst.write(data, 1)


@pytest.fixture
def make_stack(tmp_path):
    """Factory writing a scene stack and returning its date-sorted scenes.

    ``values`` has shape (n_scenes, n_model_bands, lines, samples) and
    ``qa`` has shape (n_scenes, lines, samples).
    """

    def _make(scene_ids, values, qa, directory=None):
        directory = directory or tmp_path / "scenes"
        directory.mkdir(parents=True, exist_ok=True)
        scenes = []
        for k, scene_id in enumerate(scene_ids):
            scene = parse_scene_id(scene_id, directory)
            for b, band in enumerate(MODEL_BANDS):
                write_band(scene.band_path(band), values[k, b])
            write_band(scene.band_path("qa"), qa[k])
            if scene.landsat_number >= 8:
                # Coastal band, only needed so discovery finds the scene
                write_band(directory / f"{scene_id}_sr_band1.img", values[k, 0])
            scenes.append(scene)
        return sort_scenes(scenes)

    return _make


@pytest.fixture
def monthly_ids():
    """Fourteen Landsat 5 scene IDs, 32 days apart from 2000-01-01."""
    start = date(2000, 1, 1)
    return [scene_id_for(start + timedelta(days=32 * k)) for k in range(14)]
