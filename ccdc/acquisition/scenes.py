"""Discover and order the Landsat scenes of a working directory."""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass
from datetime import date, timedelta
from pathlib import Path
from typing import Iterable

from loguru import logger

from config.bands import get_band_file
from config.settings import SCENE_HEADER_PATTERN, SCENE_LIST_FILE

# e.g. LT50440342000123XXX00 / LC80440342014100LGN00
SCENE_ID_RE = re.compile(
    r"^L(?P<sensor>[A-Z])(?P<mission>\d)(?P<path>\d{3})(?P<row>\d{3})"
    r"(?P<year>\d{4})(?P<doy>\d{3})"
)
HEADER_SUFFIX = "_sr_band1.hdr"


class SceneListError(RuntimeError):
    """Raised when the scene list is missing, empty or unreadable."""


@dataclass(frozen=True)
class Scene:
    """One Landsat acquisition with its per-band files in ``directory``."""

    scene_id: str
    directory: Path
    landsat_number: int
    wrs_path: int
    wrs_row: int
    year: int
    doy: int

    @property
    def acquired(self) -> date:
        return date(self.year, 1, 1) + timedelta(days=self.doy - 1)

    @property
    def ordinal(self) -> int:
        return self.acquired.toordinal()

    def band_path(self, logical_band: str) -> Path:
        """Path to the ENVI data file of a logical band (or "qa")."""
        suffix = get_band_file(self.landsat_number, logical_band)
        return self.directory / f"{self.scene_id}_{suffix}.img"


def parse_scene_id(scene_id: str, directory: Path | str = ".") -> Scene:
    """Parse a Landsat scene ID into its mission, WRS location and date.

    Raises
    ------
    ValueError
        If ``scene_id`` does not follow the Landsat naming convention or
        carries an invalid day of year.
    """
    match = SCENE_ID_RE.match(scene_id)
    if match is None:
        raise ValueError(f"Not a Landsat scene ID: {scene_id!r}")

    year = int(match["year"])
    doy = int(match["doy"])
    days_in_year = 366 if calendar.isleap(year) else 365
    if not 1 <= doy <= days_in_year:
        raise ValueError(f"Invalid day of year {doy} in scene ID {scene_id!r}")

    return Scene(
        scene_id=scene_id,
        directory=Path(directory),
        landsat_number=int(match["mission"]),
        wrs_path=int(match["path"]),
        wrs_row=int(match["row"]),
        year=year,
        doy=doy,
    )


def sort_scenes(scenes: Iterable[Scene]) -> list[Scene]:
    """Drop repeated scene IDs and sort ascending by acquisition date.

    The sort is stable, so scenes sharing a date keep their listed order.
    """
    seen: set[str] = set()
    unique = []
    for scene in scenes:
        if scene.scene_id in seen:
            logger.debug("Duplicate scene {} ignored", scene.scene_id)
            continue
        seen.add(scene.scene_id)
        unique.append(scene)
    return sorted(unique, key=lambda s: (s.year, s.doy))


def read_scene_list(path: Path) -> list[str]:
    """Read scene IDs, one per line, from a scene list file."""
    with open(path) as fh:
        return [line.strip() for line in fh if line.strip()]


def write_scene_list(scenes: Iterable[Scene], path: Path) -> Path:
    """Write scene IDs, one per line, in the given order."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as fh:
        for scene in scenes:
            fh.write(f"{scene.scene_id}\n")
    logger.debug("Wrote scene list: {}", path)
    return path


def discover_scenes(
    directory: Path | str,
    pattern: str = SCENE_HEADER_PATTERN,
    scene_list_name: str = SCENE_LIST_FILE,
) -> list[Scene]:
    """Find the scenes of a working directory, sorted by acquisition date.

    Uses ``scene_list.txt`` when it exists; otherwise globs the band 1
    headers and writes the resulting list so later runs reuse it.

    Parameters
    ----------
    directory : Path or str
        Directory holding the per-scene ENVI files.
    pattern : str
        Glob pattern for the band 1 headers.
    scene_list_name : str
        Name of the scene list file inside ``directory``.

    Returns
    -------
    list[Scene]
        Deduplicated scenes in ascending date order.

    Raises
    ------
    SceneListError
        If no scene can be found or the scene list is malformed.
    """
    directory = Path(directory)
    list_path = directory / scene_list_name

    if list_path.exists():
        scene_ids = read_scene_list(list_path)
        logger.info("Read {} scenes from {}", len(scene_ids), list_path)
        write_back = False
    else:
        scene_ids = [p.name[: -len(HEADER_SUFFIX)] for p in sorted(directory.glob(pattern))
                     if p.name.endswith(HEADER_SUFFIX)]
        logger.info("Found {} scene headers in {}", len(scene_ids), directory)
        write_back = True

    if not scene_ids:
        raise SceneListError(f"No scenes found in {directory}")

    try:
        scenes = sort_scenes(parse_scene_id(sid, directory) for sid in scene_ids)
    except ValueError as exc:
        raise SceneListError(str(exc)) from exc

    if write_back:
        write_scene_list(scenes, list_path)

    logger.info(
        "Scenes span {} to {} ({} scenes)",
        scenes[0].acquired, scenes[-1].acquired, len(scenes),
    )
    return scenes
