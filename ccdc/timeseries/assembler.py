"""Assemble a clean, ordered clear-sky time series for one pixel."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

import numpy as np
from loguru import logger

from config.bands import MASKED_FLAGS, QualityFlag
from config.settings import MIN_CLEAR_FRACTION
from ccdc.timeseries.observations import Observation, PixelTimeSeries


@dataclass(frozen=True)
class CoverageSummary:
    """Scene counts for one pixel and the fractions derived from them."""

    n_scenes: int
    n_fill: int
    n_cloud: int
    n_clear_land: int
    n_clear_water: int
    n_snow: int

    @property
    def n_clear_sky(self) -> int:
        return self.n_clear_land + self.n_clear_water + self.n_snow

    @property
    def clear_fraction(self) -> float:
        return _ratio(self.n_clear_sky, self.n_scenes)

    @property
    def water_fraction(self) -> float:
        return _ratio(self.n_clear_water, self.n_clear_land + self.n_clear_water)

    @property
    def snow_fraction(self) -> float:
        return _ratio(self.n_snow, self.n_clear_sky)

    @property
    def fmask_fail_fraction(self) -> float:
        n_non_fill = self.n_scenes - self.n_fill
        if n_non_fill == 0:
            return 0.0
        return 1.0 - _ratio(self.n_clear_sky, n_non_fill)


class InsufficientCoverage(Exception):
    """Raised when too few scenes are clear-sky for a pixel to be modelled."""

    def __init__(self, summary: CoverageSummary, series: PixelTimeSeries, minimum: float):
        self.summary = summary
        self.series = series
        self.minimum = minimum
        super().__init__(
            f"Clear fraction {summary.clear_fraction:.2f} below minimum {minimum:.2f}"
        )


def _ratio(num: int, den: int) -> float:
    return num / den if den > 0 else 0.0


def _effective_quality(obs: Observation) -> QualityFlag:
    # Non-finite band values cannot be modelled, count them as fill
    if not np.all(np.isfinite(obs.bands)):
        return QualityFlag.FILL
    return obs.quality


def summarize_coverage(records: Iterable[Observation]) -> CoverageSummary:
    """Count scenes per quality class for one pixel."""
    counts = {flag: 0 for flag in QualityFlag}
    n_scenes = 0
    for obs in records:
        counts[_effective_quality(obs)] += 1
        n_scenes += 1

    return CoverageSummary(
        n_scenes=n_scenes,
        n_fill=counts[QualityFlag.FILL],
        n_cloud=counts[QualityFlag.CLOUD] + counts[QualityFlag.CLOUD_SHADOW],
        n_clear_land=counts[QualityFlag.CLEAR_LAND],
        n_clear_water=counts[QualityFlag.CLEAR_WATER],
        n_snow=counts[QualityFlag.SNOW],
    )


def assemble_pixel(
    records: Iterable[Observation],
    min_clear_fraction: float = MIN_CLEAR_FRACTION,
    row: int | None = None,
    col: int | None = None,
) -> tuple[PixelTimeSeries, CoverageSummary]:
    """Build the clear-sky time series of a pixel from its scene records.

    Cloud, cloud shadow and fill scenes are dropped. Clear land, clear water
    and snow scenes are kept and tagged through their quality flag. The
    remaining observations are stable-sorted by date and, where two scenes
    share a date, only the first in scene order is kept.

    Parameters
    ----------
    records : iterable of Observation
        All scenes of the run for this pixel, in scene-list order.
    min_clear_fraction : float
        Minimum fraction of clear-sky scenes required for modelling.
    row, col : int, optional
        Pixel location, carried along for logging and output.

    Returns
    -------
    tuple[PixelTimeSeries, CoverageSummary]
        The ordered series and the pixel's coverage summary.

    Raises
    ------
    ValueError
        If no scene records are given at all.
    InsufficientCoverage
        If the clear-sky fraction is below ``min_clear_fraction``.
    """
    records = list(records)
    if not records:
        raise ValueError("Cannot assemble a time series from an empty scene list")

    summary = summarize_coverage(records)

    clear = [obs for obs in records if _effective_quality(obs) not in MASKED_FLAGS]
    clear.sort(key=lambda obs: obs.date)

    deduplicated: list[Observation] = []
    for obs in clear:
        if deduplicated and deduplicated[-1].date == obs.date:
            continue
        deduplicated.append(obs)

    n_duplicates = len(clear) - len(deduplicated)
    if n_duplicates:
        logger.debug("Pixel ({}, {}): dropped {} duplicate dates", row, col, n_duplicates)

    series = PixelTimeSeries.from_observations(deduplicated, row=row, col=col)

    if summary.clear_fraction < min_clear_fraction:
        logger.debug(
            "Pixel ({}, {}): clear fraction {:.2f} < {:.2f}",
            row, col, summary.clear_fraction, min_clear_fraction,
        )
        raise InsufficientCoverage(summary, series, min_clear_fraction)

    return series, summary
