"""Per-pixel observation records and the clear-sky time series built from them."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from config.bands import NUM_BANDS, REFLECTANCE_BANDS, QualityFlag


@dataclass(frozen=True)
class Observation:
    """One scene's measurement for a single pixel.

    ``date`` is a proleptic Gregorian ordinal (``datetime.date.toordinal()``),
    reflectance holds the six optical bands in ``REFLECTANCE_BANDS`` order.
    """

    date: int
    reflectance: tuple[float, ...]
    thermal: float
    quality: QualityFlag

    def __post_init__(self) -> None:
        if len(self.reflectance) != len(REFLECTANCE_BANDS):
            raise ValueError(
                f"Expected {len(REFLECTANCE_BANDS)} reflectance values, "
                f"got {len(self.reflectance)}"
            )
        object.__setattr__(self, "reflectance", tuple(float(v) for v in self.reflectance))
        object.__setattr__(self, "quality", QualityFlag(self.quality))

    @property
    def bands(self) -> np.ndarray:
        """Modelled band values: reflectance followed by thermal."""
        return np.array(self.reflectance + (float(self.thermal),), dtype=np.float64)


@dataclass(frozen=True, eq=False)
class PixelTimeSeries:
    """Clear-sky observations of one pixel, sorted ascending by date.

    Arrays are made read-only on construction; the detector only ever
    slices them.
    """

    dates: np.ndarray
    values: np.ndarray
    quality: np.ndarray
    row: int | None = None
    col: int | None = None

    def __post_init__(self) -> None:
        dates = np.array(self.dates, dtype=np.int64)
        values = np.array(self.values, dtype=np.float64).reshape(len(dates), NUM_BANDS)
        quality = np.array(self.quality, dtype=np.int64)

        if len(quality) != len(dates):
            raise ValueError("dates and quality must have the same length")
        if len(dates) > 1 and np.any(np.diff(dates) <= 0):
            raise ValueError("Time series dates must be strictly increasing")

        for arr in (dates, values, quality):
            arr.setflags(write=False)
        object.__setattr__(self, "dates", dates)
        object.__setattr__(self, "values", values)
        object.__setattr__(self, "quality", quality)

    @classmethod
    def from_observations(
        cls,
        observations: list[Observation],
        row: int | None = None,
        col: int | None = None,
    ) -> PixelTimeSeries:
        """Build a series from observations already sorted and deduplicated."""
        if not observations:
            return cls(
                dates=np.empty(0, dtype=np.int64),
                values=np.empty((0, NUM_BANDS)),
                quality=np.empty(0, dtype=np.int64),
                row=row,
                col=col,
            )
        return cls(
            dates=np.array([obs.date for obs in observations]),
            values=np.vstack([obs.bands for obs in observations]),
            quality=np.array([int(obs.quality) for obs in observations]),
            row=row,
            col=col,
        )

    def __len__(self) -> int:
        return len(self.dates)

    def window(self, start: int, stop: int) -> tuple[np.ndarray, np.ndarray]:
        """Return (dates, values) for observations ``start`` to ``stop`` exclusive."""
        return self.dates[start:stop], self.values[start:stop]
