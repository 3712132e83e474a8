"""Time segments and the per-pixel, append-only segment store."""

from __future__ import annotations

import bisect
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Optional

import numpy as np
import pandas as pd

from config.bands import MODEL_BANDS
from config.settings import MAX_NUM_C


class SegmentCategory(str, Enum):
    MODEL = "model"
    INSUFFICIENT_DATA = "insufficient-data"
    NO_CHANGE_MONITORED = "no-change-monitored"


class SegmentOrderError(ValueError):
    """Raised when an append would leave a gap or overlap between segments."""


@dataclass(frozen=True, eq=False)
class TimeSegment:
    """A closed time interval explained by one harmonic model.

    ``end_date`` is the date of the last observation in the segment.
    ``coefficients`` has shape (n_bands, num_c); an insufficient-data
    segment that could not be fitted carries an empty (n_bands, 0) array
    and NaN RMSE.

    ``change_probability`` is the fraction of detection bands whose own
    squared residual on the confirming observation exceeds the single-band
    threshold. A break confirmed by the combined statistic alone, with
    every band moderately off, therefore reports 0.0.
    """

    start_date: int
    end_date: int
    coefficients: np.ndarray
    rmse: np.ndarray
    category: SegmentCategory = SegmentCategory.MODEL
    change_probability: float = 0.0
    num_obs: int = 0
    break_date: Optional[int] = None
    magnitude: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        if self.end_date < self.start_date:
            raise SegmentOrderError(
                f"Segment ends ({self.end_date}) before it starts ({self.start_date})"
            )
        object.__setattr__(self, "category", SegmentCategory(self.category))

    @property
    def num_c(self) -> int:
        return int(self.coefficients.shape[1]) if self.coefficients.ndim == 2 else 0

    def to_record(self) -> dict:
        """Flatten into a fixed-shape record (coefficients padded to 8 columns)."""
        n_bands = len(MODEL_BANDS)
        coefs = np.zeros((n_bands, MAX_NUM_C))
        if self.num_c:
            coefs[: self.coefficients.shape[0], : self.num_c] = self.coefficients
        rmse = np.full(n_bands, np.nan)
        rmse[: len(self.rmse)] = self.rmse
        magnitude = np.zeros(n_bands) if self.magnitude is None else self.magnitude

        record = {
            "start_date": self.start_date,
            "end_date": self.end_date,
            "break_date": self.break_date,
            "category": self.category.value,
            "num_c": self.num_c,
            "num_obs": self.num_obs,
            "change_probability": float(self.change_probability),
        }
        for b, band in enumerate(MODEL_BANDS):
            for k in range(MAX_NUM_C):
                record[f"coef_{band}_{k}"] = float(coefs[b, k])
            record[f"rmse_{band}"] = float(rmse[b])
            record[f"magnitude_{band}"] = float(magnitude[b])
        return record


class SegmentStore:
    """Chronologically ordered segments of one pixel.

    Appends are checked so the segments partition the observation dates:
    each new segment must start at the observation right after the previous
    segment's end and may not end after the last observation.
    """

    def __init__(self, dates, row: int | None = None, col: int | None = None):
        self._segments: list[TimeSegment] = []
        self._starts: list[int] = []
        self._dates = np.asarray(dates, dtype=np.int64)
        self.row = row
        self.col = col

    def __iter__(self) -> Iterator[TimeSegment]:
        return iter(self._segments)

    def __len__(self) -> int:
        return len(self._segments)

    def __getitem__(self, index: int) -> TimeSegment:
        return self._segments[index]

    def _expected_start(self) -> int:
        if len(self._dates) == 0:
            raise SegmentOrderError("No observations to segment")
        if not self._segments:
            return int(self._dates[0])
        idx = int(np.searchsorted(self._dates, self._segments[-1].end_date, side="right"))
        if idx >= len(self._dates):
            raise SegmentOrderError("Previous segment already reaches the last observation")
        return int(self._dates[idx])

    def append(self, segment: TimeSegment) -> None:
        """Append a closed segment, rejecting gaps and overlaps."""
        if self._segments and segment.start_date <= self._segments[-1].end_date:
            raise SegmentOrderError(
                f"Segment starting {segment.start_date} overlaps previous segment "
                f"ending {self._segments[-1].end_date}"
            )

        expected = self._expected_start()
        if segment.start_date != expected:
            raise SegmentOrderError(
                f"Segment must start at {expected}, got {segment.start_date}"
            )
        if segment.end_date > self._dates[-1]:
            raise SegmentOrderError(
                f"Segment ends at {segment.end_date}, after the last observation"
            )

        self._segments.append(segment)
        self._starts.append(segment.start_date)

    def find(self, date: int) -> Optional[TimeSegment]:
        """Return the segment owning ``date``.

        Segment ``i`` owns ``[start_i, start_{i+1})``; the last segment owns
        up to and including its end date.
        """
        if not self._segments:
            return None
        idx = bisect.bisect_right(self._starts, date) - 1
        if idx < 0:
            return None
        if idx == len(self._segments) - 1 and date > self._segments[-1].end_date:
            return None
        return self._segments[idx]

    def validate_complete(self) -> None:
        """Check that the segments cover the first through last observation."""
        if len(self._dates) == 0:
            return
        if not self._segments:
            raise SegmentOrderError("No segments for a non-empty time series")
        if self._segments[0].start_date != self._dates[0]:
            raise SegmentOrderError("First segment does not start at the first observation")
        if self._segments[-1].end_date != self._dates[-1]:
            raise SegmentOrderError("Last segment does not end at the last observation")

    @property
    def n_breaks(self) -> int:
        return sum(1 for seg in self._segments if seg.break_date is not None)

    def to_records(self) -> list[dict]:
        records = []
        for seg in self._segments:
            record = {"row": self.row, "col": self.col}
            record.update(seg.to_record())
            records.append(record)
        return records

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(self.to_records())
