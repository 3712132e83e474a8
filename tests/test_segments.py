"""Tests for time segments and the segment store."""

import numpy as np
import pytest

from config.bands import MODEL_BANDS
from ccdc.detection.segments import (
    SegmentCategory,
    SegmentOrderError,
    SegmentStore,
    TimeSegment,
)

DATES = [10, 20, 30, 40, 50]


def _segment(start, end, num_c=4, **kwargs):
    return TimeSegment(
        start_date=start,
        end_date=end,
        coefficients=np.ones((len(MODEL_BANDS), num_c)),
        rmse=np.full(len(MODEL_BANDS), 5.0),
        **kwargs,
    )


class TestTimeSegment:
    def test_end_before_start(self):
        with pytest.raises(SegmentOrderError):
            _segment(20, 10)

    def test_category_from_string(self):
        seg = _segment(10, 20, category="insufficient-data")
        assert seg.category is SegmentCategory.INSUFFICIENT_DATA

    def test_record_is_padded(self):
        record = _segment(10, 20, num_c=4, break_date=30).to_record()

        assert record["num_c"] == 4
        assert record["category"] == "model"
        assert record["break_date"] == 30
        assert record["coef_blue_3"] == 1.0
        assert record["coef_blue_7"] == 0.0
        assert record["rmse_thermal"] == 5.0
        assert record["magnitude_nir"] == 0.0

    def test_unfitted_segment_record(self):
        seg = TimeSegment(
            start_date=10,
            end_date=10,
            coefficients=np.zeros((len(MODEL_BANDS), 0)),
            rmse=np.full(len(MODEL_BANDS), np.nan),
            category=SegmentCategory.INSUFFICIENT_DATA,
        )
        record = seg.to_record()
        assert record["num_c"] == 0
        assert np.isnan(record["rmse_red"])


class TestSegmentStore:
    def _store(self):
        store = SegmentStore(DATES, row=3, col=7)
        store.append(_segment(10, 20, break_date=30))
        store.append(_segment(30, 50))
        return store

    def test_partition(self):
        store = self._store()
        store.validate_complete()
        assert len(store) == 2
        assert store.n_breaks == 1
        assert [seg.start_date for seg in store] == [10, 30]

    def test_find_uses_start_ranges(self):
        store = self._store()
        assert store.find(10) is store[0]
        assert store.find(25) is store[0]  # between end of first and start of second
        assert store.find(30) is store[1]
        assert store.find(50) is store[1]
        assert store.find(5) is None
        assert store.find(51) is None

    def test_rejects_gap(self):
        store = SegmentStore(DATES)
        store.append(_segment(10, 20))
        with pytest.raises(SegmentOrderError, match="must start at 30"):
            store.append(_segment(40, 50))

    def test_rejects_overlap(self):
        store = SegmentStore(DATES)
        store.append(_segment(10, 30))
        with pytest.raises(SegmentOrderError, match="overlaps"):
            store.append(_segment(30, 50))

    def test_first_segment_must_start_at_first_observation(self):
        with pytest.raises(SegmentOrderError):
            SegmentStore(DATES).append(_segment(20, 30))

    def test_rejects_end_after_last_observation(self):
        with pytest.raises(SegmentOrderError, match="after the last observation"):
            SegmentStore(DATES).append(_segment(10, 60))

    def test_incomplete_coverage(self):
        store = SegmentStore(DATES)
        store.append(_segment(10, 20))
        with pytest.raises(SegmentOrderError, match="last observation"):
            store.validate_complete()

    def test_rejects_gap_spanning_several_observations(self):
        store = SegmentStore([1, 10, 20, 5000, 6000])
        store.append(_segment(1, 10))
        with pytest.raises(SegmentOrderError, match="must start at 20"):
            store.append(_segment(5000, 6000))
        assert len(store) == 1

    def test_store_without_observations_rejects_appends(self):
        store = SegmentStore([])
        with pytest.raises(SegmentOrderError, match="No observations"):
            store.append(_segment(1, 10))
        store.validate_complete()

    def test_dates_are_required(self):
        with pytest.raises(TypeError):
            SegmentStore()

    def test_to_dataframe(self):
        df = self._store().to_dataframe()
        assert list(df["row"]) == [3, 3]
        assert list(df["col"]) == [7, 7]
        assert list(df["start_date"]) == [10, 30]
        assert "coef_thermal_7" in df.columns
