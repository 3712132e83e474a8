"""Tests for the continuous change detector on synthetic pixel time series.

Values are surface reflectance scaled by 10000 (thermal in the same
array), sampled every 16 days from 2000-01-01 with a fixed noise seed.
"""

from datetime import date

import numpy as np
import pytest

from config.bands import DETECTION_BAND_INDICES, NUM_BANDS, QualityFlag
from ccdc.detection.change_detect import (
    ChangeDetector,
    DetectionState,
    detect_changes,
    process_pixel,
)
from ccdc.detection.params import RunConfig
from ccdc.detection.segments import SegmentCategory
from ccdc.timeseries.assembler import CoverageSummary
from ccdc.timeseries.harmonic import OMEGA
from ccdc.timeseries.observations import Observation, PixelTimeSeries

START = date(2000, 1, 1).toordinal()
BASE = np.array([500.0, 800.0, 700.0, 3000.0, 2000.0, 1200.0, 2900.0])
AMPLITUDE = np.array([30.0, 50.0, 40.0, 300.0, 150.0, 80.0, 60.0])


def _make_values(n, step=16, seasonal=True, noise=15.0, seed=42):
    rng = np.random.default_rng(seed)
    dates = START + step * np.arange(n)
    values = np.tile(BASE, (n, 1)) + rng.normal(0, noise, (n, NUM_BANDS))
    if seasonal:
        values += np.cos(OMEGA * dates)[:, None] * AMPLITUDE
    return dates, values


def _series(dates, values):
    return PixelTimeSeries(dates=dates, values=values, quality=np.zeros(len(dates), dtype=int))


def _assert_partition(store, series):
    """Segments cover the series and each starts right after the previous one."""
    store.validate_complete()
    position = {int(d): k for k, d in enumerate(series.dates)}
    for prev, seg in zip(store, list(store)[1:]):
        assert position[seg.start_date] == position[prev.end_date] + 1


class TestStableSeries:
    def test_no_break_under_noise(self):
        dates, values = _make_values(92)
        series = _series(dates, values)
        store = detect_changes(series)

        assert len(store) == 1
        seg = store[0]
        assert seg.category is SegmentCategory.MODEL
        assert seg.break_date is None
        assert seg.start_date == dates[0]
        assert seg.end_date == dates[-1]
        assert seg.num_obs == 92
        assert seg.change_probability == 0.0

    def test_long_record_escalates_to_eight_coefficients(self):
        dates, values = _make_values(92)
        store = detect_changes(_series(dates, values))
        assert store[0].num_c == 8
        assert store[0].coefficients.shape == (NUM_BANDS, 8)

    def test_short_record_keeps_four_coefficients(self):
        dates, values = _make_values(16, step=30)
        store = detect_changes(_series(dates, values))

        assert len(store) == 1
        assert store[0].category is SegmentCategory.MODEL
        assert store[0].num_c == 4

    def test_history_records_states(self):
        dates, values = _make_values(40)
        detector = ChangeDetector()
        detector.run(_series(dates, values))

        states = [state for state, _ in detector.history]
        assert states[0] is DetectionState.INITIALIZING
        assert states[-1] is DetectionState.FINALIZED
        assert DetectionState.MONITORING in states
        assert DetectionState.BREAK_CONFIRMED not in states


class TestBreaks:
    def test_large_step_breaks_immediately(self):
        dates, values = _make_values(92)
        values[60:, :6] += 3000.0
        series = _series(dates, values)
        store = detect_changes(series)

        assert len(store) == 2
        first, second = store
        assert first.break_date == dates[60]
        assert first.end_date == dates[59]
        assert second.start_date == dates[60]
        assert second.break_date is None
        assert first.change_probability == 1.0
        assert first.category is second.category is SegmentCategory.MODEL
        np.testing.assert_allclose(first.magnitude[:6], 3000.0, atol=250.0)
        assert abs(first.magnitude[6]) < 250.0
        _assert_partition(store, series)

    def test_moderate_step_needs_conse_anomalies(self):
        dates, values = _make_values(100, seasonal=False)
        shift = np.zeros(NUM_BANDS)
        shift[list(DETECTION_BAND_INDICES)] = 0.22 * BASE[list(DETECTION_BAND_INDICES)]
        values[50:] += shift

        detector = ChangeDetector(RunConfig(conse=6))
        store = detector.run(_series(dates, values))

        assert len(store) == 2
        assert store[0].break_date == dates[50]
        assert store[0].end_date == dates[49]
        # Confirmed on the sixth anomalous observation
        assert (DetectionState.BREAK_CONFIRMED, 55) in detector.history

    def test_break_from_combined_statistic_has_zero_probability(self):
        # Each band has z = 2.2 (z^2 = 4.84 < 6.63) but the five together exceed t_cg
        dates, values = _make_values(100, seasonal=False, noise=0.0)
        shift = np.zeros(NUM_BANDS)
        shift[list(DETECTION_BAND_INDICES)] = 0.22 * BASE[list(DETECTION_BAND_INDICES)]
        values[50:] += shift

        store = detect_changes(_series(dates, values))

        assert store[0].break_date == dates[50]
        assert store[0].change_probability == 0.0

    def test_break_only_from_detection_bands(self):
        dates, values = _make_values(92)
        values[60:, 0] += 3000.0  # blue
        values[60:, 6] += 3000.0  # thermal
        store = detect_changes(_series(dates, values))
        assert len(store) == 1

    def test_spike_in_initial_window_slides_start(self):
        dates, values = _make_values(92)
        values[2, :6] += 8000.0
        series = _series(dates, values)
        store = detect_changes(series)

        assert store[0].category is SegmentCategory.INSUFFICIENT_DATA
        assert store[0].start_date == dates[0]
        assert store[0].end_date == dates[2]
        assert store[1].start_date == dates[3]
        assert store[1].category is SegmentCategory.MODEL
        _assert_partition(store, series)

    def test_pending_anomalies_at_end_stay_in_model(self):
        dates, values = _make_values(92, seasonal=False)
        shift = np.zeros(NUM_BANDS)
        shift[list(DETECTION_BAND_INDICES)] = 0.22 * BASE[list(DETECTION_BAND_INDICES)]
        values[-3:] += shift

        store = detect_changes(_series(dates, values))
        assert len(store) == 1
        assert store[0].end_date == dates[-1]
        assert store[0].break_date is None


class TestPreChecks:
    def test_too_few_observations(self):
        dates, values = _make_values(5)
        detector = ChangeDetector()
        store = detector.run(_series(dates, values))

        assert len(store) == 1
        assert store[0].category is SegmentCategory.INSUFFICIENT_DATA
        assert store[0].num_obs == 5
        assert store[0].num_c == 4
        assert [s for s, _ in detector.history] == [DetectionState.FINALIZED]

    def test_empty_series(self):
        series = PixelTimeSeries.from_observations([])
        assert len(detect_changes(series)) == 0

    @pytest.mark.parametrize(
        "summary",
        [
            CoverageSummary(n_scenes=92, n_fill=0, n_cloud=0, n_clear_land=2, n_clear_water=90, n_snow=0),
            CoverageSummary(n_scenes=92, n_fill=0, n_cloud=0, n_clear_land=30, n_clear_water=0, n_snow=62),
            CoverageSummary(n_scenes=300, n_fill=0, n_cloud=208, n_clear_land=92, n_clear_water=0, n_snow=0),
        ],
        ids=["water", "snow", "fmask-failure"],
    )
    def test_suppression_bypasses_change_testing(self, summary):
        dates, values = _make_values(92)
        values[60:, :6] += 3000.0
        store = detect_changes(_series(dates, values), summary)

        assert len(store) == 1
        assert store[0].category is SegmentCategory.NO_CHANGE_MONITORED
        assert store[0].num_c == 4
        assert store[0].end_date == dates[-1]


class TestProcessPixel:
    def _records(self, qualities):
        dates, values = _make_values(len(qualities))
        return [
            Observation(date=int(d), reflectance=tuple(v[:6]), thermal=v[6], quality=q)
            for d, v, q in zip(dates, values, qualities)
        ]

    def test_clear_pixel(self):
        records = self._records([QualityFlag.CLEAR_LAND] * 40)
        store = process_pixel(records, row=1, col=2)

        assert store.row == 1 and store.col == 2
        assert store[0].category is SegmentCategory.MODEL

    def test_permanent_water(self):
        records = self._records([QualityFlag.CLEAR_WATER] * 40)
        store = process_pixel(records)
        assert store[0].category is SegmentCategory.NO_CHANGE_MONITORED

    def test_mostly_cloudy_pixel(self):
        qualities = [QualityFlag.CLEAR_LAND if k % 3 == 0 else QualityFlag.CLOUD for k in range(45)]
        records = self._records(qualities)
        store = process_pixel(records)

        assert len(store) == 1
        assert store[0].category is SegmentCategory.INSUFFICIENT_DATA
        assert store[0].num_obs == 15
        assert store[0].start_date == records[0].date

    def test_never_clear_pixel_spans_scene_dates(self):
        records = self._records([QualityFlag.CLOUD] * 10)
        store = process_pixel(records)

        assert len(store) == 1
        assert store[0].category is SegmentCategory.INSUFFICIENT_DATA
        assert store[0].start_date == records[0].date
        assert store[0].end_date == records[-1].date
        assert store[0].num_c == 0

    def test_never_clear_pixel_without_coverage_minimum(self):
        records = self._records([QualityFlag.CLOUD] * 10)
        store = process_pixel(records, RunConfig(min_clear_fraction=0.0), row=4, col=5)

        assert len(store) == 1
        assert store[0].category is SegmentCategory.INSUFFICIENT_DATA
        assert store[0].start_date == records[0].date
        assert store[0].end_date == records[-1].date
        store.validate_complete()
        assert store.to_records()[0]["row"] == 4
