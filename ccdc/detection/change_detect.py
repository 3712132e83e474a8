"""Continuous change detection: segment a pixel's time series at confirmed breaks.

The detector is a small state machine driven one observation at a time:

    INITIALIZING -> MONITORING -> BREAK_CONFIRMED -> INITIALIZING | FINALIZED

A stable harmonic model is first fitted to an initialization window. Each
following observation is scored against it with a chi-square statistic over
the detection bands; ``conse`` consecutive exceedances of ``t_cg`` (or a single
exceedance of ``t_max_cg``) confirm a break, close the segment and start a
new initialization at the first anomalous observation.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable, Optional

import numpy as np
from loguru import logger

from config.settings import MAX_NUM_C, NUM_YRS
from ccdc.detection.params import RunConfig
from ccdc.detection.segments import SegmentCategory, SegmentStore, TimeSegment
from ccdc.timeseries.assembler import CoverageSummary, InsufficientCoverage, assemble_pixel
from ccdc.timeseries.harmonic import (
    ModelFit,
    SingularModel,
    fit_harmonic_model,
    min_rmse_floor,
    select_num_c,
)
from ccdc.timeseries.observations import Observation, PixelTimeSeries


class DetectionState(str, Enum):
    INITIALIZING = "initializing"
    MONITORING = "monitoring"
    BREAK_CONFIRMED = "break_confirmed"
    FINALIZED = "finalized"


class ChangeDetector:
    """Run the CCDC state machine over one pixel's time series.

    Parameters
    ----------
    config : RunConfig
        Thresholds for the run.

    Attributes
    ----------
    history : list[tuple[DetectionState, int]]
        State transitions of the last run with the observation index at
        which each occurred.
    """

    def __init__(self, config: Optional[RunConfig] = None):
        self.config = config or RunConfig()
        self.history: list[tuple[DetectionState, int]] = []
        self._series: Optional[PixelTimeSeries] = None

    # ─── Public entry point ─────────────────────────────────────────────────
    def run(
        self,
        series: PixelTimeSeries,
        summary: Optional[CoverageSummary] = None,
    ) -> SegmentStore:
        """Segment ``series`` and return its segment store.

        Parameters
        ----------
        series : PixelTimeSeries
            Clear-sky observations sorted by date.
        summary : CoverageSummary, optional
            Coverage summary of the pixel, used for the permanent water,
            snow and Fmask failure checks. Skipped when not given.

        Returns
        -------
        SegmentStore
            Segments partitioning the series' observed span.
        """
        cfg = self.config
        self.history = []
        self._series = series
        store = SegmentStore(series.dates, row=series.row, col=series.col)
        n = len(series)

        if n == 0:
            self._transition(DetectionState.FINALIZED, 0)
            return store

        reason = self._suppression_reason(summary)
        if reason is not None:
            logger.debug("Pixel ({}, {}): change testing bypassed ({})", series.row, series.col, reason)
            return self.single_segment(series, SegmentCategory.NO_CHANGE_MONITORED)

        if n < cfg.min_obs:
            return self.single_segment(series, SegmentCategory.INSUFFICIENT_DATA)

        self._segment(store)
        store.validate_complete()
        return store

    def single_segment(self, series: PixelTimeSeries, category: SegmentCategory) -> SegmentStore:
        """Cover the whole series with one segment, without change testing."""
        self._series = series
        store = SegmentStore(series.dates, row=series.row, col=series.col)
        store.append(self._unmodelled_segment(0, len(series) - 1, category))
        self._transition(DetectionState.FINALIZED, len(series) - 1)
        return store

    # ─── State machine ──────────────────────────────────────────────────────
    def _segment(self, store: SegmentStore) -> None:
        cfg = self.config
        series = self._series
        dates = series.dates
        n = len(series)
        min_span = cfg.min_years * NUM_YRS

        seg_start = 0  # first observation of the open segment
        i_start = 0  # first observation of the model window
        i = cfg.min_obs - 1  # last observation of the initialization window
        j = 0  # next observation to monitor
        model_end = 0  # last observation absorbed into the active model
        num_c = cfg.min_num_c
        last_fit_n = 0
        fit: Optional[ModelFit] = None
        anomalies: list[int] = []
        state = self._transition(DetectionState.INITIALIZING, 0)

        while True:
            if state is DetectionState.INITIALIZING:
                if i >= n:
                    break
                n_win = i - i_start + 1
                if n_win < cfg.min_obs or dates[i] - dates[i_start] < min_span:
                    i += 1
                    continue
                try:
                    fit = self._fit_detection(i_start, i, cfg.min_num_c)
                except SingularModel:
                    i += 1
                    continue

                stat, _ = self._score(fit, i_start, i + 1)
                if np.any(stat > cfg.t_max_cg):
                    # The instability may itself be a change inside the window
                    i_start += 1
                    continue

                if i_start > seg_start:
                    store.append(
                        self._unmodelled_segment(seg_start, i_start - 1, SegmentCategory.INSUFFICIENT_DATA)
                    )
                    seg_start = i_start

                num_c = cfg.min_num_c
                last_fit_n = n_win
                model_end = i
                j = i + 1
                anomalies = []
                state = self._transition(DetectionState.MONITORING, i)

            elif state is DetectionState.MONITORING:
                if j >= n:
                    break
                stat = float(self._score(fit, j, j + 1)[0][0])

                if stat > cfg.t_cg:
                    anomalies.append(j)
                    if len(anomalies) >= cfg.conse or stat > cfg.t_max_cg:
                        state = self._transition(DetectionState.BREAK_CONFIRMED, j)
                        continue
                    j += 1
                    continue

                anomalies = []
                model_end = j
                n_win = model_end - i_start + 1
                if n_win <= cfg.n_times * MAX_NUM_C or n_win >= cfg.refit_growth * last_fit_n:
                    new_c = select_num_c(n_win, num_c)
                    try:
                        fit = self._fit_detection(i_start, model_end, new_c)
                        num_c = new_c
                        last_fit_n = n_win
                    except SingularModel:
                        logger.debug("Refit at {} coefficients failed, keeping model", new_c)
                j += 1

            elif state is DetectionState.BREAK_CONFIRMED:
                run_start = anomalies[0]
                _, z2 = self._score(fit, j, j + 1)
                exceeded = z2[0] > cfg.t_band
                segment = self._model_segment(
                    seg_start,
                    run_start - 1,
                    i_start,
                    run_start - 1,
                    num_c,
                    change_probability=float(np.mean(exceeded)),
                    break_date=int(dates[run_start]),
                    run=(run_start, j),
                )
                store.append(segment)
                logger.debug(
                    "Pixel ({}, {}): break confirmed at {} (probability {:.2f})",
                    series.row, series.col, segment.break_date, segment.change_probability,
                )

                seg_start = i_start = run_start
                i = run_start + cfg.min_obs - 1
                anomalies = []
                fit = None
                state = self._transition(DetectionState.INITIALIZING, run_start)

        # Series exhausted
        if state is DetectionState.MONITORING:
            store.append(self._model_segment(seg_start, n - 1, i_start, model_end, num_c))
        else:
            store.append(self._unmodelled_segment(seg_start, n - 1, SegmentCategory.INSUFFICIENT_DATA))
        self._transition(DetectionState.FINALIZED, n - 1)

    def _transition(self, state: DetectionState, index: int) -> DetectionState:
        self.history.append((state, index))
        return state

    # ─── Model helpers ──────────────────────────────────────────────────────
    def _fit_detection(self, start: int, end: int, num_c: int) -> ModelFit:
        dates, values = self._series.window(start, end + 1)
        return fit_harmonic_model(
            dates, values, num_c, bands=self.config.detection_bands, alpha=self.config.lasso_alpha
        )

    def _fit_all(self, start: int, end: int, num_c: int) -> ModelFit:
        dates, values = self._series.window(start, end + 1)
        return fit_harmonic_model(dates, values, num_c, alpha=self.config.lasso_alpha)

    def _score(self, fit: ModelFit, start: int, stop: int) -> tuple[np.ndarray, np.ndarray]:
        """Chi-square statistic and squared normalized residuals per detection band."""
        dates, values = self._series.window(start, stop)
        residuals = values[:, list(self.config.detection_bands)] - fit.predict(dates)
        z2 = (residuals / min_rmse_floor(fit, self.config.min_rmse)) ** 2
        return z2.sum(axis=1), z2

    def _suppression_reason(self, summary: Optional[CoverageSummary]) -> Optional[str]:
        if summary is None:
            return None
        cfg = self.config
        if summary.water_fraction >= cfg.t_ws:
            return f"permanent water {summary.water_fraction:.2f}"
        if summary.snow_fraction >= cfg.t_sn:
            return f"permanent snow {summary.snow_fraction:.2f}"
        if summary.fmask_fail_fraction >= cfg.t_cs:
            return f"Fmask failure {summary.fmask_fail_fraction:.2f}"
        return None

    # ─── Segment construction ───────────────────────────────────────────────
    def _model_segment(
        self,
        start: int,
        end: int,
        fit_start: int,
        fit_end: int,
        num_c: int,
        change_probability: float = 0.0,
        break_date: Optional[int] = None,
        run: Optional[tuple[int, int]] = None,
    ) -> TimeSegment:
        """Close a monitored segment with a fit over all bands of its model window."""
        closing_c = select_num_c(fit_end - fit_start + 1, num_c)
        fit = None
        for order in sorted({closing_c, num_c, self.config.min_num_c}, reverse=True):
            try:
                fit = self._fit_all(fit_start, fit_end, order)
                break
            except SingularModel:
                continue
        if fit is None:
            logger.warning("No stable closing fit for segment at {}", self._series.dates[start])
            return self._unmodelled_segment(start, end, SegmentCategory.INSUFFICIENT_DATA)

        magnitude = None
        if run is not None:
            dates, values = self._series.window(run[0], run[1] + 1)
            magnitude = np.median(fit.residuals(dates, values), axis=0)

        return TimeSegment(
            start_date=int(self._series.dates[start]),
            end_date=int(self._series.dates[end]),
            coefficients=fit.coefficients,
            rmse=fit.rmse,
            category=SegmentCategory.MODEL,
            change_probability=change_probability,
            num_obs=end - start + 1,
            break_date=break_date,
            magnitude=magnitude,
        )

    def _unmodelled_segment(self, start: int, end: int, category: SegmentCategory) -> TimeSegment:
        """Segment without change testing; fitted at the lowest order when possible."""
        n_bands = self._series.values.shape[1]
        try:
            fit = self._fit_all(start, end, self.config.min_num_c)
            coefficients, rmse = fit.coefficients, fit.rmse
        except SingularModel:
            coefficients, rmse = np.zeros((n_bands, 0)), np.full(n_bands, np.nan)

        return TimeSegment(
            start_date=int(self._series.dates[start]),
            end_date=int(self._series.dates[end]),
            coefficients=coefficients,
            rmse=rmse,
            category=category,
            num_obs=end - start + 1,
        )


def detect_changes(
    series: PixelTimeSeries,
    summary: Optional[CoverageSummary] = None,
    config: Optional[RunConfig] = None,
) -> SegmentStore:
    """Segment one pixel's time series with a fresh detector."""
    return ChangeDetector(config).run(series, summary)


def process_pixel(
    records: Iterable[Observation],
    config: Optional[RunConfig] = None,
    row: Optional[int] = None,
    col: Optional[int] = None,
) -> SegmentStore:
    """Assemble and segment one pixel from its raw scene records.

    Per-pixel problems never propagate: a pixel with too few clear-sky
    scenes yields a single insufficient-data segment, and one with no
    clear-sky scene at all yields a segment spanning the scene dates.

    Parameters
    ----------
    records : iterable of Observation
        All scenes of the run for this pixel.
    config : RunConfig, optional
        Run thresholds; defaults are used when omitted.
    row, col : int, optional
        Pixel location for output records.

    Returns
    -------
    SegmentStore
        The pixel's segments, never empty.
    """
    config = config or RunConfig()
    records = list(records)

    try:
        series, summary = assemble_pixel(records, config.min_clear_fraction, row=row, col=col)
    except InsufficientCoverage as exc:
        if len(exc.series) == 0:
            return _no_clear_sky_store(records, row, col)
        return ChangeDetector(config).single_segment(exc.series, SegmentCategory.INSUFFICIENT_DATA)

    if len(series) == 0:
        return _no_clear_sky_store(records, row, col)
    return ChangeDetector(config).run(series, summary)


def _no_clear_sky_store(
    records: list[Observation],
    row: Optional[int],
    col: Optional[int],
) -> SegmentStore:
    # Span the scene dates instead of the (empty) clear-sky series
    dates = np.unique([obs.date for obs in records])
    n_bands = len(records[0].bands)
    store = SegmentStore(dates, row=row, col=col)
    store.append(
        TimeSegment(
            start_date=int(dates[0]),
            end_date=int(dates[-1]),
            coefficients=np.zeros((n_bands, 0)),
            rmse=np.full(n_bands, np.nan),
            category=SegmentCategory.INSUFFICIENT_DATA,
            num_obs=0,
        )
    )
    return store
