"""Harmonic seasonal-plus-trend regression for per-pixel time series."""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
from sklearn.exceptions import ConvergenceWarning
from sklearn.linear_model import Lasso

from config.settings import (
    LASSO_ALPHA,
    LASSO_MAX_ITER,
    MAX_NUM_C,
    MID_NUM_C,
    MIN_NUM_C,
    N_TIMES,
    NUM_YRS,
    RMSE_EPS,
)

VALID_NUM_C = (MIN_NUM_C, MID_NUM_C, MAX_NUM_C)
OMEGA = 2 * np.pi / NUM_YRS


class SingularModel(Exception):
    """Raised when a window cannot support a model of the requested order."""


@dataclass(frozen=True, eq=False)
class ModelFit:
    """Harmonic model coefficients fitted over one observation window.

    ``coefficients`` has shape (n_bands, num_c) with columns ordered as
    intercept, trend, then cosine/sine pairs of increasing frequency.
    ``reference`` is the mean absolute observed value of each band over
    the window and scales the RMSE floor used for anomaly scoring.
    """

    num_c: int
    coefficients: np.ndarray
    rmse: np.ndarray
    reference: np.ndarray
    n_obs: int
    start_date: int
    end_date: int

    def predict(self, dates) -> np.ndarray:
        """Predict band values, shape (n_dates, n_bands)."""
        return design_matrix(dates, self.num_c) @ self.coefficients.T

    def residuals(self, dates, values) -> np.ndarray:
        return np.asarray(values, dtype=np.float64) - self.predict(dates)


def design_matrix(dates, num_c: int) -> np.ndarray:
    """Build the harmonic design matrix for ordinal dates.

    Model: y(t) = a0 + b*t + Σ[a_k * cos(2πk*t/T) + b_k * sin(2πk*t/T)]
    with T = 365.25 days and k up to (num_c - 2) / 2.

    Parameters
    ----------
    dates : array-like
        Ordinal day numbers.
    num_c : int
        Number of columns: 4, 6 or 8.

    Returns
    -------
    np.ndarray
        Matrix of shape (n, num_c).
    """
    if num_c not in VALID_NUM_C:
        raise SingularModel(f"Unsupported number of coefficients: {num_c}")

    t = np.atleast_1d(np.asarray(dates, dtype=np.float64))
    X = np.ones((len(t), num_c))
    X[:, 1] = t
    for k in range(1, num_c // 2):
        X[:, 2 * k] = np.cos(k * OMEGA * t)
        X[:, 2 * k + 1] = np.sin(k * OMEGA * t)
    return X


def select_num_c(n_obs: int, current: int = MIN_NUM_C) -> int:
    """Choose the model order for a window of ``n_obs`` clear observations.

    Four coefficients below ``N_TIMES * MID_NUM_C`` observations, six below
    ``N_TIMES * MAX_NUM_C``, eight otherwise. Never lower than ``current``.
    """
    if n_obs < N_TIMES * MID_NUM_C:
        num_c = MIN_NUM_C
    elif n_obs < N_TIMES * MAX_NUM_C:
        num_c = MID_NUM_C
    else:
        num_c = MAX_NUM_C
    return max(num_c, current)


def _fit_band(X: np.ndarray, y: np.ndarray, alpha: float) -> np.ndarray:
    """Lasso fit of one band; returns [intercept, coef_1, ..., coef_{num_c-1}]."""
    if alpha <= 0:
        coeffs, _, _, _ = np.linalg.lstsq(X, y, rcond=None)
        return coeffs

    lasso = Lasso(alpha=alpha, fit_intercept=True, max_iter=LASSO_MAX_ITER)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", category=ConvergenceWarning)
        lasso.fit(X[:, 1:], y)
    return np.concatenate([[lasso.intercept_], lasso.coef_])


def fit_harmonic_model(
    dates,
    values,
    num_c: int = MIN_NUM_C,
    bands: Optional[Sequence[int]] = None,
    alpha: float = LASSO_ALPHA,
) -> ModelFit:
    """Fit a harmonic model independently to each band of a window.

    Used with all modelled bands for segment output and with the detection
    bands for anomaly scoring.

    Parameters
    ----------
    dates : array-like
        Ordinal dates of the window, shape (n,).
    values : array-like
        Band values, shape (n, n_bands_total).
    num_c : int
        Number of coefficients (4, 6 or 8).
    bands : sequence of int, optional
        Column indices of ``values`` to fit. Defaults to all columns.
    alpha : float
        Lasso penalty. Zero falls back to ordinary least squares.

    Returns
    -------
    ModelFit
        Coefficients and RMSE for the selected bands, in ``bands`` order.

    Raises
    ------
    SingularModel
        If the window has fewer observations than coefficients, the order
        is unsupported, or the inputs or fit are not finite.
    """
    dates = np.atleast_1d(np.asarray(dates, dtype=np.float64))
    values = np.asarray(values, dtype=np.float64).reshape(len(dates), -1)
    if bands is not None:
        values = values[:, list(bands)]

    n_obs = len(dates)
    if n_obs < num_c:
        raise SingularModel(f"{n_obs} observations cannot support {num_c} coefficients")
    if not np.all(np.isfinite(values)):
        raise SingularModel("Window contains non-finite band values")

    X = design_matrix(dates, num_c)
    coefficients = np.vstack([_fit_band(X, values[:, b], alpha) for b in range(values.shape[1])])

    residuals = values - X @ coefficients.T
    rmse = np.sqrt(np.mean(residuals**2, axis=0))

    if not (np.all(np.isfinite(coefficients)) and np.all(np.isfinite(rmse))):
        raise SingularModel("Harmonic fit produced non-finite coefficients")

    return ModelFit(
        num_c=num_c,
        coefficients=coefficients,
        rmse=rmse,
        reference=np.mean(np.abs(values), axis=0),
        n_obs=n_obs,
        start_date=int(dates[0]),
        end_date=int(dates[-1]),
    )


def min_rmse_floor(fit: ModelFit, min_rmse: float) -> np.ndarray:
    """RMSE used for scoring: floored at ``min_rmse`` times the band reference."""
    return np.maximum(np.maximum(fit.rmse, min_rmse * fit.reference), RMSE_EPS)
