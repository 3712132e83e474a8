"""Immutable run configuration handed to the change detector."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from config.bands import DETECTION_BAND_INDICES
from config.settings import (
    CONSE,
    LASSO_ALPHA,
    MIN_CLEAR_FRACTION,
    MIN_NUM_C,
    MIN_RMSE,
    MIN_YEARS,
    N_TIMES,
    REFIT_GROWTH,
    T_BAND,
    T_CG,
    T_CS,
    T_MAX_CG,
    T_SN,
    T_WS,
)


@dataclass(frozen=True)
class RunConfig:
    """Thresholds and options for one CCDC run.

    ``row`` and ``col`` select a single pixel when both are given; ``row``
    alone selects a whole row. ``min_rmse`` is the fraction of each band's
    reference magnitude below which the model RMSE is not allowed to fall
    when normalizing residuals.
    """

    row: Optional[int] = None
    col: Optional[int] = None
    min_rmse: float = MIN_RMSE
    t_cg: float = T_CG
    t_max_cg: float = T_MAX_CG
    conse: int = CONSE
    verbose: bool = False

    t_band: float = T_BAND
    min_clear_fraction: float = MIN_CLEAR_FRACTION
    t_ws: float = T_WS
    t_sn: float = T_SN
    t_cs: float = T_CS
    min_num_c: int = MIN_NUM_C
    n_times: int = N_TIMES
    min_years: float = MIN_YEARS
    refit_growth: float = REFIT_GROWTH
    lasso_alpha: float = LASSO_ALPHA
    detection_bands: tuple[int, ...] = DETECTION_BAND_INDICES

    def __post_init__(self) -> None:
        if self.conse < 1:
            raise ValueError(f"conse must be at least 1, got {self.conse}")
        if self.t_cg <= 0 or self.t_max_cg < self.t_cg:
            raise ValueError(
                f"Require 0 < t_cg <= t_max_cg, got t_cg={self.t_cg}, t_max_cg={self.t_max_cg}"
            )
        if self.min_rmse < 0:
            raise ValueError(f"min_rmse must be non-negative, got {self.min_rmse}")
        if not 0.0 <= self.min_clear_fraction <= 1.0:
            raise ValueError(
                f"min_clear_fraction must be within [0, 1], got {self.min_clear_fraction}"
            )
        if not self.detection_bands:
            raise ValueError("At least one detection band is required")
        object.__setattr__(self, "detection_bands", tuple(self.detection_bands))

    @property
    def min_obs(self) -> int:
        """Clear observations needed to initialize a model."""
        return self.min_num_c * self.n_times

