"""Global settings for the CCDC change detection system."""

from pathlib import Path

from scipy.stats import chi2

# ─── Project paths ────────────────────────────────────────────────────────────
ROOT_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = ROOT_DIR / "data"
OUTPUT_DIR = DATA_DIR / "segments"
SCENE_LIST_FILE = "scene_list.txt"
SCENE_HEADER_PATTERN = "L*_sr_band1.hdr"

# ─── Coverage (time series assembly) ──────────────────────────────────────────
MIN_CLEAR_FRACTION = 0.5  # pixels with fewer clear-sky scenes are not modelled

# ─── Model orders ─────────────────────────────────────────────────────────────
MIN_NUM_C = 4  # intercept, trend, annual cos/sin
MID_NUM_C = 6  # + semi-annual
MAX_NUM_C = 8  # + tri-annual
N_TIMES = 3  # clear observations required per coefficient
NUM_YRS = 365.25  # days per year
MIN_YEARS = 1.0  # minimum span of the initialization window
REFIT_GROWTH = 4.0 / 3.0  # refit once the window has grown by a third

# Lasso penalty in scaled reflectance units (surface reflectance x 10000)
LASSO_ALPHA = 20.0
LASSO_MAX_ITER = 25000

# ─── Change detection thresholds ──────────────────────────────────────────────
NUM_DETECT = 5
CONSE = 6  # consecutive anomalies that confirm a break
T_CG = float(chi2.ppf(0.99, NUM_DETECT))  # ~15.09
T_MAX_CG = float(chi2.ppf(1 - 1e-6, NUM_DETECT))  # ~35.89
T_BAND = float(chi2.ppf(0.99, 1))  # single band, ~6.63 on z^2
MIN_RMSE = 0.1  # fraction of the band reference magnitude
RMSE_EPS = 1e-6

# ─── Permanent water / snow / Fmask failure suppression ──────────────────────
T_WS = 0.95
T_SN = 0.6
T_CS = 0.6

# ─── Batch processing ────────────────────────────────────────────────────────
DEFAULT_WORKERS = 4
STOP_FILE = "STOP"  # touch this file in the output directory to stop a batch
