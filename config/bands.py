"""Band mappings for Landsat TM/ETM+ and OLI surface reflectance stacks.

Each sensor dict maps logical band names to the file suffix used for the
per-scene ENVI files produced by the surface reflectance processor.
Wavelengths are provided for reference.
"""

from enum import IntEnum

# ─── Modelled bands (reflectance followed by thermal) ────────────────────────
REFLECTANCE_BANDS = ["blue", "green", "red", "nir", "swir1", "swir2"]
THERMAL_BAND = "thermal"
MODEL_BANDS = REFLECTANCE_BANDS + [THERMAL_BAND]
NUM_BANDS = len(MODEL_BANDS)

# Bands used by the change test statistic (TM bands 2, 3, 4, 5, 7)
DETECTION_BANDS = ["green", "red", "nir", "swir1", "swir2"]
DETECTION_BAND_INDICES = tuple(MODEL_BANDS.index(name) for name in DETECTION_BANDS)

# ─── Landsat 4/5/7 TM and ETM+ ───────────────────────────────────────────────
TM_BANDS = {
    "blue":    {"file": "sr_band1",  "wavelength_nm": 485},
    "green":   {"file": "sr_band2",  "wavelength_nm": 560},
    "red":     {"file": "sr_band3",  "wavelength_nm": 660},
    "nir":     {"file": "sr_band4",  "wavelength_nm": 830},
    "swir1":   {"file": "sr_band5",  "wavelength_nm": 1650},
    "thermal": {"file": "toa_band6", "wavelength_nm": 11450},
    "swir2":   {"file": "sr_band7",  "wavelength_nm": 2215},
    "qa":      {"file": "cfmask",    "wavelength_nm": None},
}

# ─── Landsat 8 OLI/TIRS ──────────────────────────────────────────────────────
# OLI inserts a coastal band, so reflectance bands shift up by one
OLI_BANDS = {
    "blue":    {"file": "sr_band2",   "wavelength_nm": 482},
    "green":   {"file": "sr_band3",   "wavelength_nm": 562},
    "red":     {"file": "sr_band4",   "wavelength_nm": 655},
    "nir":     {"file": "sr_band5",   "wavelength_nm": 865},
    "swir1":   {"file": "sr_band6",   "wavelength_nm": 1610},
    "thermal": {"file": "toa_band10", "wavelength_nm": 10895},
    "swir2":   {"file": "sr_band7",   "wavelength_nm": 2200},
    "qa":      {"file": "cfmask",     "wavelength_nm": None},
}


class QualityFlag(IntEnum):
    """CFmask classification codes."""

    CLEAR_LAND = 0
    CLEAR_WATER = 1
    CLOUD_SHADOW = 2
    SNOW = 3
    CLOUD = 4
    FILL = 255


MASKED_FLAGS = {QualityFlag.CLOUD_SHADOW, QualityFlag.CLOUD, QualityFlag.FILL}


def get_band_file(landsat_number: int, logical_band: str) -> str:
    """Return the file suffix for a logical band name and Landsat mission.

    Parameters
    ----------
    landsat_number : int
        Landsat mission number (4, 5, 7 or 8).
    logical_band : str
        Logical band name (e.g., "nir", "thermal", "qa").

    Returns
    -------
    str
        Suffix appended to the scene ID, without the ``.img`` extension.
    """
    mapping = OLI_BANDS if landsat_number >= 8 else TM_BANDS
    return mapping[logical_band]["file"]
