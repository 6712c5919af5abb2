"""
Relative nitrogen loading by NLCD land cover class.

The loading index is a unitless 0-100 ranking of how much nitrogen a
land cover class contributes (developed and cultivated land highest,
water and wetlands none). It is a fixed reclassification, independent
of flow paths.
"""

import logging

import numpy as np

logger = logging.getLogger(__name__)

# Loading value for classes missing from the table
DEFAULT_LOADING = 0.0

# NLCD class -> relative nitrogen load (0-100)
NLCD_LOADING_TABLE: dict[int, float] = {
    11: 0.0,  # Open water
    12: 0.0,  # Perennial ice/snow
    21: 40.0,  # Developed, open space
    22: 60.0,  # Developed, low intensity
    23: 80.0,  # Developed, medium intensity
    24: 100.0,  # Developed, high intensity
    31: 5.0,  # Barren land
    41: 5.0,  # Deciduous forest
    42: 5.0,  # Evergreen forest
    43: 5.0,  # Mixed forest
    51: 5.0,  # Dwarf scrub
    52: 5.0,  # Shrub/scrub
    71: 10.0,  # Grassland/herbaceous
    72: 10.0,  # Sedge/herbaceous
    81: 45.0,  # Pasture/hay
    82: 90.0,  # Cultivated crops
    90: 0.0,  # Woody wetlands
    95: 0.0,  # Emergent herbaceous wetlands
}


def lookup_loading(nlcd_class: int) -> float:
    """
    Relative load of a single NLCD class.

    Examples
    --------
    >>> lookup_loading(82)
    90.0
    >>> lookup_loading(999)
    0.0
    """
    return NLCD_LOADING_TABLE.get(int(nlcd_class), DEFAULT_LOADING)


def reclassify_loading(
    nlcd: np.ndarray,
    valid: np.ndarray | None = None,
    nodata: float = np.nan,
) -> np.ndarray:
    """
    Reclassify an NLCD array into relative loading.

    Parameters
    ----------
    nlcd : np.ndarray
        Land cover class codes
    valid : np.ndarray, optional
        Boolean mask of cells to reclassify; others get ``nodata``
    nodata : float
        Value for masked cells

    Returns
    -------
    np.ndarray
        float64 loading index (0-100)
    """
    codes = nlcd.astype(np.int64)
    loading = np.full(codes.shape, DEFAULT_LOADING, dtype=np.float64)
    for nlcd_class, value in NLCD_LOADING_TABLE.items():
        loading[codes == nlcd_class] = value

    unknown = ~np.isin(codes, list(NLCD_LOADING_TABLE))
    if valid is not None:
        unknown &= valid
        loading = np.where(valid, loading, nodata)
    if unknown.any():
        classes = sorted(set(np.unique(codes[unknown]).tolist()))
        logger.warning(
            f"Unknown NLCD classes {classes} ({int(unknown.sum())} cells), "
            f"using loading {DEFAULT_LOADING}"
        )
    return loading
