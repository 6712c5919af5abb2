"""
Project-wide constants.

Centralizes magic numbers, unit conversions and NHDPlus conventions
used across modules.
"""

# Coordinate Reference Systems
CRS_WGS84 = "EPSG:4326"
CRS_CONUS_ALBERS = "EPSG:5072"

# Unit conversions
CMS_PER_CFS = 0.028316846592
SECONDS_PER_YEAR = 31_557_600.0
M_PER_KM = 1000.0

# Raster defaults
DEFAULT_RESOLUTION_M = 30.0
DEFAULT_NODATA = -9999.0
# RemovalType rasters when the float NoData is not a free integer
TYPE_NODATA = -1

# D8 flow direction encoding (ESRI/NHDPlus, same as pyflwdir/pysheds)
# Direction values and their (row_offset, col_offset) for downstream cell
D8_DIRECTIONS = {
    1: (0, 1),  # E
    2: (1, 1),  # SE
    4: (1, 0),  # S
    8: (1, -1),  # SW
    16: (0, -1),  # W
    32: (-1, -1),  # NW
    64: (-1, 0),  # N
    128: (-1, 1),  # NE
}

# Hydraulic geometry for mean reach depth from mean annual flow
DEPTH_COEF = 0.2612
DEPTH_EXP = 0.3966

# First-order stream decay: k [1/day] = K_COEF * depth ** K_EXP
STREAM_K_COEF = 0.0513
STREAM_K_EXP = -1.319

# Lake removal: R = LAKE_INTERCEPT - LAKE_SLOPE * log10(Hl [m/yr])
LAKE_INTERCEPT = 79.24
LAKE_SLOPE = 33.26

# Removal thresholds and limits
DEFAULT_HYDRIC_THRESHOLD_PCT = 50.0
DEFAULT_IMPERVIOUS_THRESHOLD_PCT = 50.0
DEFAULT_MAX_REMOVAL_STREAM_ORDER = 5

# Flow path tracing
DEFAULT_STREAM_BUFFER_M = 15.0
MAX_OVERLAND_STEPS = 100_000

# Static map sampling
DEFAULT_MIN_SAMPLE_COUNT = 3
DEFAULT_IDW_POWER = 2.0
DEFAULT_IDW_NEIGHBORS = 12

# NHDPlus attribute conventions
NHD_MISSING = -9998
FTYPE_COASTLINE = "Coastline"
FTYPE_CANAL_DITCH = "CanalDitch"
FTYPE_LAKE_POND = "LakePond"
SSURGO_SALTWATER_MUSYM = "Ws"
# Flowlines shorter than this share of their NHD length are clipped remnants
MIN_STREAM_LENGTH_FRACTION = 0.75
