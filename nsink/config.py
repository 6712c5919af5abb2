"""
Engine configuration module.

Loads settings from environment variables (prefix ``NSINK_``) with
sensible defaults.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from nsink import constants


class Settings(BaseSettings):
    """
    Engine settings loaded from environment variables.

    Attributes
    ----------
    log_level : str
        Logging level (DEBUG, INFO, WARNING, ERROR)
    hydric_threshold_pct : float
        Minimum hydric soil percentage for a land cell to remove nitrogen
    impervious_threshold_pct : float
        Impervious percentage from which a cell is typed as impervious
    max_removal_stream_order : int
        Streams of higher order are treated as having no removal
    stream_buffer_m : float
        Distance within which an overland cell meets a stream [m]
    max_overland_steps : int
        Safety limit for the D8 walk
    min_sample_count : int
        Minimum traced points required to build static maps
    idw_power : float
        Inverse distance weighting exponent
    idw_neighbors : int
        Nearest sample points used per interpolated cell
    n_workers : int
        Worker threads for static map sampling (1 = sequential)
    random_seed : int | None
        Default seed for static map sampling
    raster_resolution_m : float
        Raster template resolution [m]
    nodata : float
        NoData value of output rasters
    """

    log_level: str = "INFO"

    # Removal model
    hydric_threshold_pct: float = Field(
        constants.DEFAULT_HYDRIC_THRESHOLD_PCT, ge=0, le=100
    )
    impervious_threshold_pct: float = Field(
        constants.DEFAULT_IMPERVIOUS_THRESHOLD_PCT, ge=0, le=100
    )
    max_removal_stream_order: int = Field(
        constants.DEFAULT_MAX_REMOVAL_STREAM_ORDER, ge=1
    )

    # Tracing
    stream_buffer_m: float = Field(constants.DEFAULT_STREAM_BUFFER_M, ge=0)
    max_overland_steps: int = Field(constants.MAX_OVERLAND_STEPS, ge=1)

    # Static maps
    min_sample_count: int = Field(constants.DEFAULT_MIN_SAMPLE_COUNT, ge=1)
    idw_power: float = Field(constants.DEFAULT_IDW_POWER, gt=0)
    idw_neighbors: int = Field(constants.DEFAULT_IDW_NEIGHBORS, ge=1)
    n_workers: int = Field(1, ge=1)
    random_seed: int | None = None

    # Grid
    raster_resolution_m: float = Field(constants.DEFAULT_RESOLUTION_M, gt=0)
    nodata: float = constants.DEFAULT_NODATA

    model_config = SettingsConfigDict(
        env_prefix="NSINK_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns
    -------
    Settings
        Engine settings
    """
    return Settings()
