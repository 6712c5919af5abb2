"""
Pydantic models for engine parameters and reports.

Defines the off-network removal policy and the JSON-serializable
reports produced by flow path tracing and static map generation.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class OffNetworkPolicy(str, Enum):
    """How land cells under an off-network feature are treated."""

    REMOVAL = "removal"
    PASS_THROUGH = "pass_through"


class OffNetworkParams(BaseModel):
    """
    Treatment of off-network water features crossing land cells.

    Attributes
    ----------
    lakes : OffNetworkPolicy
        Lakes no network segment flows through
    streams : OffNetworkPolicy
        Flowlines without network topology
    canalsditches : OffNetworkPolicy
        Canals and ditches without network topology
    """

    model_config = ConfigDict(frozen=True, use_enum_values=False)

    lakes: OffNetworkPolicy = Field(
        OffNetworkPolicy.PASS_THROUGH, description="Off-network lakes"
    )
    streams: OffNetworkPolicy = Field(
        OffNetworkPolicy.PASS_THROUGH, description="Off-network streams"
    )
    canalsditches: OffNetworkPolicy = Field(
        OffNetworkPolicy.PASS_THROUGH, description="Off-network canals and ditches"
    )


class FlowPathRemovalRow(BaseModel):
    """
    Removal applied by one (collapsed) flow path segment.

    Attributes
    ----------
    segment_id : int
        Land unit id, stream_comid or lake_comid depending on kind
    kind : str
        overland-raster-cell, network-stream or network-lake
    removal_type : str
        Removal type label (stream, lake, land-hydric, ...)
    removal_pct : float
        Removal applied by the segment [%]
    n_out : float
        Nitrogen remaining after the segment [% of load]
    """

    segment_id: int | None = Field(None, description="Land unit, stream or lake id")
    kind: str | None = Field(None, description="Path segment kind")
    removal_type: str | None = Field(None, description="Removal type label")
    removal_pct: float = Field(..., ge=0, le=100, description="Removal [%]")
    n_out: float = Field(..., ge=0, le=100, description="Nitrogen remaining [%]")


class FlowPathReport(BaseModel):
    """
    Result of tracing and summarizing one flow path.

    Attributes
    ----------
    start_x, start_y : float
        Start point in the data CRS
    crs : str
        Coordinate reference system of the start point
    handoff_comid : int | None
        Segment where the overland walk met the network
    overland_cells : int
        Number of raster cells walked overland
    rows : list[FlowPathRemovalRow]
        Removal rows in path order
    cumulative_removal : float
        ``100 - min(n_out)`` [%]
    """

    start_x: float = Field(..., description="Start X [CRS units]")
    start_y: float = Field(..., description="Start Y [CRS units]")
    crs: str | None = Field(None, description="Coordinate reference system")
    handoff_comid: int | None = Field(None, description="Network entry segment")
    overland_cells: int = Field(0, ge=0, description="Overland cells walked")
    rows: list[FlowPathRemovalRow] = Field(default_factory=list)
    cumulative_removal: float = Field(
        ..., ge=0, le=100, description="Cumulative removal [%]"
    )


class RasterSummary(BaseModel):
    """Descriptive statistics of a raster's valid cells."""

    name: str
    valid_cells: int = Field(..., ge=0)
    min: float | None = None
    max: float | None = None
    mean: float | None = None


class StaticMapsReport(BaseModel):
    """
    Summary of a static map run.

    Attributes
    ----------
    requested_samples : int
        Requested sample count
    traced_samples : int
        Samples traced successfully
    excluded_samples : int
        Samples excluded (out of bounds or no flow path)
    seed : int | None
        Random seed used for sampling
    rasters : list[RasterSummary]
        Per-raster statistics
    """

    requested_samples: int = Field(..., ge=0)
    traced_samples: int = Field(..., ge=0)
    excluded_samples: int = Field(..., ge=0)
    seed: int | None = None
    rasters: list[RasterSummary] = Field(default_factory=list)
