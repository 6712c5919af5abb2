"""
Nitrogen removal model.

Computes per-unit removal efficiency [%] for the three kinds of sink
along a flow path:

- streams: first-order decay over the time of travel, with the decay
  rate set by mean reach depth (deeper, larger rivers remove less);
- lakes: removal from the areal hydraulic load (mean depth over
  residence time);
- land: hydric soils remove nitrogen, impervious cover overrides that
  removal proportionally.

The result is a set of removal surfaces: a raster (land with the network
burned in), the land surface as contiguous polygons, and a per-segment
network table.
"""

import logging
import math
import time
from dataclasses import dataclass
from enum import IntEnum
from types import MappingProxyType
from typing import Iterable, Mapping

import geopandas as gpd
import numpy as np
from rasterio.features import rasterize, shapes
from scipy import ndimage
from shapely.geometry import shape

from models.schemas import OffNetworkParams, OffNetworkPolicy
from nsink import constants
from nsink.config import Settings, get_settings
from nsink.data_provider import Lake, PreparedData, StreamSegment
from nsink.errors import MissingAttributeError
from nsink.flow_network import build_graph
from nsink.grid import Raster

logger = logging.getLogger(__name__)


class RemovalType(IntEnum):
    """Kind of sink a removal value belongs to (raster type codes)."""

    LAND_NONE = 0
    LAND_HYDRIC = 1
    LAND_IMPERVIOUS = 2
    STREAM = 3
    LAKE = 4

    @property
    def label(self) -> str:
        return self.name.lower().replace("_", "-")


# =============================================================================
# Removal functions
# =============================================================================


def stream_removal_pct(
    totma: float,
    mean_depth: float,
    stream_order: int,
    max_stream_order: int = constants.DEFAULT_MAX_REMOVAL_STREAM_ORDER,
) -> float:
    """
    Nitrogen removal in a stream segment.

    ``removal = 100 * (1 - exp(-k * totma))`` with the first-order rate
    ``k = 0.0513 * depth ** -1.319`` [1/day].

    Parameters
    ----------
    totma : float
        Time of travel [days]
    mean_depth : float
        Mean reach depth [m]
    stream_order : int
        Strahler stream order
    max_stream_order : int
        Orders above this value get no removal

    Returns
    -------
    float
        Removal percentage (0-100)

    Examples
    --------
    >>> stream_removal_pct(0.0, 0.3, 1)
    0.0
    >>> round(stream_removal_pct(1.0, 0.2612, 1), 1)
    26.0
    """
    if totma <= 0 or stream_order > max_stream_order:
        return 0.0
    if mean_depth <= 0:
        return 100.0
    k = constants.STREAM_K_COEF * mean_depth**constants.STREAM_K_EXP
    removal = 100.0 * (1.0 - math.exp(-k * totma))
    return float(min(100.0, max(0.0, removal)))


def lake_removal_pct(
    q_cms: float,
    lake_area_m2: float,
    mean_depth: float,
    lake_volume: float = math.nan,
) -> float:
    """
    Nitrogen removal in a lake from its hydraulic load.

    Residence time ``tau = V / (Q * s_per_year)`` [yr] and hydraulic load
    ``Hl = depth / tau`` [m/yr]; ``removal = 79.24 - 33.26 * log10(Hl)``.
    With volume ``area * depth`` the load reduces to outflow per unit area.

    Parameters
    ----------
    q_cms : float
        Lake outflow [m3/s]
    lake_area_m2 : float
        Lake surface area [m2]
    mean_depth : float
        Mean depth [m]
    lake_volume : float, optional
        Volume [m3]; derived from area and depth when NaN

    Returns
    -------
    float
        Removal percentage (0-100)
    """
    volume = lake_volume
    if math.isnan(volume) or volume <= 0:
        volume = lake_area_m2 * mean_depth
    if q_cms <= 0 or volume <= 0 or mean_depth <= 0:
        # No throughflow: everything entering is retained
        return 100.0

    residence_time_yr = volume / (q_cms * constants.SECONDS_PER_YEAR)
    hydraulic_load = mean_depth / residence_time_yr
    removal = constants.LAKE_INTERCEPT - constants.LAKE_SLOPE * math.log10(
        hydraulic_load
    )
    return float(min(100.0, max(0.0, removal)))


def land_removal_pct(
    hydric_pct: np.ndarray,
    impervious_pct: np.ndarray,
    hydric_threshold: float = constants.DEFAULT_HYDRIC_THRESHOLD_PCT,
) -> np.ndarray:
    """
    Land removal surface.

    100 where hydric soil covers at least ``hydric_threshold`` percent,
    reduced proportionally by impervious cover.
    """
    base = np.where(hydric_pct >= hydric_threshold, 100.0, 0.0)
    imperv = np.clip(np.nan_to_num(impervious_pct, nan=0.0), 0.0, 100.0)
    return np.clip(base * (1.0 - imperv / 100.0), 0.0, 100.0)


# =============================================================================
# Removal surfaces
# =============================================================================


@dataclass(frozen=True)
class RemovalSurfaces:
    """
    Output of :func:`compute_removal`.

    Attributes
    ----------
    raster_removal : Raster
        Removal [%] per cell, land with the network burned in
    raster_type : Raster
        ``RemovalType`` code per cell (int32, NoData outside the watershed)
    land_removal : Raster
        Land-only removal [%] (off-network surface)
    land_type : Raster
        Land-only ``RemovalType`` code
    land_units : Raster
        Contiguous land unit id per cell (0 outside the watershed);
        ids match ``land_off_network_removal.unit_id``
    land_off_network_removal : gpd.GeoDataFrame
        Land unit polygons with ``n_removal``
    land_off_network_removal_type : gpd.GeoDataFrame
        Land unit polygons with ``removal_type``
    network_removal : gpd.GeoDataFrame
        One row per network segment with ``n_removal`` and ``removal_type``
    segment_removal : Mapping[int, float]
        Removal [%] by stream_comid
    lake_removal : Mapping[int, float]
        Removal [%] by lake_comid
    """

    raster_removal: Raster
    raster_type: Raster
    land_removal: Raster
    land_type: Raster
    land_units: Raster
    land_off_network_removal: gpd.GeoDataFrame
    land_off_network_removal_type: gpd.GeoDataFrame
    network_removal: gpd.GeoDataFrame
    segment_removal: Mapping[int, float]
    lake_removal: Mapping[int, float]

    @property
    def raster_method(self) -> dict[str, Raster]:
        return {"removal": self.raster_removal, "type": self.raster_type}

    def land_cell(self, row: int, col: int) -> tuple[int, float, RemovalType]:
        """(unit id, removal %, type) of a land cell; off-surface cells remove 0."""
        pct = self.land_removal.value_at(row, col)
        if pct is None:
            return 0, 0.0, RemovalType.LAND_NONE
        unit = int(self.land_units.data[row, col])
        kind = RemovalType(int(self.land_type.data[row, col]))
        return unit, pct, kind


def _lake_outflow(members: Iterable[StreamSegment]) -> float:
    flows = [s.q_cms for s in members if not math.isnan(s.q_cms)]
    return max(flows) if flows else math.nan


def compute_network_removal(
    data: PreparedData,
    settings: Settings | None = None,
) -> tuple[gpd.GeoDataFrame, dict[int, float], dict[int, float]]:
    """
    Removal for every network segment.

    Lake-contained segments share their lake's removal; the lake outflow
    is the largest flow among its segments.

    Returns
    -------
    tuple
        (network_removal GeoDataFrame, removal by stream_comid,
        removal by lake_comid)

    Raises
    ------
    InconsistentTopologyError
        If a segment references a lake that does not exist
    MissingAttributeError
        If time of travel, flow or lake morphology is missing
    """
    settings = settings or get_settings()

    graph = build_graph(data.segments, data.lakes_by_id)

    lake_removal: dict[int, float] = {}
    for lake_id in sorted(data.network_lake_ids):
        lake: Lake = graph.lake(lake_id)
        if not lake.has_morphology:
            raise MissingAttributeError(
                f"No lake morphology (mean depth) for lake {lake_id}"
            )
        q_out = _lake_outflow(graph.segments_in_lake(lake_id))
        if math.isnan(q_out):
            raise MissingAttributeError(f"No flow record for any segment of lake {lake_id}")
        lake_removal[lake_id] = lake_removal_pct(
            q_out, lake.surface_area_m2, lake.meandepth, lake.lakevolume
        )

    segment_removal: dict[int, float] = {}
    rows = []
    for comid in sorted(data.segments):
        seg = data.segments[comid]
        if seg.lake_comid is not None:
            pct = lake_removal[seg.lake_comid]
            kind = RemovalType.LAKE
        else:
            if math.isnan(seg.totma):
                raise MissingAttributeError(
                    f"No time of travel for segment {comid} "
                    f"(node {seg.from_node} -> {seg.to_node})"
                )
            if math.isnan(seg.mean_depth):
                raise MissingAttributeError(f"No flow record for segment {comid}")
            pct = stream_removal_pct(
                seg.totma,
                seg.mean_depth,
                seg.stream_order,
                settings.max_removal_stream_order,
            )
            kind = RemovalType.STREAM
        segment_removal[comid] = pct
        rows.append(
            {
                "stream_comid": comid,
                "lake_comid": seg.lake_comid,
                "n_removal": pct,
                "removal_type": kind.label,
                "geometry": seg.geometry,
            }
        )

    network = gpd.GeoDataFrame(
        rows,
        columns=["stream_comid", "lake_comid", "n_removal", "removal_type", "geometry"],
        geometry="geometry",
        crs=data.streams.crs,
    )
    logger.info(
        f"Network removal: {len(segment_removal):,} segments, "
        f"{len(lake_removal):,} lakes"
    )
    return network, segment_removal, lake_removal


def _rasterize_mask(geometries, template, all_touched: bool = True) -> np.ndarray:
    geoms = [g for g in geometries if g is not None and not g.is_empty]
    if not geoms:
        return np.zeros(template.shape, dtype=np.bool_)
    burned = rasterize(
        ((g, 1) for g in geoms),
        out_shape=template.shape,
        transform=template.transform,
        fill=0,
        all_touched=all_touched,
        dtype="uint8",
    )
    return burned.astype(np.bool_)


def compute_land_removal(
    data: PreparedData,
    off_network: OffNetworkParams,
    settings: Settings | None = None,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Land removal and type arrays on the raster template.

    Returns
    -------
    tuple
        (removal float64 array, type int8 array, watershed mask)
    """
    settings = settings or get_settings()
    template = data.raster_template

    soils = [
        (geom, float(pct))
        for geom, pct in zip(data.ssurgo.geometry, data.ssurgo["hydric_pct"], strict=True)
        if geom is not None and not geom.is_empty
    ]
    if soils:
        hydric = rasterize(
            soils,
            out_shape=template.shape,
            transform=template.transform,
            fill=0.0,
            dtype="float32",
        ).astype(np.float64)
    else:
        hydric = np.zeros(template.shape, dtype=np.float64)

    impervious = np.where(
        data.impervious.valid_mask, data.impervious.data.astype(np.float64), 0.0
    )

    removal = land_removal_pct(hydric, impervious, settings.hydric_threshold_pct)
    kind = np.full(template.shape, RemovalType.LAND_NONE, dtype=np.int8)
    kind[hydric >= settings.hydric_threshold_pct] = RemovalType.LAND_HYDRIC
    kind[impervious >= settings.impervious_threshold_pct] = RemovalType.LAND_IMPERVIOUS

    off_streams = data.off_network_streams
    is_canal = off_streams["ftype"] == constants.FTYPE_CANAL_DITCH
    overrides = (
        ("lakes", off_network.lakes, data.off_network_lakes.geometry, False),
        ("streams", off_network.streams, off_streams[~is_canal].geometry, True),
        ("canalsditches", off_network.canalsditches, off_streams[is_canal].geometry, True),
    )
    for name, policy, geometries, all_touched in overrides:
        mask = _rasterize_mask(geometries, template, all_touched=all_touched)
        if not mask.any():
            continue
        if policy == OffNetworkPolicy.REMOVAL:
            removal[mask] = 100.0
            kind[mask] = RemovalType.LAND_HYDRIC
        else:
            removal[mask] = 0.0
            kind[mask] = RemovalType.LAND_NONE
        logger.debug(f"Off-network {name}: {int(mask.sum())} cells set to {policy.value}")

    inside = _rasterize_mask([data.huc], template, all_touched=False)
    return removal, kind, inside


def label_land_units(
    removal: np.ndarray,
    kind: np.ndarray,
    inside: np.ndarray,
) -> np.ndarray:
    """
    Label 4-connected regions of equal removal and type.

    Returns
    -------
    np.ndarray
        int32 unit ids (1..n), 0 outside the watershed
    """
    units = np.zeros(removal.shape, dtype=np.int32)
    rounded = np.round(removal, 6)
    next_id = 1
    for code in np.unique(kind[inside]):
        of_kind = inside & (kind == code)
        for value in np.unique(rounded[of_kind]):
            labels, n = ndimage.label(of_kind & (rounded == value))
            hit = labels > 0
            units[hit] = labels[hit] + (next_id - 1)
            next_id += n
    return units


def polygonize_land_units(
    units: np.ndarray,
    removal: np.ndarray,
    kind: np.ndarray,
    template,
    crs,
) -> gpd.GeoDataFrame:
    """Polygonize the unit raster into one row per land unit."""
    records = []
    for geom, value in shapes(
        units, mask=units > 0, connectivity=4, transform=template.transform
    ):
        records.append({"unit_id": int(value), "geometry": shape(geom)})

    if not records:
        return gpd.GeoDataFrame(
            columns=["unit_id", "n_removal", "removal_type", "geometry"],
            geometry="geometry",
            crs=crs,
        )

    gdf = gpd.GeoDataFrame(records, geometry="geometry", crs=crs)
    gdf = gdf.dissolve(by="unit_id", as_index=False)

    # One representative cell per unit carries its removal and type
    flat_units = units.ravel()
    order = np.argsort(flat_units, kind="stable")
    ids, first = np.unique(flat_units[order], return_index=True)
    first_cell = dict(zip(ids.tolist(), order[first].tolist(), strict=True))
    flat_removal = removal.ravel()
    flat_kind = kind.ravel()

    gdf["n_removal"] = [float(flat_removal[first_cell[u]]) for u in gdf["unit_id"]]
    gdf["removal_type"] = [
        RemovalType(int(flat_kind[first_cell[u]])).label for u in gdf["unit_id"]
    ]
    return gdf[["unit_id", "n_removal", "removal_type", "geometry"]]


def _burn_network(
    removal: np.ndarray,
    kind: np.ndarray,
    data: PreparedData,
    segment_removal: Mapping[int, float],
    lake_removal: Mapping[int, float],
) -> None:
    """Burn stream lines, then network lake polygons, into the arrays in place."""
    template = data.raster_template

    streams = [
        (seg.geometry, segment_removal[comid])
        for comid, seg in sorted(data.segments.items())
        if seg.lake_comid is None and seg.geometry is not None
    ]
    lakes = [
        (data.lakes_by_id[lake_id].geometry, pct)
        for lake_id, pct in sorted(lake_removal.items())
        if data.lakes_by_id[lake_id].geometry is not None
    ]

    for features, code, all_touched in (
        (streams, RemovalType.STREAM, True),
        (lakes, RemovalType.LAKE, False),
    ):
        if not features:
            continue
        burned = rasterize(
            features,
            out_shape=template.shape,
            transform=template.transform,
            fill=np.nan,
            all_touched=all_touched,
            dtype="float64",
        )
        hit = ~np.isnan(burned)
        removal[hit] = burned[hit]
        kind[hit] = code


def _type_nodata(nodata: float) -> int:
    """
    NoData of the int32 type rasters.

    The template nodata when it is integral and not a ``RemovalType`` code.
    """
    if math.isfinite(nodata) and float(nodata).is_integer() and abs(nodata) < 2**31:
        if int(nodata) not in {t.value for t in RemovalType}:
            return int(nodata)
    return constants.TYPE_NODATA


def compute_removal(
    prepared_data: PreparedData,
    off_network_params: OffNetworkParams | None = None,
    settings: Settings | None = None,
) -> RemovalSurfaces:
    """
    Compute all removal surfaces for a watershed.

    Parameters
    ----------
    prepared_data : PreparedData
        Output of ``prepare_data`` / ``load_prepared_data``
    off_network_params : OffNetworkParams, optional
        Treatment of off-network lakes, streams and canals/ditches
        (default: pass-through for all three)
    settings : Settings, optional
        Engine settings

    Returns
    -------
    RemovalSurfaces
        New immutable removal surfaces; inputs are not modified

    Raises
    ------
    MissingAttributeError
        If time of travel, flow or lake morphology is missing
    InconsistentTopologyError
        If a segment references an unknown lake
    """
    settings = settings or get_settings()
    off_network = off_network_params or OffNetworkParams()
    template = prepared_data.raster_template
    nodata = template.nodata
    crs = prepared_data.streams.crs
    t0 = time.time()

    network, segment_removal, lake_removal = compute_network_removal(
        prepared_data, settings
    )
    land, land_kind, inside = compute_land_removal(
        prepared_data, off_network, settings
    )

    units = label_land_units(land, land_kind, inside)
    polygons = polygonize_land_units(units, land, land_kind, template, crs)

    full = land.copy()
    full_kind = land_kind.copy()
    _burn_network(full, full_kind, prepared_data, segment_removal, lake_removal)

    land_out = np.where(inside, land, nodata).astype(np.float32)
    full_out = np.where(inside, full, nodata).astype(np.float32)
    type_nodata = _type_nodata(nodata)
    land_kind_out = np.where(inside, land_kind, type_nodata).astype(np.int32)
    full_kind_out = np.where(inside, full_kind, type_nodata).astype(np.int32)

    logger.info(
        f"Removal surfaces computed in {time.time() - t0:.2f}s: "
        f"{int(units.max())} land units, "
        f"{int((land_kind[inside] == RemovalType.LAND_HYDRIC).sum()):,} hydric cells"
    )

    return RemovalSurfaces(
        raster_removal=Raster(full_out, template, nodata),
        raster_type=Raster(full_kind_out, template, type_nodata),
        land_removal=Raster(land_out, template, nodata),
        land_type=Raster(land_kind_out, template, type_nodata),
        land_units=Raster(units, template),
        land_off_network_removal=polygons[["unit_id", "n_removal", "geometry"]],
        land_off_network_removal_type=polygons[["unit_id", "removal_type", "geometry"]],
        network_removal=network,
        segment_removal=MappingProxyType(segment_removal),
        lake_removal=MappingProxyType(lake_removal),
    )
