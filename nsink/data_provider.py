"""
Prepared watershed data: entities, table preparation and loading.

Standardizes NHDPlus, SSURGO and raster inputs for one HUC12 into a
single immutable ``PreparedData`` object. Attribute-table joins
(flowlines x time of travel x flow, waterbodies x lake morphology) are
materialized once here into explicit indices keyed by ``stream_comid``
and ``lake_comid``, so the removal and tracing code never re-joins tables.

All layers pass through :func:`prepare_data`, the single gate where grid
alignment and CRS agreement with the raster template are checked.
"""

import logging
import math
import time
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

import geopandas as gpd
import numpy as np
import pandas as pd
from shapely.geometry import LineString, MultiPolygon, Polygon
from shapely.ops import unary_union

from nsink import constants
from nsink.config import Settings, get_settings
from nsink.errors import GridMismatchError
from nsink.grid import Raster, RasterGrid, check_crs, check_grid

logger = logging.getLogger(__name__)

# Shapefile driver truncates column names to 10 characters
_SHAPEFILE_RENAMES = {
    "stream_com": "stream_comid",
    "hydricrati": "hydricrating",
}


@dataclass(frozen=True)
class StreamSegment:
    """
    NHDPlus flowline joined with its network attributes.

    Attributes
    ----------
    stream_comid : int
        Flowline identifier
    from_node : int
        Upstream node identifier
    to_node : int
        Downstream node identifier
    stream_order : int
        Strahler stream order
    lake_comid : int | None
        Waterbody the flowline passes through (None if none)
    totma : float
        Time of travel through the segment [days] (NaN if unknown)
    q_cms : float
        Mean annual flow [m3/s] (NaN if unknown)
    mean_depth : float
        Mean reach depth derived from flow [m] (NaN if unknown)
    ftype : str
        NHD feature type
    geometry : LineString | None
        Flowline geometry
    """

    stream_comid: int
    from_node: int
    to_node: int
    stream_order: int
    lake_comid: int | None = None
    totma: float = math.nan
    q_cms: float = math.nan
    mean_depth: float = math.nan
    ftype: str = "StreamRiver"
    geometry: LineString | None = field(default=None, compare=False, repr=False)

    @property
    def in_lake(self) -> bool:
        return self.lake_comid is not None


@dataclass(frozen=True)
class Lake:
    """
    NHDPlus waterbody joined with lake morphology.

    Attributes
    ----------
    lake_comid : int
        Waterbody identifier
    meandepth : float
        Mean depth [m] (NaN if unknown)
    lakevolume : float
        Volume [m3] (NaN if unknown)
    maxdepth : float
        Maximum depth [m] (NaN if unknown)
    lakearea : float
        Surface area [m2] (NaN if unknown)
    geometry : Polygon | MultiPolygon | None
        Waterbody outline
    """

    lake_comid: int
    meandepth: float = math.nan
    lakevolume: float = math.nan
    maxdepth: float = math.nan
    lakearea: float = math.nan
    geometry: Polygon | MultiPolygon | None = field(
        default=None, compare=False, repr=False
    )

    @property
    def has_morphology(self) -> bool:
        return not math.isnan(self.meandepth)

    @property
    def surface_area_m2(self) -> float:
        """Morphology area if known, else polygon area."""
        if not math.isnan(self.lakearea) and self.lakearea > 0:
            return self.lakearea
        if self.geometry is not None:
            return float(self.geometry.area)
        return math.nan


@dataclass(frozen=True)
class PreparedData:
    """
    Standardized inputs for one watershed.

    Vector layers are GeoDataFrames, rasters share ``raster_template``.
    ``segments`` holds every flowline that has network topology;
    ``lakes_by_id`` every waterbody with morphology joined.
    """

    streams: gpd.GeoDataFrame
    lakes: gpd.GeoDataFrame
    ssurgo: gpd.GeoDataFrame
    fdr: Raster
    impervious: Raster
    nlcd: Raster
    q: pd.DataFrame
    tot: pd.DataFrame
    lakemorpho: pd.DataFrame
    huc: Polygon | MultiPolygon
    raster_template: RasterGrid
    segments: Mapping[int, StreamSegment]
    lakes_by_id: Mapping[int, Lake]

    @property
    def network_lake_ids(self) -> frozenset[int]:
        """Lakes that at least one network segment flows through."""
        return frozenset(
            s.lake_comid for s in self.segments.values() if s.lake_comid is not None
        )

    @property
    def off_network_streams(self) -> gpd.GeoDataFrame:
        """Flowlines without network topology (no time of travel record)."""
        mask = ~self.streams["stream_comid"].isin(list(self.segments))
        return self.streams[mask]

    @property
    def off_network_lakes(self) -> gpd.GeoDataFrame:
        """Waterbodies no network segment passes through."""
        mask = ~self.lakes["lake_comid"].isin(list(self.network_lake_ids))
        return self.lakes[mask]


# =============================================================================
# Table preparation
# =============================================================================


def _clean_missing(series: pd.Series) -> pd.Series:
    """Replace NHDPlus missing-value codes (-9998 and below) with NaN."""
    values = pd.to_numeric(series, errors="coerce").astype(float)
    return values.where(values > constants.NHD_MISSING)


def prep_q(erom: pd.DataFrame) -> pd.DataFrame:
    """
    Prepare stream flow from the EROM table.

    Parameters
    ----------
    erom : pd.DataFrame
        EROM table with ``ComID`` and ``Q0001E`` (mean annual flow, cfs)

    Returns
    -------
    pd.DataFrame
        Columns stream_comid, q_cfs, q_cms, mean_reach_depth [m]
    """
    q = pd.DataFrame(
        {
            "stream_comid": erom["ComID"].astype(np.int64),
            "q_cfs": _clean_missing(erom["Q0001E"]),
        }
    )
    q["q_cms"] = q["q_cfs"] * constants.CMS_PER_CFS
    q["mean_reach_depth"] = constants.DEPTH_COEF * q["q_cms"] ** constants.DEPTH_EXP
    return q.reset_index(drop=True)


def prep_tot(vaa: pd.DataFrame) -> pd.DataFrame:
    """
    Prepare time of travel and node topology from the flowline VAA table.

    Returns
    -------
    pd.DataFrame
        Columns stream_comid, totma [days], fromnode, tonode, stream_order
    """
    vaa = vaa.rename(columns=str.lower)
    tot = pd.DataFrame(
        {
            "stream_comid": vaa["comid"].astype(np.int64),
            "totma": _clean_missing(vaa["totma"]),
            "fromnode": vaa["fromnode"].astype(np.int64),
            "tonode": vaa["tonode"].astype(np.int64),
            "stream_order": vaa["streamorde"].astype(np.int64),
        }
    )
    return tot.reset_index(drop=True)


def prep_lakemorpho(table: pd.DataFrame) -> pd.DataFrame:
    """
    Prepare lake morphology from the waterbody lake morphology table.

    Returns
    -------
    pd.DataFrame
        Columns lake_comid, meandepth, lakevolume, maxdepth, meandused,
        meandcode, lakearea
    """
    table = table.rename(columns=str.lower).rename(columns={"comid": "lake_comid"})
    lakemorpho = table[
        [
            "lake_comid",
            "meandepth",
            "lakevolume",
            "maxdepth",
            "meandused",
            "meandcode",
            "lakearea",
        ]
    ].copy()
    lakemorpho["lake_comid"] = lakemorpho["lake_comid"].astype(np.int64)
    for col in ("meandepth", "lakevolume", "maxdepth", "meandused", "lakearea"):
        lakemorpho[col] = _clean_missing(lakemorpho[col])
    return lakemorpho.reset_index(drop=True)


def prep_streams(
    flowlines: gpd.GeoDataFrame,
    huc: Polygon | MultiPolygon | None = None,
) -> gpd.GeoDataFrame:
    """
    Standardize NHDPlus flowlines.

    Lower-cases columns, renames ``comid`` to ``stream_comid`` and
    ``wbareacomi`` to ``lake_comid`` (0 becomes missing) and removes
    coastline features.

    With ``huc`` (same CRS as the flowlines) only flowlines intersecting
    the watershed are kept. Flowlines whose geometry is shorter than
    ``MIN_STREAM_LENGTH_FRACTION`` of their NHD ``lengthkm`` are dropped
    as clipped remnants, and the rest are cropped to the watershed
    bounding box.
    """
    streams = flowlines.rename(columns=str.lower)
    streams = streams.rename(
        columns={"comid": "stream_comid", "wbareacomi": "lake_comid"}
    )
    streams = streams[streams["ftype"] != constants.FTYPE_COASTLINE].copy()
    streams["stream_comid"] = streams["stream_comid"].astype(np.int64)
    lake_ids = pd.to_numeric(streams["lake_comid"], errors="coerce")
    streams["lake_comid"] = lake_ids.where(lake_ids > 0).astype("Int64")
    streams = streams.set_geometry(streams.geometry.force_2d())

    if huc is not None:
        n_before = len(streams)
        streams = streams[streams.intersects(huc)]
        if "lengthkm" in streams.columns:
            lengthkm = pd.to_numeric(streams["lengthkm"], errors="coerce")
            fraction = streams.geometry.length / constants.M_PER_KM / lengthkm
            streams = streams[fraction >= constants.MIN_STREAM_LENGTH_FRACTION]
        streams = streams.drop(columns=["lengthkm", "shape_leng"], errors="ignore")
        streams = streams.set_geometry(streams.geometry.clip_by_rect(*huc.bounds))
        streams = streams[~streams.geometry.is_empty]
        logger.debug(f"Streams clipped to watershed: {n_before} -> {len(streams)}")

    return streams.reset_index(drop=True)


def prep_lakes(
    waterbodies: gpd.GeoDataFrame,
    huc: Polygon | MultiPolygon | None = None,
) -> gpd.GeoDataFrame:
    """Standardize NHDPlus waterbodies, keeping lakes and ponds (within ``huc`` if given)."""
    lakes = waterbodies.rename(columns=str.lower).rename(
        columns={"comid": "lake_comid"}
    )
    lakes = lakes[lakes["ftype"] == constants.FTYPE_LAKE_POND].copy()
    lakes["lake_comid"] = lakes["lake_comid"].astype(np.int64)
    lakes = lakes.set_geometry(lakes.geometry.force_2d())
    if huc is not None:
        lakes = lakes[lakes.intersects(huc)]
    return lakes.reset_index(drop=True)


def prep_ssurgo(
    mapunits: gpd.GeoDataFrame,
    components: pd.DataFrame,
) -> gpd.GeoDataFrame:
    """
    Attach hydric soil percentage to SSURGO map units.

    Hydric removal is limited to land: components named "Water" and
    subaqueous soils never count as hydric. ``hydric_pct`` is the summed
    component percentage of hydric components per map unit. Salt water
    map units (musym "Ws") are dropped.

    Parameters
    ----------
    mapunits : gpd.GeoDataFrame
        Map unit polygons with ``mukey`` and ``musym``
    components : pd.DataFrame
        Component table with ``mukey``, ``hydricrating``, ``comppct_r``
        (or ``comppct.r``), ``compname``, ``drainagecl``

    Returns
    -------
    gpd.GeoDataFrame
        Map units with ``hydricrating`` and ``hydric_pct`` (0-100)
    """
    ssurgo = mapunits.rename(columns=str.lower).copy()
    comp = components.rename(columns=str.lower).rename(
        columns={"comppct.r": "comppct_r"}
    )
    ssurgo["mukey"] = ssurgo["mukey"].astype(str)
    comp = comp.assign(mukey=comp["mukey"].astype(str))

    not_land = (comp["compname"] == "Water") | (comp["drainagecl"] == "Subaqueous")
    comp = comp.assign(hydricrating=comp["hydricrating"].where(~not_land, "No"))

    hydric = (
        comp[comp["hydricrating"] == "Yes"]
        .groupby("mukey", as_index=False)["comppct_r"]
        .sum()
        .rename(columns={"comppct_r": "hydric_pct"})
    )
    ssurgo = ssurgo.merge(hydric, on="mukey", how="left")
    ssurgo["hydricrating"] = np.where(ssurgo["hydric_pct"].notna(), "Yes", "No")
    ssurgo["hydric_pct"] = ssurgo["hydric_pct"].fillna(0.0).clip(0.0, 100.0)
    if "musym" in ssurgo.columns:
        ssurgo = ssurgo[ssurgo["musym"] != constants.SSURGO_SALTWATER_MUSYM]

    keep = [
        c
        for c in ("areasymbol", "spatialver", "musym", "mukey", "hydricrating", "hydric_pct")
        if c in ssurgo.columns
    ]
    return ssurgo[keep + ["geometry"]].reset_index(drop=True)


def remove_openwater(
    huc: Polygon | MultiPolygon,
    mapunits: gpd.GeoDataFrame,
    resolution: float = constants.DEFAULT_RESOLUTION_M,
    tolerance_m: float = 2.0,
) -> Polygon | MultiPolygon:
    """
    Remove salt water portions of a coastal HUC.

    Map units with musym "Ws" are buffered by ``tolerance_m`` and
    subtracted from the watershed. Remaining slivers smaller than one
    raster pixel are dropped.
    """
    musym = mapunits.rename(columns=str.lower)["musym"]
    saltwater = mapunits[musym == constants.SSURGO_SALTWATER_MUSYM]
    if saltwater.empty:
        return huc

    water = unary_union(list(saltwater.geometry.buffer(tolerance_m)))
    land = huc.difference(water)
    parts = list(land.geoms) if hasattr(land, "geoms") else [land]
    pixel_area = resolution * resolution
    parts = [p for p in parts if p.geom_type == "Polygon" and p.area > pixel_area]

    logger.info(
        f"Removed open water: {huc.area / 1e6:.2f} km² -> "
        f"{sum(p.area for p in parts) / 1e6:.2f} km² ({len(parts)} parts)"
    )
    if not parts:
        raise ValueError("Watershed is entirely open water")
    if len(parts) == 1:
        return parts[0]
    return MultiPolygon(parts)


# =============================================================================
# Index construction and the validation gate
# =============================================================================


def _optional_int(value) -> int | None:
    if value is None or pd.isna(value):
        return None
    value = int(value)
    return value if value > 0 else None


def _float(value) -> float:
    if value is None or pd.isna(value):
        return math.nan
    return float(value)


def _check_extent(huc: Polygon | MultiPolygon, template: RasterGrid) -> None:
    """The watershed must lie on the raster template (one cell of slack)."""
    extent = template.extent_polygon().buffer(template.cellsize)
    if not extent.covers(huc):
        raise GridMismatchError(
            f"huc: boundary {tuple(round(v, 1) for v in huc.bounds)} extends "
            f"beyond the raster template {template.bounds}"
        )


def build_segments(
    streams: gpd.GeoDataFrame,
    tot: pd.DataFrame,
    q: pd.DataFrame,
) -> dict[int, StreamSegment]:
    """
    Join flowlines with time of travel and flow into network segments.

    Flowlines without a time of travel record have no node topology and
    stay off the network. Missing flow leaves ``q_cms`` as NaN.
    """
    table = streams.merge(tot, on="stream_comid", how="inner")
    table = table.merge(
        q[["stream_comid", "q_cms", "mean_reach_depth"]],
        on="stream_comid",
        how="left",
    )

    segments: dict[int, StreamSegment] = {}
    for row in table.itertuples(index=False):
        comid = int(row.stream_comid)
        segments[comid] = StreamSegment(
            stream_comid=comid,
            from_node=int(row.fromnode),
            to_node=int(row.tonode),
            stream_order=int(row.stream_order),
            lake_comid=_optional_int(row.lake_comid),
            totma=_float(row.totma),
            q_cms=_float(row.q_cms),
            mean_depth=_float(row.mean_reach_depth),
            ftype=str(getattr(row, "ftype", "StreamRiver")),
            geometry=row.geometry,
        )
    return segments


def build_lakes(
    lakes: gpd.GeoDataFrame,
    lakemorpho: pd.DataFrame,
) -> dict[int, Lake]:
    """Join waterbodies with lake morphology, keyed by lake_comid."""
    morph_cols = ["lake_comid", "meandepth", "lakevolume", "maxdepth", "lakearea"]
    table = lakes[["lake_comid", "geometry"]].merge(
        lakemorpho[morph_cols], on="lake_comid", how="left"
    )
    return {
        int(row.lake_comid): Lake(
            lake_comid=int(row.lake_comid),
            meandepth=_float(row.meandepth),
            lakevolume=_float(row.lakevolume),
            maxdepth=_float(row.maxdepth),
            lakearea=_float(row.lakearea),
            geometry=row.geometry,
        )
        for row in table.itertuples(index=False)
    }


def prepare_data(
    streams: gpd.GeoDataFrame,
    lakes: gpd.GeoDataFrame,
    ssurgo: gpd.GeoDataFrame,
    fdr: Raster,
    impervious: Raster,
    nlcd: Raster,
    q: pd.DataFrame,
    tot: pd.DataFrame,
    lakemorpho: pd.DataFrame,
    huc: Polygon | MultiPolygon | gpd.GeoSeries | gpd.GeoDataFrame,
    raster_template: RasterGrid | None = None,
) -> PreparedData:
    """
    Validate layers against the raster template and build indices.

    Parameters
    ----------
    streams, lakes, ssurgo : gpd.GeoDataFrame
        Prepared vector layers (see ``prep_*`` functions)
    fdr, impervious, nlcd : Raster
        Flow direction (D8), impervious percent and land cover rasters
    q, tot, lakemorpho : pd.DataFrame
        Flow, time of travel and lake morphology tables
    huc : Polygon | MultiPolygon | gpd.GeoSeries | gpd.GeoDataFrame
        Watershed boundary. A GeoSeries or GeoDataFrame has its CRS
        checked against the template and its parts merged
    raster_template : RasterGrid, optional
        Reference grid; defaults to the flow direction grid

    Returns
    -------
    PreparedData
        Immutable prepared data

    Raises
    ------
    GridMismatchError
        If any raster or vector layer disagrees with the template, or the
        watershed boundary extends beyond the template extent
    """
    t0 = time.time()
    template = raster_template or fdr.grid

    for name, raster in (("fdr", fdr), ("impervious", impervious), ("nlcd", nlcd)):
        check_grid(name, raster, template)
    for name, layer in (("streams", streams), ("lakes", lakes), ("ssurgo", ssurgo)):
        check_crs(name, layer.crs, template)
    if isinstance(huc, (gpd.GeoSeries, gpd.GeoDataFrame)):
        check_crs("huc", huc.crs, template)
        huc = unary_union(list(huc.geometry))
    _check_extent(huc, template)

    segments = build_segments(streams, tot, q)
    lakes_by_id = build_lakes(lakes, lakemorpho)

    logger.info(
        f"Prepared data: {len(segments):,} network segments "
        f"({len(streams) - len(segments):,} off-network flowlines), "
        f"{len(lakes_by_id):,} lakes, {len(ssurgo):,} soil units, "
        f"grid {template.height}x{template.width} in {time.time() - t0:.2f}s"
    )

    return PreparedData(
        streams=streams,
        lakes=lakes,
        ssurgo=ssurgo,
        fdr=fdr,
        impervious=impervious,
        nlcd=nlcd,
        q=q,
        tot=tot,
        lakemorpho=lakemorpho,
        huc=huc,
        raster_template=template,
        segments=MappingProxyType(segments),
        lakes_by_id=MappingProxyType(lakes_by_id),
    )


# =============================================================================
# Building from source layers
# =============================================================================


def _to_crs(layer: gpd.GeoDataFrame, crs) -> gpd.GeoDataFrame:
    # Layers without a CRS are left for the gate to reject
    if layer.crs is None:
        return layer
    return layer.to_crs(crs)


def build_prepared_data(
    huc: gpd.GeoDataFrame | gpd.GeoSeries,
    flowlines: gpd.GeoDataFrame,
    waterbodies: gpd.GeoDataFrame,
    mapunits: gpd.GeoDataFrame,
    components: pd.DataFrame,
    erom: pd.DataFrame,
    vaa: pd.DataFrame,
    lakemorpho_table: pd.DataFrame,
    fdr: Raster,
    impervious: Raster,
    nlcd: Raster,
    settings: Settings | None = None,
) -> PreparedData:
    """
    Prepare one watershed from raw NHDPlus, SSURGO and raster layers.

    The watershed CRS is the working CRS. Salt water is removed from the
    boundary first, then a raster template of ``raster_resolution_m``
    cells is laid over the remaining land. Vector layers are reprojected
    and clipped to the land boundary, rasters are resampled onto the
    template (nearest neighbour) and everything passes through
    :func:`prepare_data`.

    Parameters
    ----------
    huc : gpd.GeoDataFrame | gpd.GeoSeries
        Watershed boundary (parts are merged); must carry a CRS
    flowlines, waterbodies : gpd.GeoDataFrame
        NHDPlus flowline and waterbody layers
    mapunits : gpd.GeoDataFrame
        SSURGO map unit polygons
    components : pd.DataFrame
        SSURGO component table
    erom, vaa, lakemorpho_table : pd.DataFrame
        NHDPlus EROM flow, flowline VAA and lake morphology tables
    fdr, impervious, nlcd : Raster
        Flow direction, impervious percent and land cover rasters
    settings : Settings, optional
        Engine settings (resolution, NoData)

    Returns
    -------
    PreparedData

    Raises
    ------
    GridMismatchError
        If the watershed or a layer has no CRS
    ValueError
        If the watershed is entirely open water
    """
    from nsink.raster_io import warp_to_grid

    settings = settings or get_settings()
    if huc.crs is None:
        raise GridMismatchError("huc: layer has no CRS")
    t0 = time.time()
    crs = huc.crs

    mapunits = _to_crs(mapunits, crs)
    boundary = unary_union(list(huc.geometry))
    land = remove_openwater(boundary, mapunits, settings.raster_resolution_m)

    template = RasterGrid.from_polygon(
        land, settings.raster_resolution_m, crs.to_string(), settings.nodata
    )
    logger.info(
        f"Raster template: {template.height}x{template.width} cells of "
        f"{settings.raster_resolution_m} m ({template.crs})"
    )

    data = prepare_data(
        streams=prep_streams(_to_crs(flowlines, crs), land),
        lakes=prep_lakes(_to_crs(waterbodies, crs), land),
        ssurgo=prep_ssurgo(mapunits, components),
        fdr=warp_to_grid(fdr, template),
        impervious=warp_to_grid(impervious, template),
        nlcd=warp_to_grid(nlcd, template),
        q=prep_q(erom),
        tot=prep_tot(vaa),
        lakemorpho=prep_lakemorpho(lakemorpho_table),
        huc=gpd.GeoSeries([land], crs=crs),
        raster_template=template,
    )
    logger.info(f"Watershed data built in {time.time() - t0:.2f}s")
    return data


# =============================================================================
# Prepared folders
# =============================================================================


def save_prepared_data(data: PreparedData, output_folder: Path) -> list[Path]:
    """
    Write prepared data in the folder layout read by :func:`load_prepared_data`.

    Vector layers are written as GeoPackages. Missing ``lake_comid``
    values are stored as 0. Rasters keep their data type.

    Returns
    -------
    list[Path]
        Written file paths
    """
    from nsink.raster_io import save_raster_geotiff

    output_folder = Path(output_folder)
    output_folder.mkdir(parents=True, exist_ok=True)
    crs = data.raster_template.crs

    streams = data.streams.assign(
        lake_comid=data.streams["lake_comid"].fillna(0).astype(np.int64)
    )
    layers = {
        "huc": gpd.GeoDataFrame(geometry=[data.huc], crs=crs),
        "streams": streams,
        "lakes": data.lakes,
        "ssurgo": data.ssurgo,
    }
    written = []
    for name, layer in layers.items():
        path = output_folder / f"{name}.gpkg"
        layer.to_file(path, driver="GPKG")
        written.append(path)

    for name in ("fdr", "impervious", "nlcd"):
        raster = getattr(data, name)
        path = output_folder / f"{name}.tif"
        save_raster_geotiff(raster, path, dtype=raster.data.dtype.name)
        written.append(path)

    for name in ("q", "tot", "lakemorpho"):
        path = output_folder / f"{name}.csv"
        getattr(data, name).to_csv(path, index=False)
        written.append(path)

    logger.info(f"Prepared data saved to {output_folder} ({len(written)} files)")
    return written


def _read_vector(folder: Path, name: str) -> gpd.GeoDataFrame:
    """Read ``name`` from a GeoPackage or shapefile in ``folder``."""
    for suffix in (".gpkg", ".shp"):
        path = folder / f"{name}{suffix}"
        if path.exists():
            gdf = gpd.read_file(path)
            return gdf.rename(columns=_SHAPEFILE_RENAMES)
    raise FileNotFoundError(f"Vector layer '{name}' not found in {folder}")


def load_prepared_data(
    input_folder: Path,
) -> PreparedData:
    """
    Load a folder of prepared layers.

    Expected files: ``huc``, ``streams``, ``lakes``, ``ssurgo`` (.gpkg or
    .shp), ``fdr.tif``, ``impervious.tif``, ``nlcd.tif``, ``q.csv``,
    ``tot.csv``, ``lakemorpho.csv``.

    Raises
    ------
    FileNotFoundError
        If the folder or a required file does not exist
    GridMismatchError
        If layers do not share one grid/CRS
    """
    from nsink.raster_io import read_raster

    input_folder = Path(input_folder)
    if not input_folder.is_dir():
        raise FileNotFoundError(f"Input folder does not exist: {input_folder}")

    logger.info(f"Reading prepared data from {input_folder}")

    huc_gdf = _read_vector(input_folder, "huc")
    streams = _read_vector(input_folder, "streams")
    lakes = _read_vector(input_folder, "lakes")
    ssurgo = _read_vector(input_folder, "ssurgo")

    streams["stream_comid"] = streams["stream_comid"].astype(np.int64)
    lake_ids = pd.to_numeric(streams["lake_comid"], errors="coerce")
    streams["lake_comid"] = lake_ids.where(lake_ids > 0).astype("Int64")
    lakes["lake_comid"] = lakes["lake_comid"].astype(np.int64)

    fdr = read_raster(input_folder / "fdr.tif")
    impervious = read_raster(input_folder / "impervious.tif")
    nlcd = read_raster(input_folder / "nlcd.tif")

    q = pd.read_csv(input_folder / "q.csv")
    tot = pd.read_csv(input_folder / "tot.csv")
    lakemorpho = pd.read_csv(input_folder / "lakemorpho.csv")

    return prepare_data(
        streams=streams,
        lakes=lakes,
        ssurgo=ssurgo,
        fdr=fdr,
        impervious=impervious,
        nlcd=nlcd,
        q=q,
        tot=tot,
        lakemorpho=lakemorpho,
        huc=huc_gdf,
        raster_template=fdr.grid,
    )
