"""
Static nitrogen maps for a whole watershed.

Tracing every cell is too expensive, so flow paths are traced from a
stratified random sample of start points and the delivered nitrogen is
interpolated back to every cell (inverse distance weighting). The four
maps share the raster template:

- removal_effic: removal [%] of each cell itself (land + network)
- loading_idx: relative nitrogen load from land cover
- transport_idx: nitrogen delivered to the outlet [% of load]
- delivery_idx: loading_idx * transport_idx / 100
"""

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

import numpy as np
import shapely
from scipy.spatial import cKDTree
from shapely.geometry import MultiPolygon, Polygon
from shapely.ops import unary_union

from models.schemas import RasterSummary, StaticMapsReport
from nsink.config import Settings, get_settings
from nsink.data_provider import PreparedData
from nsink.errors import SAMPLE_ERRORS, InsufficientSampleError
from nsink.flow_network import NetworkGraph, build_graph
from nsink.flowpath import build_stream_labels, flow_direction_codes, trace
from nsink.grid import Raster, check_grid
from nsink.loading_tables import reclassify_loading
from nsink.removal import RemovalSurfaces
from nsink.summarize import summarize

logger = logging.getLogger(__name__)

# Rounds of spacing refinement when too few strata fall inside the land area
_MAX_SAMPLING_ROUNDS = 20


@dataclass(frozen=True)
class SamplePoint:
    """Traced sample point and the nitrogen it delivers [% of load]."""

    x: float
    y: float
    delivered: float


@dataclass(frozen=True)
class StaticMaps:
    """
    Four co-registered watershed rasters.

    ``samples`` holds the traced points the transport index was
    interpolated from.
    """

    removal_effic: Raster
    loading_idx: Raster
    transport_idx: Raster
    delivery_idx: Raster
    samples: tuple[SamplePoint, ...] = field(default=(), compare=False)
    requested_samples: int = 0

    def as_dict(self) -> dict[str, Raster]:
        return {
            "removal_effic": self.removal_effic,
            "loading_idx": self.loading_idx,
            "transport_idx": self.transport_idx,
            "delivery_idx": self.delivery_idx,
        }

    def to_report(self, seed: int | None = None) -> StaticMapsReport:
        return StaticMapsReport(
            requested_samples=self.requested_samples,
            traced_samples=len(self.samples),
            excluded_samples=max(0, self.requested_samples - len(self.samples)),
            seed=seed,
            rasters=[summarize_raster(name, r) for name, r in self.as_dict().items()],
        )


def summarize_raster(name: str, raster: Raster) -> RasterSummary:
    """Min/max/mean of the valid cells of a raster."""
    values = raster.data[raster.valid_mask]
    if values.size == 0:
        return RasterSummary(name=name, valid_cells=0)
    return RasterSummary(
        name=name,
        valid_cells=int(values.size),
        min=float(values.min()),
        max=float(values.max()),
        mean=float(values.mean()),
    )


# =============================================================================
# Sampling
# =============================================================================


def land_area(prepared_data: PreparedData) -> Polygon | MultiPolygon:
    """Watershed minus the lakes the network flows through."""
    lakes = [
        prepared_data.lakes_by_id[lake_id].geometry
        for lake_id in sorted(prepared_data.network_lake_ids)
        if prepared_data.lakes_by_id[lake_id].geometry is not None
    ]
    if not lakes:
        return prepared_data.huc
    return prepared_data.huc.difference(unary_union(lakes))


def stratified_sample_points(
    area: Polygon | MultiPolygon,
    n: int,
    rng: np.random.Generator,
) -> np.ndarray:
    """
    Jittered-grid sample of ``n`` points inside a polygon.

    The bounding box is divided into square strata of roughly
    ``area / n`` each, one uniform point is drawn per stratum and points
    outside the polygon are discarded. If fewer than ``n`` remain the
    spacing shrinks and the draw repeats; surplus points are thinned at
    random.

    Returns
    -------
    np.ndarray
        (k, 2) array of x, y with k <= n
    """
    if n < 1 or area.is_empty or area.area <= 0:
        return np.empty((0, 2))

    xmin, ymin, xmax, ymax = area.bounds
    spacing = math.sqrt(area.area / n)
    points = np.empty((0, 2))
    for _ in range(_MAX_SAMPLING_ROUNDS):
        gx, gy = np.meshgrid(
            np.arange(xmin, xmax, spacing), np.arange(ymin, ymax, spacing)
        )
        xs = gx.ravel() + rng.uniform(0.0, spacing, gx.size)
        ys = gy.ravel() + rng.uniform(0.0, spacing, gy.size)
        inside = shapely.contains_xy(area, xs, ys)
        points = np.column_stack([xs[inside], ys[inside]])
        if len(points) >= n:
            keep = np.sort(rng.choice(len(points), size=n, replace=False))
            return points[keep]
        spacing *= 0.8

    logger.warning(f"Stratified sampling produced {len(points)} of {n} points")
    return points


# =============================================================================
# Interpolation
# =============================================================================


def idw_interpolate(
    sample_xy: np.ndarray,
    values: np.ndarray,
    target_xy: np.ndarray,
    power: float = 2.0,
    neighbors: int = 12,
) -> np.ndarray:
    """
    Inverse distance weighted interpolation.

    Parameters
    ----------
    sample_xy : np.ndarray
        (n, 2) sample coordinates
    values : np.ndarray
        (n,) sample values
    target_xy : np.ndarray
        (m, 2) target coordinates
    power : float
        Distance exponent
    neighbors : int
        Nearest samples used per target

    Returns
    -------
    np.ndarray
        (m,) interpolated values; targets on a sample take its value
    """
    k = min(neighbors, len(sample_xy))
    tree = cKDTree(sample_xy)
    dist, idx = tree.query(target_xy, k=k)
    if k == 1:
        dist = dist[:, np.newaxis]
        idx = idx[:, np.newaxis]

    with np.errstate(divide="ignore"):
        weights = 1.0 / dist**power
    exact = dist[:, 0] == 0
    weights[exact] = 0.0
    weights[exact, 0] = 1.0

    neighbour_values = values[idx]
    return (weights * neighbour_values).sum(axis=1) / weights.sum(axis=1)


# =============================================================================
# Generator
# =============================================================================


def _trace_samples(
    points: np.ndarray,
    prepared_data: PreparedData,
    removal_surfaces: RemovalSurfaces,
    graph: NetworkGraph,
    settings: Settings,
) -> list[SamplePoint]:
    """Trace and summarize every point; unreachable points are excluded."""
    stream_labels = build_stream_labels(prepared_data, settings.stream_buffer_m)
    directions = flow_direction_codes(prepared_data.fdr)

    def worker(point) -> SamplePoint | None:
        x, y = float(point[0]), float(point[1])
        try:
            path = trace(
                (x, y), prepared_data, graph, settings, stream_labels, directions
            )
        except SAMPLE_ERRORS as e:
            logger.warning(f"Sample ({x:.1f}, {y:.1f}) excluded: {e}")
            return None
        return SamplePoint(x, y, summarize(path, removal_surfaces).n_out)

    if settings.n_workers <= 1 or len(points) <= 1:
        results = [worker(p) for p in points]
    else:
        # The walk kernel releases the GIL; map preserves input order
        with ThreadPoolExecutor(max_workers=settings.n_workers) as executor:
            results = list(executor.map(worker, points))

    return [r for r in results if r is not None]


def generate_static_maps(
    prepared_data: PreparedData,
    removal_surfaces: RemovalSurfaces,
    sample_density: int,
    seed: int | None = None,
    settings: Settings | None = None,
    graph: NetworkGraph | None = None,
) -> StaticMaps:
    """
    Generate removal, loading, transport and delivery maps.

    Parameters
    ----------
    prepared_data : PreparedData
        Prepared watershed data
    removal_surfaces : RemovalSurfaces
        Output of ``compute_removal`` for the same data
    sample_density : int
        Number of start points to sample
    seed : int, optional
        Sampling seed; defaults to ``random_seed`` from settings
    settings : Settings, optional
        Engine settings
    graph : NetworkGraph, optional
        Prebuilt network graph

    Returns
    -------
    StaticMaps

    Raises
    ------
    InsufficientSampleError
        If ``sample_density < 1`` or fewer than ``min_sample_count``
        points trace successfully
    GridMismatchError
        If the removal surfaces are not on the prepared data template
    """
    settings = settings or get_settings()
    if sample_density < 1:
        raise InsufficientSampleError(
            f"sample_density must be at least 1, got {sample_density}"
        )
    if seed is None:
        seed = settings.random_seed

    template = prepared_data.raster_template
    check_grid("removal", removal_surfaces.raster_removal, template)
    check_grid("land_units", removal_surfaces.land_units, template)
    nodata = template.nodata
    t0 = time.time()

    if graph is None:
        graph = build_graph(prepared_data.segments, prepared_data.lakes_by_id)

    rng = np.random.default_rng(seed)
    points = stratified_sample_points(land_area(prepared_data), sample_density, rng)
    logger.info(f"Sampled {len(points)} start points (seed={seed})")

    samples = _trace_samples(points, prepared_data, removal_surfaces, graph, settings)
    if len(samples) < settings.min_sample_count:
        raise InsufficientSampleError(
            f"Only {len(samples)} of {len(points)} sample points traced "
            f"successfully, at least {settings.min_sample_count} required"
        )
    logger.info(
        f"Traced {len(samples)} of {len(points)} samples in {time.time() - t0:.1f}s"
    )

    inside = removal_surfaces.land_units.data > 0
    xs, ys = template.cell_centers()
    sample_xy = np.array([(s.x, s.y) for s in samples])
    delivered = np.array([s.delivered for s in samples])

    transport = np.full(template.shape, nodata, dtype=np.float64)
    transport[inside] = idw_interpolate(
        sample_xy,
        delivered,
        np.column_stack([xs[inside], ys[inside]]),
        power=settings.idw_power,
        neighbors=settings.idw_neighbors,
    )

    nlcd = prepared_data.nlcd
    loading = reclassify_loading(nlcd.data, valid=inside & nlcd.valid_mask, nodata=nodata)
    has_load = loading != nodata

    delivery = np.full(template.shape, nodata, dtype=np.float64)
    delivery[has_load] = loading[has_load] * transport[has_load] / 100.0

    removal = removal_surfaces.raster_removal
    removal_effic = np.where(inside & removal.valid_mask, removal.data, nodata)

    logger.info(f"Static maps generated in {time.time() - t0:.1f}s")

    def as_raster(values: np.ndarray) -> Raster:
        return Raster(values.astype(np.float32), template, nodata)

    return StaticMaps(
        removal_effic=as_raster(removal_effic),
        loading_idx=as_raster(loading),
        transport_idx=as_raster(transport),
        delivery_idx=as_raster(delivery),
        samples=tuple(samples),
        requested_samples=sample_density,
    )
