"""
Flow path tracing from a start point to the watershed outlet.

Two phases:

1. Overland: a D8 walk over the flow direction raster (numba kernel)
   until the first cell touching a buffered network segment.
2. Network: the intersected segment, then every segment downstream of
   its ``to_node`` until the outlet.

The result is an immutable ``FlowPath`` of tagged steps ordered from
start to outlet. Tracing is deterministic: the same start point and
data always give the same path.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Union

import numba
import numpy as np
from rasterio.features import rasterize
from shapely.geometry import LineString, Point

from nsink import constants
from nsink.config import Settings, get_settings
from nsink.data_provider import PreparedData
from nsink.errors import CycleDetectedError, NoFlowPathError, OutOfBoundsError
from nsink.flow_network import NetworkGraph, build_graph, downstream_from
from nsink.grid import Raster, RasterGrid

logger = logging.getLogger(__name__)

# D8 lookup arrays for numba (dict not supported in njit)
_DR = np.zeros(256, dtype=np.int32)
_DC = np.zeros(256, dtype=np.int32)
_VALID = np.zeros(256, dtype=np.bool_)
for _d, (_di, _dj) in constants.D8_DIRECTIONS.items():
    _DR[_d] = _di
    _DC[_d] = _dj
    _VALID[_d] = True

# Walk status codes returned by the kernel
_REACHED = 0
_OFF_RASTER = 1
_BAD_DIRECTION = 2
_STEP_LIMIT = 3


class PathKind(str, Enum):
    OVERLAND = "overland-raster-cell"
    STREAM = "network-stream"
    LAKE = "network-lake"


@dataclass(frozen=True)
class OverlandCell:
    """Raster cell crossed overland."""

    position: int
    row: int
    col: int
    kind: ClassVar[PathKind] = PathKind.OVERLAND


@dataclass(frozen=True)
class StreamHop:
    """Network segment outside any lake."""

    position: int
    stream_comid: int
    kind: ClassVar[PathKind] = PathKind.STREAM


@dataclass(frozen=True)
class LakeHop:
    """Network segment inside a lake."""

    position: int
    stream_comid: int
    lake_comid: int
    kind: ClassVar[PathKind] = PathKind.LAKE


PathSegment = Union[OverlandCell, StreamHop, LakeHop]


@dataclass(frozen=True)
class FlowPath:
    """
    Ordered flow path from a start point to the outlet.

    Attributes
    ----------
    start : tuple[float, float]
        Start point (x, y) in the data CRS
    segments : tuple[PathSegment, ...]
        Steps in path order
    handoff_comid : int | None
        Segment where the overland walk met the network
    """

    start: tuple[float, float]
    segments: tuple[PathSegment, ...]
    handoff_comid: int | None

    @property
    def overland_cells(self) -> tuple[OverlandCell, ...]:
        return tuple(s for s in self.segments if isinstance(s, OverlandCell))

    @property
    def network_hops(self) -> tuple[StreamHop | LakeHop, ...]:
        return tuple(s for s in self.segments if not isinstance(s, OverlandCell))

    def to_linestring(self, prepared_data: PreparedData) -> LineString:
        """Path geometry: start, overland cell centres, then segment lines."""
        grid = prepared_data.raster_template
        coords = [self.start]
        for step in self.segments:
            if isinstance(step, OverlandCell):
                coords.append(grid.xy(step.row, step.col))
                continue
            geom = prepared_data.segments[step.stream_comid].geometry
            if geom is None or geom.is_empty:
                continue
            parts = geom.geoms if hasattr(geom, "geoms") else [geom]
            for part in parts:
                coords.extend((x, y) for x, y in part.coords)
        if len(coords) < 2:
            coords.append(coords[0])
        return LineString(coords)


# =============================================================================
# Overland walk
# =============================================================================


@numba.njit(cache=True, nogil=True)
def _walk_overland(
    fdr: np.ndarray,
    labels: np.ndarray,
    start_row: int,
    start_col: int,
    dr: np.ndarray,
    dc: np.ndarray,
    valid_d8: np.ndarray,
    max_steps: int,
):
    """
    Follow D8 directions until a labelled (stream) cell.

    Returns (n_cells, status, rows, cols, label, last_row, last_col).
    The labelled cell itself is not part of rows/cols.
    """
    nrows, ncols = fdr.shape
    rows = np.empty(max_steps, dtype=np.int32)
    cols = np.empty(max_steps, dtype=np.int32)
    r = start_row
    c = start_col
    n = 0
    while True:
        if r < 0 or r >= nrows or c < 0 or c >= ncols:
            return n, 1, rows, cols, 0, r, c
        lab = int(labels[r, c])
        if lab > 0:
            return n, 0, rows, cols, lab, r, c
        if n >= max_steps:
            return n, 3, rows, cols, 0, r, c
        rows[n] = r
        cols[n] = c
        n += 1
        d = fdr[r, c]
        if d < 0 or d >= 256 or not valid_d8[d]:
            return n, 2, rows, cols, 0, r, c
        r += dr[d]
        c += dc[d]


@dataclass(frozen=True)
class StreamLabels:
    """
    Raster of network segments for the overland walk.

    ``labels[r, c] = i + 1`` where ``comids[i]`` is the segment whose
    buffered geometry touches the cell (lowest comid on overlaps);
    0 off the network.
    """

    labels: np.ndarray
    comids: np.ndarray

    def comid_at(self, label: int) -> int:
        return int(self.comids[label - 1])


def build_stream_labels(
    prepared_data: PreparedData,
    buffer_m: float | None = None,
) -> StreamLabels:
    """
    Rasterize buffered network segments on the raster template.

    Parameters
    ----------
    prepared_data : PreparedData
        Prepared data with network segments
    buffer_m : float, optional
        Buffer around segment lines [m]; defaults to ``stream_buffer_m``

    Returns
    -------
    StreamLabels
    """
    if buffer_m is None:
        buffer_m = get_settings().stream_buffer_m
    template = prepared_data.raster_template

    comids = np.array(sorted(prepared_data.segments), dtype=np.int64)
    features = []
    # Burned in reverse so the lowest comid is written last and wins
    for i in range(len(comids) - 1, -1, -1):
        geom = prepared_data.segments[int(comids[i])].geometry
        if geom is None or geom.is_empty:
            continue
        if buffer_m > 0:
            geom = geom.buffer(buffer_m)
        features.append((geom, i + 1))

    if features:
        labels = rasterize(
            features,
            out_shape=template.shape,
            transform=template.transform,
            fill=0,
            all_touched=True,
            dtype="int32",
        )
    else:
        labels = np.zeros(template.shape, dtype=np.int32)

    logger.debug(
        f"Stream labels: {len(features)} segments, "
        f"{int((labels > 0).sum()):,} cells (buffer {buffer_m} m)"
    )
    return StreamLabels(labels=labels, comids=comids)


def flow_direction_codes(fdr: Raster) -> np.ndarray:
    """
    Flow direction codes as the contiguous int32 array the walk kernel reads.

    No copy is made when the raster already holds int32 data, so callers
    tracing many points convert once and pass the result to ``trace``.
    """
    return np.ascontiguousarray(fdr.data, dtype=np.int32)


def _start_cell(grid: RasterGrid, x: float, y: float) -> tuple[int, int]:
    """Cell of the start point; points on the far grid edge map inward."""
    row, col = grid.index(x, y)
    xmin, ymin, xmax, ymax = grid.bounds
    if xmin <= x <= xmax and ymin <= y <= ymax:
        row = min(max(row, 0), grid.height - 1)
        col = min(max(col, 0), grid.width - 1)
    return row, col


def trace(
    start_point: Point | tuple[float, float],
    prepared_data: PreparedData,
    graph: NetworkGraph | None = None,
    settings: Settings | None = None,
    stream_labels: StreamLabels | None = None,
    directions: np.ndarray | None = None,
) -> FlowPath:
    """
    Trace the flow path from a start point to the outlet.

    Parameters
    ----------
    start_point : Point | tuple[float, float]
        Start location in the data CRS
    prepared_data : PreparedData
        Prepared watershed data
    graph : NetworkGraph, optional
        Prebuilt network graph (built from ``prepared_data`` if None)
    settings : Settings, optional
        Engine settings (buffer distance, step limit)
    stream_labels : StreamLabels, optional
        Prebuilt stream label raster (built if None)
    directions : np.ndarray, optional
        Output of :func:`flow_direction_codes` for ``prepared_data.fdr``
        (converted if None)

    Returns
    -------
    FlowPath
        Immutable path from start to outlet

    Raises
    ------
    OutOfBoundsError
        If the start point is outside the watershed (boundary inclusive)
    NoFlowPathError
        If the overland walk leaves the raster, hits an invalid direction
        or exceeds the step limit before reaching the network
    CycleDetectedError
        If the downstream network loops
    """
    settings = settings or get_settings()
    point = start_point if isinstance(start_point, Point) else Point(start_point)
    x, y = float(point.x), float(point.y)

    if not prepared_data.huc.covers(point):
        raise OutOfBoundsError(f"Start point ({x:.1f}, {y:.1f}) is outside the watershed")

    if graph is None:
        graph = build_graph(prepared_data.segments, prepared_data.lakes_by_id)
    if stream_labels is None:
        stream_labels = build_stream_labels(prepared_data, settings.stream_buffer_m)
    if directions is None:
        directions = flow_direction_codes(prepared_data.fdr)

    grid = prepared_data.raster_template
    start_row, start_col = _start_cell(grid, x, y)

    n, status, rows, cols, label, last_row, last_col = _walk_overland(
        directions,
        stream_labels.labels,
        start_row,
        start_col,
        _DR,
        _DC,
        _VALID,
        settings.max_overland_steps,
    )

    if status == _OFF_RASTER:
        raise NoFlowPathError(
            f"Overland walk from ({x:.1f}, {y:.1f}) left the raster at cell "
            f"({last_row}, {last_col}) after {n} steps"
        )
    if status == _BAD_DIRECTION:
        raise NoFlowPathError(
            f"Invalid flow direction {prepared_data.fdr.data[last_row, last_col]} "
            f"at cell ({last_row}, {last_col}) after {n} steps"
        )
    if status == _STEP_LIMIT:
        raise NoFlowPathError(
            f"Overland walk from ({x:.1f}, {y:.1f}) exceeded "
            f"{settings.max_overland_steps} steps without reaching a stream"
        )

    steps: list[PathSegment] = [
        OverlandCell(position=i, row=int(rows[i]), col=int(cols[i])) for i in range(n)
    ]

    handoff = graph.segment(stream_labels.comid_at(int(label)))
    for segment in (handoff, *_downstream_checked(graph, handoff)):
        position = len(steps)
        if segment.lake_comid is not None:
            steps.append(LakeHop(position, segment.stream_comid, segment.lake_comid))
        else:
            steps.append(StreamHop(position, segment.stream_comid))

    logger.debug(
        f"Traced ({x:.1f}, {y:.1f}): {n} overland cells, handoff "
        f"{handoff.stream_comid}, {len(steps) - n} network segments"
    )
    return FlowPath(start=(x, y), segments=tuple(steps), handoff_comid=handoff.stream_comid)


def _downstream_checked(graph: NetworkGraph, handoff):
    for segment in downstream_from(graph, handoff.to_node):
        if segment.stream_comid == handoff.stream_comid:
            raise CycleDetectedError(
                f"Cycle in stream network: segment {handoff.stream_comid} "
                f"drains back into itself"
            )
        yield segment
