"""
Sequential nitrogen removal along a traced flow path.

Each (collapsed) step removes a fraction of the nitrogen still in
transit: ``n_out = n_out * (1 - removal / 100)``, starting from 100.
Consecutive lake segments of one lake are a single removal application,
as are consecutive overland cells within one land unit.
"""

import itertools
import logging
from dataclasses import dataclass

import pandas as pd

from models.schemas import FlowPathRemovalRow, FlowPathReport
from nsink.errors import MissingAttributeError
from nsink.flowpath import FlowPath, LakeHop, OverlandCell, PathKind, PathSegment
from nsink.removal import RemovalSurfaces, RemovalType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FlowPathRemoval:
    """
    Removal applied by one collapsed flow path segment.

    Attributes
    ----------
    segment_id : int | None
        Land unit id, stream_comid or lake_comid (None for an empty path)
    kind : PathKind | None
        Kind of the collapsed steps
    removal_type : RemovalType | None
        Removal type of the sink
    removal_pct : float
        Removal applied [%]
    n_out : float
        Nitrogen remaining after this segment [% of load]
    n_steps : int
        Number of path steps collapsed into this row
    """

    segment_id: int | None
    kind: PathKind | None
    removal_type: RemovalType | None
    removal_pct: float
    n_out: float
    n_steps: int = 1


@dataclass(frozen=True)
class FlowPathSummary:
    """Ordered removal rows of one flow path."""

    start: tuple[float, float]
    handoff_comid: int | None
    rows: tuple[FlowPathRemoval, ...]

    @property
    def n_out(self) -> float:
        """Nitrogen delivered to the outlet [% of load]."""
        return min(r.n_out for r in self.rows)

    @property
    def cumulative_removal(self) -> float:
        return 100.0 - self.n_out

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                "segment_id": [r.segment_id for r in self.rows],
                "kind": [r.kind.value if r.kind else None for r in self.rows],
                "removal_type": [
                    r.removal_type.label if r.removal_type is not None else None
                    for r in self.rows
                ],
                "removal_pct": [r.removal_pct for r in self.rows],
                "n_out": [r.n_out for r in self.rows],
                "n_steps": [r.n_steps for r in self.rows],
            }
        )

    def to_report(self, crs: str | None = None) -> FlowPathReport:
        """Convert to the JSON-serializable report model."""
        overland = sum(
            r.n_steps for r in self.rows if r.kind == PathKind.OVERLAND
        )
        return FlowPathReport(
            start_x=self.start[0],
            start_y=self.start[1],
            crs=crs,
            handoff_comid=self.handoff_comid,
            overland_cells=overland,
            rows=[
                FlowPathRemovalRow(
                    segment_id=r.segment_id,
                    kind=r.kind.value if r.kind else None,
                    removal_type=(
                        r.removal_type.label if r.removal_type is not None else None
                    ),
                    removal_pct=r.removal_pct,
                    n_out=r.n_out,
                )
                for r in self.rows
            ],
            cumulative_removal=self.cumulative_removal,
        )


def _lookup(
    step: PathSegment,
    surfaces: RemovalSurfaces,
) -> tuple[int, float, RemovalType]:
    """(segment id, removal %, type) of one path step."""
    if isinstance(step, OverlandCell):
        return surfaces.land_cell(step.row, step.col)
    if isinstance(step, LakeHop):
        try:
            return step.lake_comid, surfaces.lake_removal[step.lake_comid], RemovalType.LAKE
        except KeyError:
            raise MissingAttributeError(
                f"No removal computed for lake {step.lake_comid}"
            ) from None
    try:
        pct = surfaces.segment_removal[step.stream_comid]
    except KeyError:
        raise MissingAttributeError(
            f"No removal computed for segment {step.stream_comid}"
        ) from None
    return step.stream_comid, pct, RemovalType.STREAM


def summarize(flow_path: FlowPath, removal_surfaces: RemovalSurfaces) -> FlowPathSummary:
    """
    Compose removal along a flow path.

    Parameters
    ----------
    flow_path : FlowPath
        Output of ``trace``
    removal_surfaces : RemovalSurfaces
        Output of ``compute_removal``

    Returns
    -------
    FlowPathSummary
        One row per collapsed segment with non-increasing ``n_out``;
        an empty path yields one row with ``n_out = 100``
    """
    looked_up = [(step, *_lookup(step, removal_surfaces)) for step in flow_path.segments]

    rows: list[FlowPathRemoval] = []
    n_out = 100.0
    for (kind, segment_id), group in itertools.groupby(
        looked_up, key=lambda item: (item[0].kind, item[1])
    ):
        group = list(group)
        _, _, pct, removal_type = group[0]
        n_out = max(0.0, n_out * (1.0 - pct / 100.0))
        rows.append(
            FlowPathRemoval(
                segment_id=segment_id,
                kind=kind,
                removal_type=removal_type,
                removal_pct=pct,
                n_out=n_out,
                n_steps=len(group),
            )
        )

    if not rows:
        rows.append(
            FlowPathRemoval(
                segment_id=None,
                kind=None,
                removal_type=None,
                removal_pct=0.0,
                n_out=100.0,
                n_steps=0,
            )
        )

    return FlowPathSummary(
        start=flow_path.start,
        handoff_comid=flow_path.handoff_comid,
        rows=tuple(rows),
    )
