"""
Directed graph of the NHDPlus stream network.

Each segment is an edge ``from_node -> to_node``. Downstream traversal
follows a single outgoing segment per node; braided nodes (several
segments leaving one node) are resolved once, at construction time.
"""

import logging
import math
import time
from collections import defaultdict
from typing import Iterable, Iterator, Mapping

from nsink.data_provider import Lake, StreamSegment
from nsink.errors import CycleDetectedError, InconsistentTopologyError

logger = logging.getLogger(__name__)


def _braid_rank(segment: StreamSegment) -> tuple[float, int, int]:
    """Sort key: preferred outgoing segment first."""
    q = segment.q_cms if not math.isnan(segment.q_cms) else -math.inf
    return (-q, -segment.stream_order, segment.stream_comid)


class NetworkGraph:
    """
    In-memory stream network.

    Segments are held in ascending ``stream_comid`` order.
    """

    def __init__(
        self,
        segments: Iterable[StreamSegment],
        lakes: Mapping[int, Lake],
    ):
        t0 = time.time()
        self._segments: tuple[StreamSegment, ...] = tuple(
            sorted(segments, key=lambda s: s.stream_comid)
        )
        self._lakes = lakes
        self._index = {s.stream_comid: i for i, s in enumerate(self._segments)}

        outgoing: dict[int, list[StreamSegment]] = defaultdict(list)
        members: dict[int, list[StreamSegment]] = defaultdict(list)
        for seg in self._segments:
            outgoing[seg.from_node].append(seg)
            if seg.lake_comid is not None:
                members[seg.lake_comid].append(seg)

        self._n_braided = sum(1 for segs in outgoing.values() if len(segs) > 1)
        self._downstream: dict[int, StreamSegment] = {
            node: min(segs, key=_braid_rank) for node, segs in outgoing.items()
        }
        self._lake_members: dict[int, tuple[StreamSegment, ...]] = {
            lake_id: tuple(segs) for lake_id, segs in members.items()
        }

        logger.info(
            f"Network graph built: {len(self._segments):,} segments, "
            f"{len(self.outlets())} outlets, "
            f"{self._n_braided} braided nodes, {len(self._lake_members)} lakes "
            f"in {time.time() - t0:.3f}s"
        )

    def __len__(self) -> int:
        return len(self._segments)

    @property
    def segments(self) -> tuple[StreamSegment, ...]:
        return self._segments

    def segment(self, stream_comid: int) -> StreamSegment:
        """Segment by id; raises KeyError for an unknown id."""
        return self._segments[self._index[stream_comid]]

    def next_segment(self, node_id: int) -> StreamSegment | None:
        """Outgoing segment of a node, None at an outlet."""
        return self._downstream.get(node_id)

    def lake(self, lake_comid: int) -> Lake:
        return self._lakes[lake_comid]

    def segments_in_lake(self, lake_comid: int) -> tuple[StreamSegment, ...]:
        """Segments flowing through a lake, in ``stream_comid`` order."""
        return self._lake_members.get(lake_comid, ())

    def outlets(self) -> list[StreamSegment]:
        """Segments whose ``to_node`` has no outgoing segment."""
        return [s for s in self._segments if s.to_node not in self._downstream]


def build_graph(
    streams: Mapping[int, StreamSegment] | Iterable[StreamSegment],
    lakes: Mapping[int, Lake],
) -> NetworkGraph:
    """
    Build the network graph from segments and lakes.

    Parameters
    ----------
    streams : Mapping[int, StreamSegment] | Iterable[StreamSegment]
        Network segments (e.g. ``PreparedData.segments``)
    lakes : Mapping[int, Lake]
        Lakes by ``lake_comid``

    Returns
    -------
    NetworkGraph

    Raises
    ------
    InconsistentTopologyError
        If a segment references a lake that is not in ``lakes``
    """
    segments = list(streams.values()) if isinstance(streams, Mapping) else list(streams)
    for seg in segments:
        if seg.lake_comid is not None and seg.lake_comid not in lakes:
            raise InconsistentTopologyError(
                f"Segment {seg.stream_comid} references unknown lake {seg.lake_comid}"
            )
    return NetworkGraph(segments, lakes)


def downstream_from(graph: NetworkGraph, node_id: int) -> Iterator[StreamSegment]:
    """
    Yield segments downstream of a node until the outlet.

    Lazy and single-pass. Lake segments are yielded one by one; merging
    them is left to the removal summary.

    Raises
    ------
    CycleDetectedError
        If a node is reached twice
    """
    visited: set[int] = set()
    node = node_id
    while True:
        if node in visited:
            raise CycleDetectedError(
                f"Cycle in stream network: node {node} reached twice "
                f"downstream of node {node_id}"
            )
        visited.add(node)
        segment = graph.next_segment(node)
        if segment is None:
            return
        yield segment
        node = segment.to_node
