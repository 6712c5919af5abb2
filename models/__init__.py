"""
Pydantic models for engine parameters and reports.
"""

from models.schemas import (
    FlowPathRemovalRow,
    FlowPathReport,
    OffNetworkParams,
    OffNetworkPolicy,
    RasterSummary,
    StaticMapsReport,
)

__all__ = [
    "FlowPathRemovalRow",
    "FlowPathReport",
    "OffNetworkParams",
    "OffNetworkPolicy",
    "RasterSummary",
    "StaticMapsReport",
]
