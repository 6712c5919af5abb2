"""
Exception taxonomy for the removal engine.

All errors are deterministic data problems: nothing here is retried.
Errors raised while tracing a single sample point (``OutOfBoundsError``,
``NoFlowPathError``) are recoverable inside static map sampling; the
remaining ones describe broken shared inputs and abort a run.
"""


class NsinkError(Exception):
    """Base class for all removal engine errors."""


class MissingAttributeError(NsinkError, KeyError):
    """A network segment or lake lacks a required attribute record."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message
        return str(self.args[0]) if self.args else ""


class InconsistentTopologyError(NsinkError, ValueError):
    """Segment and lake layers disagree (e.g. unknown lake_comid)."""


class CycleDetectedError(NsinkError, RuntimeError):
    """Downstream traversal revisited a node."""


class OutOfBoundsError(NsinkError, ValueError):
    """Start point lies outside the watershed boundary."""


class NoFlowPathError(NsinkError, RuntimeError):
    """Overland walk could not reach the stream network."""


class GridMismatchError(NsinkError, ValueError):
    """A raster or vector layer does not share the raster template."""


class InsufficientSampleError(NsinkError, RuntimeError):
    """Too few sample points traced to interpolate static maps."""


# Errors that only invalidate one sample point
SAMPLE_ERRORS = (OutOfBoundsError, NoFlowPathError)
