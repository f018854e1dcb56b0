"""Exception hierarchy for the secondary-vertexing framework.

All framework errors derive from `VertexingError`. Per-pair numerical failures
(`DegenerateTrajectoryError`) are recovered inside the fitter; configuration
and lookup errors propagate to the caller.
"""

from __future__ import annotations
__author__ = "Renato Quagliani <rquaglia@cern.ch>"


class VertexingError(Exception):
    """Base class for all framework errors."""


class DegenerateTrajectoryError(VertexingError):
    """A track cannot be rotated or propagated to the requested point.

    Raised for turning points of low-momentum helices (`|snp| -> 1`) and for
    rotations that would make the track point against the new X axis.
    """


class ConfigurationError(VertexingError, ValueError):
    """Invalid or contradictory configuration; processing must not continue."""


class TrackLookupError(VertexingError, IndexError):
    """A track index does not exist in the referenced track collection."""

    def __init__(self, index: int, size: int, collection: str = "tracks"):
        self.index = index
        self.size = size
        self.collection = collection
        super().__init__(
            f"Track index {index} out of range for collection '{collection}' of size {size}."
        )
