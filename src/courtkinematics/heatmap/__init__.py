from .aggregator import GaussianKernelCache, HeatmapSnapshot, PositionHeatmapAggregator
from .types import (
    HeatmapCell,
    HeatmapData,
    HeatmapError,
    HeatmapSettings,
    PositionSample,
)
from .zones import COURT_ZONES, OUT_OF_BOUNDS, classify_normalized

__all__ = [
    # types
    "HeatmapSettings",
    "PositionSample",
    "HeatmapCell",
    "HeatmapData",
    "HeatmapError",
    # zones
    "COURT_ZONES",
    "OUT_OF_BOUNDS",
    "classify_normalized",
    # aggregator
    "GaussianKernelCache",
    "HeatmapSnapshot",
    "PositionHeatmapAggregator",
]
