from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any

import numpy as np
from jaxtyping import Float

from courtkinematics.geometry.types import CourtDimensions, Point2D, Point3D

GridF = Float[np.ndarray, "h w"]


def _finite(value: Any, fallback: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    return number if math.isfinite(number) else fallback


@dataclass(frozen=True, slots=True)
class HeatmapSettings:
    grid_resolution: float = 4.0  # cells per meter
    smoothing_radius: float = 1.0  # cells
    min_confidence: float = 0.5
    sample_interval_ms: float = 50.0
    max_history_size: int = 10000
    decay_factor: float = 1.0  # 1 = no decay

    def normalized(self) -> HeatmapSettings:
        """Clamp every field into its valid range; non-finite values take defaults."""
        d = HeatmapSettings()
        return HeatmapSettings(
            grid_resolution=max(0.5, _finite(self.grid_resolution, d.grid_resolution)),
            smoothing_radius=max(0.0, _finite(self.smoothing_radius, d.smoothing_radius)),
            min_confidence=min(max(_finite(self.min_confidence, d.min_confidence), 0.0), 1.0),
            sample_interval_ms=max(0.0, _finite(self.sample_interval_ms, d.sample_interval_ms)),
            max_history_size=max(
                1, math.floor(_finite(self.max_history_size, d.max_history_size))
            ),
            decay_factor=min(max(_finite(self.decay_factor, d.decay_factor), 0.0), 1.0),
        )

    def merged(self, data: dict[str, Any]) -> HeatmapSettings:
        """Overlay camelCase keys from ``data`` onto these settings."""
        return HeatmapSettings(
            grid_resolution=data.get("gridResolution", self.grid_resolution),
            smoothing_radius=data.get("smoothingRadius", self.smoothing_radius),
            min_confidence=data.get("minConfidence", self.min_confidence),
            sample_interval_ms=data.get("sampleInterval", self.sample_interval_ms),
            max_history_size=data.get("maxHistorySize", self.max_history_size),
            decay_factor=data.get("decayFactor", self.decay_factor),
        ).normalized()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HeatmapSettings:
        return cls().merged(data)

    def as_dict(self) -> dict[str, float]:
        return {
            "gridResolution": self.grid_resolution,
            "smoothingRadius": self.smoothing_radius,
            "minConfidence": self.min_confidence,
            "sampleInterval": self.sample_interval_ms,
            "maxHistorySize": self.max_history_size,
            "decayFactor": self.decay_factor,
        }


@dataclass(frozen=True, slots=True)
class PositionSample:
    world_position: Point3D  # court-centered meters
    image_position: Point2D
    timestamp: float  # ms
    frame_number: int
    confidence: float

    def as_dict(self) -> dict[str, Any]:
        return {
            "worldPosition": self.world_position.as_dict(),
            "imagePosition": self.image_position.as_dict(),
            "timestamp": self.timestamp,
            "frameNumber": self.frame_number,
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PositionSample:
        return cls(
            world_position=Point3D.from_dict(data["worldPosition"]),
            image_position=Point2D.from_dict(data["imagePosition"]),
            timestamp=float(data["timestamp"]),
            frame_number=int(data["frameNumber"]),
            confidence=float(data["confidence"]),
        )


@dataclass(frozen=True, slots=True)
class HeatmapCell:
    x: int
    y: int
    count: float
    intensity: float


@dataclass(frozen=True, slots=True)
class HeatmapData:
    """
    Smoothed occupancy grid. Rows run along the court length (y), columns
    across the width (x); ``intensities`` is ``counts / max_count``.
    """

    counts: GridF
    intensities: GridF
    max_count: float
    total_samples: int
    court_dimensions: CourtDimensions

    @property
    def grid_height(self) -> int:
        return int(self.counts.shape[0])

    @property
    def grid_width(self) -> int:
        return int(self.counts.shape[1])

    def cell(self, x: int, y: int) -> HeatmapCell:
        return HeatmapCell(x, y, float(self.counts[y, x]), float(self.intensities[y, x]))

    def cells(self) -> list[list[HeatmapCell]]:
        return [[self.cell(x, y) for x in range(self.grid_width)] for y in range(self.grid_height)]

    def as_dict(self) -> dict[str, Any]:
        return {
            "cells": [[asdict(c) for c in row] for row in self.cells()],
            "maxCount": self.max_count,
            "totalSamples": self.total_samples,
            "gridWidth": self.grid_width,
            "gridHeight": self.grid_height,
            "courtDimensions": self.court_dimensions.as_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HeatmapData:
        rows = data["cells"]
        height, width = int(data["gridHeight"]), int(data["gridWidth"])
        counts = np.zeros((height, width), dtype=np.float64)
        intensities = np.zeros((height, width), dtype=np.float64)
        for row in rows:
            for c in row:
                x, y = int(c["x"]), int(c["y"])
                if not (0 <= x < width and 0 <= y < height):
                    raise ValueError(f"cell ({x}, {y}) outside {width}x{height} grid")
                counts[y, x] = float(c["count"])
                intensities[y, x] = float(c["intensity"])
        return cls(
            counts=counts,
            intensities=intensities,
            max_count=float(data["maxCount"]),
            total_samples=int(data["totalSamples"]),
            court_dimensions=CourtDimensions.from_dict(data["courtDimensions"]),
        )


class HeatmapError(RuntimeError):
    pass
