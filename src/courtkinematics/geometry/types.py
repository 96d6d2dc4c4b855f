from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

import numpy as np
from jaxtyping import Float

Array33F = Float[np.ndarray, "3 3"]


@dataclass(frozen=True, slots=True)
class Point2D:
    """Image-space coordinate, either pixels or normalized [0, 1]."""

    x: float
    y: float

    def as_dict(self) -> dict[str, float]:
        return {"x": float(self.x), "y": float(self.y)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Point2D:
        return cls(x=float(data["x"]), y=float(data["y"]))


@dataclass(frozen=True, slots=True)
class Point3D:
    """World-space coordinate in meters; z is height above the court plane."""

    x: float
    y: float
    z: float = 0.0

    def as_dict(self) -> dict[str, float]:
        return {"x": float(self.x), "y": float(self.y), "z": float(self.z)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Point3D:
        return cls(
            x=float(data["x"]),
            y=float(data["y"]),
            z=float(data.get("z", 0.0) or 0.0),
        )


ZERO_POINT_2D = Point2D(0.0, 0.0)
ZERO_POINT_3D = Point3D(0.0, 0.0, 0.0)


@dataclass(frozen=True, slots=True)
class CalibrationPoint:
    """One image <-> court-plane correspondence. world.z is always 0."""

    image: Point2D
    world: Point3D
    weight: float | None = None

    @property
    def on_court_plane(self) -> bool:
        return self.world.z == 0.0

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "image": self.image.as_dict(),
            "world": self.world.as_dict(),
        }
        if self.weight is not None:
            data["weight"] = float(self.weight)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CalibrationPoint:
        weight = data.get("weight")
        return cls(
            image=Point2D.from_dict(data["image"]),
            world=Point3D.from_dict(data["world"]),
            weight=None if weight is None else float(weight),
        )


@dataclass(frozen=True, slots=True)
class LineCorrespondence:
    """A court line drawn on the image, paired with its court-plane endpoints."""

    image_start: Point2D
    image_end: Point2D
    world_start: Point3D
    world_end: Point3D
    confidence: float = 1.0

    def endpoints(self) -> tuple[CalibrationPoint, CalibrationPoint]:
        weight = max(float(self.confidence), 0.0)
        return (
            CalibrationPoint(self.image_start, self.world_start, weight),
            CalibrationPoint(self.image_end, self.world_end, weight),
        )


@dataclass(frozen=True, slots=True)
class CourtDimensions:
    length_m: float
    width_m: float

    def as_dict(self) -> dict[str, float]:
        return {"length": self.length_m, "width": self.width_m}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CourtDimensions:
        return cls(length_m=float(data["length"]), width_m=float(data["width"]))

    def is_valid(self) -> bool:
        return (
            math.isfinite(self.length_m)
            and math.isfinite(self.width_m)
            and self.length_m > 0
            and self.width_m > 0
        )


@dataclass(frozen=True, slots=True)
class CourtCoordinateSystem:
    """
    Court coordinate convention:
    - Origin: court center on the playing surface
    - x-axis: across the court width, left to right as seen from the near baseline
    - y-axis: along the court length, near baseline to far baseline
    - z-axis: up
    """

    origin_description: str = "court center"
    axes_description: str = "x: width, y: length, z: up"


@dataclass(frozen=True, slots=True)
class EulerAngles:
    """Camera rotation in degrees (x: pitch, y: yaw, z: roll)."""

    x_deg: float
    y_deg: float
    z_deg: float


@dataclass(frozen=True, slots=True)
class CameraParams:
    """Approximate camera derived from a planar homography. Read-only."""

    position: Point3D
    rotation: EulerAngles
    fov_deg: float
    aspect_ratio: float
    near: float
    far: float
    focal_length_px: float
    R_wc: Array33F = field(repr=False)  # world->camera rotation


@dataclass(frozen=True, slots=True)
class ValidationMetrics:
    reprojection_error: float
    line_alignment_score: float
    perspective_accuracy: float
    overall_confidence: float
    condition_number: float = math.inf
    world_error_m: float = math.inf
    quality_grade: str = "poor"
    recommendations: tuple[str, ...] = ()


class GeometryError(RuntimeError):
    pass


class CalibrationError(GeometryError):
    pass
