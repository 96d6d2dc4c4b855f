from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


class PoseLandmark(IntEnum):
    """MediaPipe pose landmark indices used by the kinematics code."""

    LEFT_SHOULDER = 11
    RIGHT_SHOULDER = 12
    LEFT_HIP = 23
    RIGHT_HIP = 24
    LEFT_KNEE = 25
    RIGHT_KNEE = 26
    LEFT_ANKLE = 27
    RIGHT_ANKLE = 28
    LEFT_FOOT_INDEX = 31
    RIGHT_FOOT_INDEX = 32


TORSO_LANDMARKS = (
    PoseLandmark.LEFT_SHOULDER,
    PoseLandmark.RIGHT_SHOULDER,
    PoseLandmark.LEFT_HIP,
    PoseLandmark.RIGHT_HIP,
)


@dataclass(frozen=True, slots=True)
class Landmark:
    """
    One detector landmark. x/y are normalized to [0, 1] for image
    landmarks and meters for world landmarks; a missing visibility means
    the detector did not report one and the point counts as visible.
    """

    x: float
    y: float
    z: float | None = None
    visibility: float | None = None

    @classmethod
    def from_any(cls, raw: Any) -> Landmark:
        if isinstance(raw, Landmark):
            return raw
        try:
            if isinstance(raw, dict):
                x, y = raw["x"], raw["y"]
                z, vis = raw.get("z"), raw.get("visibility")
            else:
                x, y = raw.x, raw.y
                z, vis = getattr(raw, "z", None), getattr(raw, "visibility", None)
            return cls(
                x=float(x),
                y=float(y),
                z=None if z is None else float(z),
                visibility=None if vis is None else float(vis),
            )
        except (KeyError, AttributeError, TypeError, ValueError) as exc:
            raise KinematicsError(f"Malformed landmark: {raw!r}") from exc

    def is_visible(self, threshold: float = 0.5) -> bool:
        return self.visibility is None or self.visibility > threshold


def as_landmarks(raw: Sequence[Any] | None) -> list[Landmark]:
    if not raw:
        return []
    return [Landmark.from_any(item) for item in raw]


@dataclass(frozen=True, slots=True)
class Vector2D:
    x: float = 0.0
    y: float = 0.0


@dataclass(frozen=True, slots=True)
class Vector3D:
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def __sub__(self, other: Vector3D) -> Vector3D:
        return Vector3D(self.x - other.x, self.y - other.y, self.z - other.z)

    def scaled(self, factor: float) -> Vector3D:
        return Vector3D(self.x * factor, self.y * factor, self.z * factor)

    def norm(self) -> float:
        return math.sqrt(self.x * self.x + self.y * self.y + self.z * self.z)

    def horizontal_norm(self) -> float:
        """Length in the horizontal plane (x and depth z; y is image-vertical)."""
        return math.sqrt(self.x * self.x + self.z * self.z)


ZERO_VECTOR = Vector3D()


@dataclass(frozen=True, slots=True)
class SpeedSample:
    frame: int
    time: float  # seconds
    value: float  # m/s


@dataclass(frozen=True, slots=True)
class ComprehensiveSpeedMetrics:
    """Per-frame snapshot; derived anew on every update."""

    is_valid: bool = False
    speed: float = 0.0
    general_moving_speed: float = 0.0
    right_foot_speed: float = 0.0
    center_of_gravity_height: float = 0.0
    velocity: Vector3D = field(default_factory=Vector3D)
    center_of_mass: Vector3D = field(default_factory=Vector3D)
    center_of_mass_normalized: Vector2D = field(default_factory=Vector2D)
    current_speed: float = 0.0
    average_speed: float = 0.0
    samples: int = 0
    scaling_factor: float = 1.0


@dataclass(slots=True)
class SpeedCalibrationSettings:
    """Assumptions used to convert normalized image motion to meters."""

    player_height_cm: float = 170.0
    court_length_m: float = 13.4
    pixels_per_meter: float = 100.0
    use_height_calibration: bool = True
    use_court_calibration: bool = False
    calibration_accuracy: float = 0.0

    @property
    def is_calibrated(self) -> bool:
        return self.calibration_accuracy > 0


@dataclass(slots=True)
class SpeedEstimatorConfig:
    smoothing_window: int = 5
    video_width_px: int = 1920
    video_height_px: int = 1080

    def validate(self) -> None:
        if self.smoothing_window < 1:
            raise KinematicsError("smoothing_window must be >= 1")
        if self.video_width_px <= 0 or self.video_height_px <= 0:
            raise KinematicsError("video dimensions must be positive")


class KinematicsError(RuntimeError):
    pass
