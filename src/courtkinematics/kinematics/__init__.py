from .landmarks import center_of_gravity_height, center_of_mass
from .speed import SpeedEstimator, TrackingState
from .types import (
    ComprehensiveSpeedMetrics,
    KinematicsError,
    Landmark,
    PoseLandmark,
    SpeedCalibrationSettings,
    SpeedEstimatorConfig,
    SpeedSample,
    Vector2D,
    Vector3D,
    as_landmarks,
)

__all__ = [
    # types
    "Landmark",
    "PoseLandmark",
    "Vector2D",
    "Vector3D",
    "SpeedSample",
    "ComprehensiveSpeedMetrics",
    "SpeedCalibrationSettings",
    "SpeedEstimatorConfig",
    "KinematicsError",
    "as_landmarks",
    # landmarks
    "center_of_mass",
    "center_of_gravity_height",
    # estimator
    "SpeedEstimator",
    "TrackingState",
]
