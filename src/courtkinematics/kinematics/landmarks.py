import math
from collections.abc import Sequence

from .types import TORSO_LANDMARKS, ZERO_VECTOR, Landmark, PoseLandmark, Vector3D

VISIBILITY_THRESHOLD = 0.5

# Segment weights for the center-of-gravity height estimate.
COG_HIP_WEIGHT = 0.5
COG_KNEE_WEIGHT = 0.3
COG_ANKLE_WEIGHT = 0.2


def _mean(points: Sequence[Landmark]) -> Vector3D:
    n = len(points)
    return Vector3D(
        sum(p.x for p in points) / n,
        sum(p.y for p in points) / n,
        sum((p.z or 0.0) for p in points) / n,
    )


def center_of_mass(landmarks: Sequence[Landmark]) -> Vector3D:
    """
    Mean of the visible torso landmarks.

    Falls back to every visible landmark when no torso landmark is visible,
    and to the origin when nothing is visible at all.
    """
    if not landmarks:
        return ZERO_VECTOR

    torso = [
        landmarks[i]
        for i in TORSO_LANDMARKS
        if i < len(landmarks) and landmarks[i].is_visible(VISIBILITY_THRESHOLD)
    ]
    if torso:
        return _mean(torso)

    visible = [lm for lm in landmarks if lm.is_visible(VISIBILITY_THRESHOLD)]
    if visible:
        return _mean(visible)
    return ZERO_VECTOR


def _pair_mean_y(landmarks: Sequence[Landmark], left: int, right: int) -> float | None:
    if right >= len(landmarks) or left >= len(landmarks):
        return None
    return (landmarks[left].y + landmarks[right].y) / 2


def center_of_gravity_height(world_landmarks: Sequence[Landmark]) -> float:
    """Weighted hip/knee/ankle height in meters, or 0.0 if it cannot be computed."""
    hip = _pair_mean_y(world_landmarks, PoseLandmark.LEFT_HIP, PoseLandmark.RIGHT_HIP)
    knee = _pair_mean_y(world_landmarks, PoseLandmark.LEFT_KNEE, PoseLandmark.RIGHT_KNEE)
    ankle = _pair_mean_y(world_landmarks, PoseLandmark.LEFT_ANKLE, PoseLandmark.RIGHT_ANKLE)
    if hip is None or knee is None or ankle is None:
        return 0.0
    if not (math.isfinite(hip) and math.isfinite(knee) and math.isfinite(ankle)):
        return 0.0
    return abs(COG_HIP_WEIGHT * hip + COG_KNEE_WEIGHT * knee + COG_ANKLE_WEIGHT * ankle)
