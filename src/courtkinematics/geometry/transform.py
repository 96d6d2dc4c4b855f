import logging
from collections.abc import Sequence
from typing import Any

from .homography import Homography
from .linalg import apply_homography
from .types import ZERO_POINT_2D, ZERO_POINT_3D, Point2D, Point3D

logger = logging.getLogger(__name__)

# MediaPipe pose indices
FOOT_INDICES = frozenset({27, 28, 31, 32})
HIP_INDICES = frozenset({23, 24})
UPPER_BODY_MAX_INDEX = 11

# Default heights (m) used when no world landmarks are available.
UPPER_BODY_HEIGHT_M = 1.5
HIP_HEIGHT_M = 0.9
OTHER_HEIGHT_M = 0.7
# MediaPipe world z is relative depth; this scale maps it to meters.
WORLD_Z_SCALE = 2.0


def _get(landmark: Any, key: str, default: float | None = None) -> float | None:
    if isinstance(landmark, dict):
        value = landmark.get(key, default)
    else:
        value = getattr(landmark, key, default)
    return default if value is None else float(value)


class CoordinateTransformer:
    """
    Maps single points between the image and the court plane.

    Vertical offset is not recovered from geometry: ``image_to_world``
    projects onto the court plane and attaches the caller-supplied z.
    Requests made before a homography is set return a zero point and log a
    warning instead of raising.
    """

    def __init__(self, homography: Homography | None = None):
        self._homography = homography

    @property
    def homography(self) -> Homography | None:
        return self._homography

    @property
    def is_calibrated(self) -> bool:
        return self._homography is not None

    def update(self, homography: Homography | None) -> None:
        self._homography = homography

    def clear(self) -> None:
        self._homography = None

    def image_to_world(self, point: Point2D, z: float = 0.0) -> Point3D:
        if self._homography is None:
            logger.warning("Camera not calibrated")
            return ZERO_POINT_3D
        mapped = apply_homography(self._homography.inverse, point.x, point.y)
        if mapped is None:
            logger.warning("Division by near-zero in homography transformation")
            return ZERO_POINT_3D
        return Point3D(mapped[0], mapped[1], float(z))

    def world_to_image(self, point: Point3D) -> Point2D:
        """Project onto the court plane (z is ignored) and map to the image."""
        if self._homography is None:
            logger.warning("Camera not calibrated")
            return ZERO_POINT_2D
        mapped = apply_homography(self._homography.matrix, point.x, point.y)
        if mapped is None:
            logger.warning("Division by near-zero in homography transformation")
            return ZERO_POINT_2D
        return Point2D(mapped[0], mapped[1])

    def batch_image_to_world(self, points: Sequence[Point2D], z: float = 0.0) -> list[Point3D]:
        return [self.image_to_world(p, z) for p in points]

    def transform_landmarks_to_world(
        self,
        landmarks: Sequence[Any],
        world_landmarks: Sequence[Any] | None = None,
    ) -> list[Point3D]:
        """
        Map pose landmarks (image coordinates) onto the court.

        Feet are placed on the court plane; other landmarks get a height
        from the detector's world depth when available, otherwise a
        typical body-proportion height.
        """
        if self._homography is None:
            logger.warning("Camera not calibrated")
            return []

        out: list[Point3D] = []
        for i, lm in enumerate(landmarks):
            if i in FOOT_INDICES:
                z = 0.0
            elif world_landmarks is not None and i < len(world_landmarks) and world_landmarks[i]:
                z = abs(_get(world_landmarks[i], "z", 0.0)) * WORLD_Z_SCALE
            elif i < UPPER_BODY_MAX_INDEX:
                z = UPPER_BODY_HEIGHT_M
            elif i in HIP_INDICES:
                z = HIP_HEIGHT_M
            else:
                z = OTHER_HEIGHT_M
            out.append(self.image_to_world(Point2D(_get(lm, "x", 0.0), _get(lm, "y", 0.0)), z))
        return out
