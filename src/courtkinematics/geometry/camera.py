"""
Approximate camera recovery from a court-plane homography.

Coordinate systems:
- World frame is the court frame (origin at court center, z up).
- Camera frame follows the pinhole convention with z pointing forward.

The intrinsic model is deliberately simple: square pixels, zero skew,
principal point at the image center and a single focal length estimated
from the homography's first two columns. There is no distortion model and
r3 = r1 x r2 is only approximately orthogonal to r1, r2, so every value
produced here is an estimate.
"""

import logging
import math
from dataclasses import dataclass

import cv2
import numpy as np
from jaxtyping import Float

from .homography import Homography
from .linalg import DEGENERACY_EPS, invert_3x3
from .types import Array33F, CameraParams, EulerAngles, Point3D

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DecomposerConfig:
    near: float = 0.1
    far: float = 1000.0


def _intrinsic_matrix(focal_px: float, cx_px: float, cy_px: float) -> Array33F:
    return np.array(
        [
            [focal_px, 0.0, cx_px],
            [0.0, focal_px, cy_px],
            [0.0, 0.0, 1.0],
        ],
        dtype=float,
    )


def rotation_to_euler(R_wc: Array33F) -> EulerAngles:
    """Euler angles (degrees) of a rotation via OpenCV's RQ decomposition."""
    angles, *_ = cv2.RQDecomp3x3(np.asarray(R_wc, dtype=np.float64))
    return EulerAngles(x_deg=float(angles[0]), y_deg=float(angles[1]), z_deg=float(angles[2]))


class HomographyDecomposer:
    """Factors a world->image homography into approximate extrinsics and fov."""

    def __init__(self, config: DecomposerConfig | None = None):
        self._cfg = config or DecomposerConfig()

    def decompose(
        self,
        homography: Homography | Float[np.ndarray, "3 3"],
        image_width_px: float,
        image_height_px: float,
    ) -> CameraParams | None:
        if image_width_px <= 0 or image_height_px <= 0:
            logger.warning(
                "Invalid image size for decomposition: %sx%s", image_width_px, image_height_px
            )
            return None

        H = homography.matrix if isinstance(homography, Homography) else np.asarray(homography, dtype=float)
        if H.shape != (3, 3) or abs(H[2, 2]) < DEGENERACY_EPS:
            logger.warning("Cannot decompose degenerate homography")
            return None
        H = H / H[2, 2]

        lambda_1 = float(np.linalg.norm(H[:, 0]))
        lambda_2 = float(np.linalg.norm(H[:, 1]))
        focal_px = 0.5 * (lambda_1 + lambda_2)
        if focal_px < DEGENERACY_EPS:
            logger.warning("Focal length estimate is ~0")
            return None

        K = _intrinsic_matrix(focal_px, image_width_px / 2.0, image_height_px / 2.0)
        K_inv = invert_3x3(K)
        if K_inv is None:
            return None
        M = K_inv @ H

        s1 = float(np.linalg.norm(M[:, 0]))
        s2 = float(np.linalg.norm(M[:, 1]))
        if s1 < DEGENERACY_EPS or s2 < DEGENERACY_EPS:
            logger.warning("Homography columns collapse after removing intrinsics")
            return None

        r1 = M[:, 0] / s1
        r2 = M[:, 1] / s2
        t_wc = M[:, 2] / (0.5 * (s1 + s2))
        # Court must lie in front of the camera.
        if t_wc[2] < 0:
            r1, r2, t_wc = -r1, -r2, -t_wc
        r3 = np.cross(r1, r2)
        R_wc = np.column_stack([r1, r2, r3])

        center = R_wc.T @ (-t_wc)
        fov_deg = math.degrees(2.0 * math.atan(image_height_px / (2.0 * focal_px)))

        params = CameraParams(
            position=Point3D(float(center[0]), float(center[1]), float(center[2])),
            rotation=rotation_to_euler(R_wc),
            fov_deg=fov_deg,
            aspect_ratio=float(image_width_px) / float(image_height_px),
            near=self._cfg.near,
            far=self._cfg.far,
            focal_length_px=focal_px,
            R_wc=R_wc,
        )
        logger.debug(
            "Decomposed homography: f=%.1fpx fov=%.2fdeg position=(%.2f, %.2f, %.2f)",
            focal_px,
            fov_deg,
            params.position.x,
            params.position.y,
            params.position.z,
        )
        return params
