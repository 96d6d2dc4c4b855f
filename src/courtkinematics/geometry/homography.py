import logging
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
from jaxtyping import Float

from .linalg import DEGENERACY_EPS, invert_3x3, null_space_vector
from .profiles import PerspectiveFactors
from .types import Array33F, CalibrationPoint, LineCorrespondence

logger = logging.getLogger(__name__)

MIN_POINT_CORRESPONDENCES = 4
MIN_LINE_CORRESPONDENCES = 3


def _freeze(arr: np.ndarray) -> np.ndarray:
    out = np.array(arr, dtype=float, copy=True)
    out.setflags(write=False)
    return out


@dataclass(frozen=True, slots=True)
class Homography:
    """
    Immutable court-plane homography.

    ``matrix`` maps world (court, meters) -> image and is normalized so that
    ``matrix[2, 2] == 1``; ``inverse`` maps image -> world. A new calibration
    produces a new instance instead of mutating this one.
    """

    matrix: Array33F
    inverse: Array33F

    @classmethod
    def from_matrix(cls, matrix: Float[np.ndarray, "3 3"]) -> "Homography | None":
        """Normalize ``matrix`` by its [2][2] element and precompute the inverse."""
        m = np.asarray(matrix, dtype=float)
        if m.shape != (3, 3) or not np.all(np.isfinite(m)):
            logger.error("Invalid homography matrix: shape=%s", m.shape)
            return None
        scale = m[2, 2]
        if abs(scale) < DEGENERACY_EPS:
            logger.error("Invalid homography matrix: H[2][2]=%.3e is ~0", scale)
            return None
        m = m / scale
        inv = invert_3x3(m)
        if inv is None:
            logger.error("Failed to invert homography matrix (singular)")
            return None
        if abs(inv[2, 2]) >= DEGENERACY_EPS:
            inv = inv / inv[2, 2]
        return cls(matrix=_freeze(m), inverse=_freeze(inv))

    @classmethod
    def from_matrices(
        cls,
        matrix: Float[np.ndarray, "3 3"],
        inverse: Float[np.ndarray, "3 3"] | None,
    ) -> "Homography | None":
        """Rebuild a persisted homography; the stored inverse is kept verbatim."""
        if inverse is None:
            return cls.from_matrix(matrix)
        m = np.asarray(matrix, dtype=float)
        inv = np.asarray(inverse, dtype=float)
        if m.shape != (3, 3) or inv.shape != (3, 3):
            return None
        if not (np.all(np.isfinite(m)) and np.all(np.isfinite(inv))):
            return None
        return cls(matrix=_freeze(m), inverse=_freeze(inv))

    def as_lists(self) -> tuple[list[list[float]], list[list[float]]]:
        return self.matrix.tolist(), self.inverse.tolist()


def _normalizing_transform(points: Float[np.ndarray, "N 2"]) -> Array33F:
    """Similarity moving the centroid to 0 and the mean distance to sqrt(2)."""
    centroid = points.mean(axis=0)
    mean_dist = float(np.mean(np.linalg.norm(points - centroid, axis=1)))
    scale = np.sqrt(2.0) / mean_dist if mean_dist > DEGENERACY_EPS else 1.0
    return np.array(
        [
            [scale, 0.0, -scale * centroid[0]],
            [0.0, scale, -scale * centroid[1]],
            [0.0, 0.0, 1.0],
        ],
        dtype=float,
    )


def _transform_points(T: Array33F, points: Float[np.ndarray, "N 2"]) -> Float[np.ndarray, "N 2"]:
    homog = np.hstack([points, np.ones((points.shape[0], 1))]) @ T.T
    return homog[:, :2] / homog[:, 2:3]


def build_design_matrix(
    world_xy: Float[np.ndarray, "N 2"],
    image_xy: Float[np.ndarray, "N 2"],
    weights: Float[np.ndarray, "N"] | None = None,
) -> Float[np.ndarray, "2N 9"]:
    """
    DLT design matrix for ``image ~ H @ world``.

    Each correspondence contributes two rows; with weights, both rows are
    scaled by sqrt(weight), which is weighted least squares on the
    algebraic error.
    """
    world = np.asarray(world_xy, dtype=float).reshape(-1, 2)
    image = np.asarray(image_xy, dtype=float).reshape(-1, 2)
    n = world.shape[0]
    X, Y = world[:, 0], world[:, 1]
    u, v = image[:, 0], image[:, 1]
    zeros = np.zeros(n)
    ones = np.ones(n)

    A = np.empty((2 * n, 9), dtype=float)
    A[0::2] = np.column_stack([X, Y, ones, zeros, zeros, zeros, -u * X, -u * Y, -u])
    A[1::2] = np.column_stack([zeros, zeros, zeros, X, Y, ones, -v * X, -v * Y, -v])

    if weights is not None:
        root_w = np.sqrt(np.asarray(weights, dtype=float).reshape(-1))
        A *= np.repeat(root_w, 2)[:, None]
    return A


class HomographyEstimator:
    """Solves world-plane -> image homographies with the (weighted) DLT."""

    def __init__(
        self,
        perspective_factors: PerspectiveFactors | None = None,
        use_position_weights: bool = False,
        condition_points: bool = True,
    ):
        self._factors = (perspective_factors or PerspectiveFactors()).normalized()
        self._use_position_weights = use_position_weights
        self._condition_points = condition_points

    def position_weights(
        self,
        image_xy: Float[np.ndarray, "N 2"],
        image_size: tuple[float, float] | None = None,
    ) -> Float[np.ndarray, "N"]:
        """Empirical per-point weights from frame position (see PerspectiveFactors)."""
        pts = np.asarray(image_xy, dtype=float).reshape(-1, 2)
        if image_size is not None:
            x0, y0 = 0.0, 0.0
            width, height = float(image_size[0]), float(image_size[1])
        else:
            x0, y0 = pts.min(axis=0)
            width, height = np.ptp(pts, axis=0)
        width = max(float(width), DEGENERACY_EPS)
        height = max(float(height), DEGENERACY_EPS)

        f = self._factors
        dx = (pts[:, 0] - x0 - width / 2.0) / (width / 2.0)
        dy = (pts[:, 1] - y0 - height / 2.0) / (height / 2.0)
        r2 = np.clip((dx**2 + dy**2) / 2.0, 0.0, 1.0)
        edge = 1.0 - f.edge_penalty * r2

        depth = np.clip((pts[:, 1] - y0) / height, 0.0, 1.0)
        blend = f.far_weight + (f.near_weight - f.far_weight) * depth
        return np.maximum(f.min_weight, edge * blend)

    def estimate(
        self,
        points: Sequence[CalibrationPoint],
        image_size: tuple[float, float] | None = None,
    ) -> Homography | None:
        """
        Fit a homography to >= 4 correspondences.

        Returns None (never raises) when there are too few usable points or
        the solution is degenerate.
        """
        if len(points) < MIN_POINT_CORRESPONDENCES:
            logger.error(
                "At least %d calibration points are required, got %d",
                MIN_POINT_CORRESPONDENCES,
                len(points),
            )
            return None

        world = np.array([[p.world.x, p.world.y] for p in points], dtype=float)
        image = np.array([[p.image.x, p.image.y] for p in points], dtype=float)
        explicit = np.array(
            [1.0 if p.weight is None else float(p.weight) for p in points], dtype=float
        )

        weights = explicit
        if self._use_position_weights:
            weights = weights * self.position_weights(image, image_size)

        usable = np.isfinite(weights) & (weights > 0)
        usable &= np.all(np.isfinite(world), axis=1) & np.all(np.isfinite(image), axis=1)
        if int(usable.sum()) < MIN_POINT_CORRESPONDENCES:
            logger.error(
                "Only %d usable (finite, positively weighted) correspondences",
                int(usable.sum()),
            )
            return None
        world, image, weights = world[usable], image[usable], weights[usable]

        if self._condition_points:
            T_world = _normalizing_transform(world)
            T_image = _normalizing_transform(image)
            world_n = _transform_points(T_world, world)
            image_n = _transform_points(T_image, image)
        else:
            T_world = T_image = np.eye(3)
            world_n, image_n = world, image

        all_unit = bool(np.allclose(weights, 1.0))
        A = build_design_matrix(world_n, image_n, None if all_unit else weights)
        h = null_space_vector(A)
        H_n = h.reshape(3, 3)

        T_image_inv = invert_3x3(T_image)
        if T_image_inv is None:
            logger.error("Degenerate image point configuration")
            return None
        H = T_image_inv @ H_n @ T_world

        homography = Homography.from_matrix(H)
        if homography is not None:
            logger.debug(
                "Homography estimated from %d correspondences (weighted=%s)",
                world.shape[0],
                not all_unit,
            )
        return homography

    def estimate_from_lines(
        self,
        lines: Sequence[LineCorrespondence],
        points: Sequence[CalibrationPoint] = (),
        image_size: tuple[float, float] | None = None,
    ) -> Homography | None:
        """Reduce >= 3 line correspondences to their endpoints and fit."""
        if len(lines) < MIN_LINE_CORRESPONDENCES and len(points) < MIN_POINT_CORRESPONDENCES:
            logger.error(
                "At least %d line correspondences are required, got %d",
                MIN_LINE_CORRESPONDENCES,
                len(lines),
            )
            return None
        correspondences = list(points)
        for line in lines:
            correspondences.extend(line.endpoints())
        return self.estimate(correspondences, image_size=image_size)
