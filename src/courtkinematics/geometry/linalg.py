"""
Small linear-algebra kernel for planar homographies.

Only the operations the calibration code needs are exposed: products,
transpose, 3x3 determinant/inverse, the SVD null-space solve used by the
DLT, and homogeneous point mapping.
"""

import numpy as np
from jaxtyping import Float

from .types import GeometryError

DEGENERACY_EPS = 1e-10
MAX_CONDITION_NUMBER = 1e6


def _as_matrix(m, name: str = "matrix") -> np.ndarray:
    arr = np.asarray(m, dtype=float)
    if arr.ndim != 2:
        raise GeometryError(f"{name} must be two-dimensional, got shape {arr.shape}")
    return arr


def _as_3x3(m, name: str = "matrix") -> Float[np.ndarray, "3 3"]:
    arr = _as_matrix(m, name)
    if arr.shape != (3, 3):
        raise GeometryError(f"{name} must have shape (3, 3), got {arr.shape}")
    return arr


def matmul(
    a: Float[np.ndarray, "m k"],
    b: Float[np.ndarray, "k n"],
) -> Float[np.ndarray, "m n"]:
    a_arr = _as_matrix(a, "a")
    b_arr = _as_matrix(b, "b")
    if a_arr.shape[1] != b_arr.shape[0]:
        raise GeometryError(f"Cannot multiply {a_arr.shape} by {b_arr.shape}")
    return a_arr @ b_arr


def transpose(m: Float[np.ndarray, "m n"]) -> Float[np.ndarray, "n m"]:
    return _as_matrix(m).T.copy()


def determinant_3x3(m: Float[np.ndarray, "3 3"]) -> float:
    a = _as_3x3(m)
    return float(
        a[0, 0] * (a[1, 1] * a[2, 2] - a[1, 2] * a[2, 1])
        - a[0, 1] * (a[1, 0] * a[2, 2] - a[1, 2] * a[2, 0])
        + a[0, 2] * (a[1, 0] * a[2, 1] - a[1, 1] * a[2, 0])
    )


def invert_3x3(m: Float[np.ndarray, "3 3"]) -> Float[np.ndarray, "3 3"] | None:
    """Adjugate inverse; None when the matrix is (numerically) singular."""
    a = _as_3x3(m)
    det = determinant_3x3(a)
    if abs(det) < DEGENERACY_EPS or not np.all(np.isfinite(a)):
        return None

    cofactors = np.array(
        [
            [
                a[1, 1] * a[2, 2] - a[1, 2] * a[2, 1],
                -(a[1, 0] * a[2, 2] - a[1, 2] * a[2, 0]),
                a[1, 0] * a[2, 1] - a[1, 1] * a[2, 0],
            ],
            [
                -(a[0, 1] * a[2, 2] - a[0, 2] * a[2, 1]),
                a[0, 0] * a[2, 2] - a[0, 2] * a[2, 0],
                -(a[0, 0] * a[2, 1] - a[0, 1] * a[2, 0]),
            ],
            [
                a[0, 1] * a[1, 2] - a[0, 2] * a[1, 1],
                -(a[0, 0] * a[1, 2] - a[0, 2] * a[1, 0]),
                a[0, 0] * a[1, 1] - a[0, 1] * a[1, 0],
            ],
        ],
        dtype=float,
    )
    return cofactors.T / det


def null_space_vector(a: Float[np.ndarray, "m n"]) -> Float[np.ndarray, "n"]:
    """Right singular vector of the smallest singular value (thin SVD)."""
    arr = _as_matrix(a, "design matrix")
    if arr.shape[0] < arr.shape[1] - 1:
        raise GeometryError(
            f"Underdetermined system: {arr.shape[0]} rows for {arr.shape[1]} unknowns"
        )
    # full_matrices=True keeps all n right singular vectors even when m < n
    _, _, vt = np.linalg.svd(arr, full_matrices=True)
    return vt[-1]


def singular_values(m: Float[np.ndarray, "m n"]) -> Float[np.ndarray, "k"]:
    return np.linalg.svd(_as_matrix(m), compute_uv=False)


def condition_number(m: Float[np.ndarray, "3 3"]) -> float:
    """Ratio of extreme singular values, capped at MAX_CONDITION_NUMBER."""
    a = _as_3x3(m)
    if not np.all(np.isfinite(a)):
        return float("inf")
    s = singular_values(a)
    if s[-1] < DEGENERACY_EPS:
        return float("inf")
    return float(min(s[0] / s[-1], MAX_CONDITION_NUMBER))


def apply_homography(
    h: Float[np.ndarray, "3 3"],
    x: float,
    y: float,
) -> tuple[float, float] | None:
    """Map (x, y, 1) through h; None when the homogeneous w is ~0."""
    hm = _as_3x3(h, "homography")
    xp = hm[0, 0] * x + hm[0, 1] * y + hm[0, 2]
    yp = hm[1, 0] * x + hm[1, 1] * y + hm[1, 2]
    wp = hm[2, 0] * x + hm[2, 1] * y + hm[2, 2]
    if abs(wp) < DEGENERACY_EPS:
        return None
    return float(xp / wp), float(yp / wp)


def apply_homography_batch(
    h: Float[np.ndarray, "3 3"],
    points: Float[np.ndarray, "N 2"],
) -> tuple[Float[np.ndarray, "N 2"], np.ndarray]:
    """Vectorised apply_homography; returns (mapped, valid_mask)."""
    hm = _as_3x3(h, "homography")
    pts = np.asarray(points, dtype=float).reshape(-1, 2)
    homog = np.hstack([pts, np.ones((pts.shape[0], 1))]) @ hm.T
    w = homog[:, 2]
    valid = np.abs(w) >= DEGENERACY_EPS
    mapped = np.zeros_like(pts)
    mapped[valid] = homog[valid, :2] / w[valid, None]
    return mapped, valid
