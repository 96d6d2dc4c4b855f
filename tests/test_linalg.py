import math

import numpy as np
import pytest

from courtkinematics.geometry import GeometryError
from courtkinematics.geometry.linalg import (
    MAX_CONDITION_NUMBER,
    apply_homography,
    apply_homography_batch,
    condition_number,
    determinant_3x3,
    invert_3x3,
    matmul,
    null_space_vector,
    transpose,
)


def test_matmul_and_transpose():
    a = np.arange(6, dtype=float).reshape(2, 3)
    b = np.arange(3, dtype=float).reshape(3, 1)
    np.testing.assert_allclose(matmul(a, b), a @ b)
    np.testing.assert_allclose(transpose(a), a.T)


def test_matmul_shape_mismatch_raises():
    with pytest.raises(GeometryError):
        matmul(np.ones((2, 3)), np.ones((2, 3)))


def test_determinant_and_inverse_match_numpy():
    rng = np.random.default_rng(0)
    m = rng.normal(size=(3, 3)) + 3 * np.eye(3)
    assert determinant_3x3(m) == pytest.approx(np.linalg.det(m))
    np.testing.assert_allclose(invert_3x3(m), np.linalg.inv(m), atol=1e-12)


def test_invert_singular_returns_none():
    m = np.array([[1.0, 2.0, 3.0], [2.0, 4.0, 6.0], [0.0, 1.0, 1.0]])
    assert invert_3x3(m) is None


def test_invert_requires_3x3():
    with pytest.raises(GeometryError):
        invert_3x3(np.eye(2))


def test_null_space_vector_solves_homogeneous_system():
    x = np.array([1.0, -2.0, 0.5])
    x /= np.linalg.norm(x)
    # Two rows orthogonal to x.
    a = np.array([[2.0, 1.0, 0.0], [0.0, 1.0, 4.0]])
    v = null_space_vector(a)
    assert np.linalg.norm(a @ v) < 1e-10
    assert abs(abs(float(v @ x)) - 1.0) < 1e-10


def test_null_space_vector_rejects_underdetermined():
    with pytest.raises(GeometryError):
        null_space_vector(np.ones((2, 9)))


def test_condition_number():
    assert condition_number(np.eye(3)) == pytest.approx(1.0)
    assert math.isinf(condition_number(np.zeros((3, 3))))
    nearly_singular = np.diag([1.0, 1.0, 1e-9])
    assert condition_number(nearly_singular) == MAX_CONDITION_NUMBER


def test_apply_homography_degenerate_w():
    h = np.array([[1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 0.0]])
    assert apply_homography(h, 1.0, 2.0) is None
    assert apply_homography(np.eye(3), 1.0, 2.0) == (1.0, 2.0)


def test_apply_homography_batch_masks_degenerate_points():
    h = np.array([[1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [1.0, 0.0, 0.0]])
    mapped, valid = apply_homography_batch(h, np.array([[0.0, 5.0], [2.0, 4.0]]))
    assert valid.tolist() == [False, True]
    np.testing.assert_allclose(mapped[1], [1.0, 2.0])
