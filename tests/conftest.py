import numpy as np
import pytest

from courtkinematics.geometry import CalibrationPoint, Point2D, Point3D

# Court corners (centered meters) and where a 1900x1100 frame shows them.
SCENARIO_WORLD = [(-3.0, -6.7), (3.0, -6.7), (-3.0, 6.7), (3.0, 6.7)]
SCENARIO_IMAGE = [(100.0, 100.0), (1800.0, 100.0), (100.0, 1000.0), (1800.0, 1000.0)]

# A court seen obliquely: the far baseline (y > 0) is higher in the frame and shorter.
PERSPECTIVE_H = np.array(
    [
        [120.0, 8.0, 960.0],
        [0.0, -45.0, 620.0],
        [0.0, 0.025, 1.0],
    ]
)


def _project(h: np.ndarray, x: float, y: float) -> tuple[float, float]:
    u, v, w = h @ np.array([x, y, 1.0])
    return float(u / w), float(v / w)


def _points_from(h: np.ndarray, world_xy) -> list[CalibrationPoint]:
    out = []
    for x, y in world_xy:
        u, v = _project(h, x, y)
        out.append(CalibrationPoint(Point2D(u, v), Point3D(x, y, 0.0)))
    return out


@pytest.fixture
def scenario_points() -> list[CalibrationPoint]:
    return [
        CalibrationPoint(Point2D(u, v), Point3D(x, y, 0.0))
        for (x, y), (u, v) in zip(SCENARIO_WORLD, SCENARIO_IMAGE)
    ]


@pytest.fixture
def perspective_h() -> np.ndarray:
    return PERSPECTIVE_H.copy()


@pytest.fixture
def perspective_points() -> list[CalibrationPoint]:
    world = [
        (-3.05, -6.7),
        (3.05, -6.7),
        (-3.05, 6.7),
        (3.05, 6.7),
        (0.0, -1.98),
        (0.0, 1.98),
        (-2.59, 0.0),
        (2.59, 0.0),
    ]
    return _points_from(PERSPECTIVE_H, world)


@pytest.fixture
def project():
    return _project
