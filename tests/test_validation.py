import math

import numpy as np
import pytest

from courtkinematics.geometry import (
    CalibrationPoint,
    CalibrationValidator,
    Homography,
    HomographyEstimator,
    LineCorrespondence,
    Point2D,
    Point3D,
    ValidationThresholds,
    quality_grade,
)


def _identity() -> Homography:
    return Homography.from_matrix(np.eye(3))


def _point(u, v, x, y, weight=None) -> CalibrationPoint:
    return CalibrationPoint(Point2D(u, v), Point3D(x, y, 0.0), weight)


def test_confidence_band_edges():
    validator = CalibrationValidator(ValidationThresholds(2.0, 5.0, 15.0, 0.1))
    assert validator.confidence(0.0) == 1.0
    assert validator.confidence(2.0) == 1.0
    assert validator.confidence(3.5) == pytest.approx(0.75)
    assert validator.confidence(5.0) == pytest.approx(0.5)
    assert validator.confidence(10.0) == pytest.approx(0.3)
    assert validator.confidence(15.0) == pytest.approx(0.1)
    assert validator.confidence(100.0) == pytest.approx(0.1)
    assert validator.confidence(math.inf) == pytest.approx(0.1)
    assert validator.confidence(math.nan) == pytest.approx(0.1)


def test_confidence_is_monotone_non_increasing():
    validator = CalibrationValidator()
    errors = np.linspace(0.0, 30.0, 601)
    values = [validator.confidence(float(e)) for e in errors]
    assert all(a >= b for a, b in zip(values, values[1:]))
    assert all(0.1 <= v <= 1.0 for v in values)


def test_weighted_reprojection_error():
    points = [
        _point(1.0, 0.0, 0.0, 0.0, weight=3.0),
        _point(10.0, 3.0, 10.0, 0.0, weight=1.0),
    ]
    error = CalibrationValidator().reprojection_error(points, _identity())
    assert error == pytest.approx((3 * 1.0 + 1 * 3.0) / 4)


def test_reprojection_error_without_points_is_inf():
    assert math.isinf(CalibrationValidator().reprojection_error([], _identity()))


def test_world_error_in_meters():
    points = [_point(0.5, 0.0, 0.0, 0.0), _point(10.0, 10.0, 10.0, 10.0)]
    assert CalibrationValidator().world_error(points, _identity()) == pytest.approx(0.25)


def test_line_alignment_scores():
    line = LineCorrespondence(Point2D(0, 0), Point2D(10, 0), Point3D(0, 0), Point3D(10, 0))
    shifted = LineCorrespondence(Point2D(0, 25), Point2D(10, 25), Point3D(0, 0), Point3D(10, 0))
    far_off = LineCorrespondence(Point2D(0, 100), Point2D(10, 100), Point3D(0, 0), Point3D(10, 0))
    scores = CalibrationValidator().line_alignment_scores([line, shifted, far_off], _identity())
    assert scores == pytest.approx([1.0, 0.5, 0.0])


def test_perspective_accuracy_without_perspective_is_one(scenario_points):
    homography = HomographyEstimator().estimate(scenario_points)
    assert CalibrationValidator().perspective_accuracy(homography, 1920, 1080) == pytest.approx(1.0)


def test_perspective_accuracy_drops_with_perspective(perspective_points):
    homography = HomographyEstimator().estimate(perspective_points)
    accuracy = CalibrationValidator().perspective_accuracy(homography, 1920, 1080)
    assert 0.0 <= accuracy < 1.0


def test_validate_exact_fit(scenario_points):
    homography = HomographyEstimator().estimate(scenario_points)
    metrics = CalibrationValidator().validate(homography, scenario_points)
    assert metrics.reprojection_error < 1e-6
    assert metrics.overall_confidence == pytest.approx(1.0)
    assert metrics.line_alignment_score == 0.0
    assert metrics.perspective_accuracy == 1.0
    assert metrics.world_error_m < 1e-6
    assert metrics.quality_grade == "excellent"
    assert metrics.recommendations == (
        "Calibration quality is good. No specific improvements needed.",
    )


def test_validate_blends_line_and_perspective_scores(scenario_points):
    homography = HomographyEstimator().estimate(scenario_points)
    bad_line = LineCorrespondence(
        Point2D(100.0, 200.0), Point2D(1800.0, 200.0), Point3D(-3.0, -6.7), Point3D(3.0, -6.7)
    )
    metrics = CalibrationValidator().validate(
        homography, scenario_points, [bad_line], image_size=(1920, 1080)
    )
    assert metrics.line_alignment_score == 0.0
    assert metrics.overall_confidence < 1.0
    assert any("line alignment" in r for r in metrics.recommendations)


def test_round_trip_error(perspective_points):
    homography = HomographyEstimator().estimate(perspective_points)
    probes = [Point2D(200.0, 300.0), Point2D(960.0, 540.0), Point2D(1700.0, 900.0)]
    assert CalibrationValidator().round_trip_error(homography, probes) < 1e-6


def test_quality_grade():
    assert quality_grade(0.95) == "excellent"
    assert quality_grade(0.9) == "excellent"
    assert quality_grade(0.75) == "good"
    assert quality_grade(0.5) == "fair"
    assert quality_grade(0.2) == "poor"
