import logging
import math
from collections.abc import Sequence

import numpy as np

from .homography import Homography
from .linalg import apply_homography, apply_homography_batch, condition_number
from .profiles import ValidationThresholds
from .types import CalibrationPoint, LineCorrespondence, Point2D, ValidationMetrics

logger = logging.getLogger(__name__)

# Endpoint error (px) at which a line's alignment score reaches 0.
LINE_ALIGNMENT_SCALE_PX = 50.0
# Half-length (px) of the probe segment used to measure local metric scale.
PERSPECTIVE_PROBE_PX = 50.0
ILL_CONDITIONED = 1e5

_OVERALL_WEIGHTS = {"reprojection": 0.6, "lines": 0.2, "perspective": 0.2}


def _weights_of(points: Sequence[CalibrationPoint]) -> np.ndarray:
    w = np.array([1.0 if p.weight is None else float(p.weight) for p in points], dtype=float)
    w[~np.isfinite(w) | (w < 0)] = 0.0
    return w


def quality_grade(confidence: float) -> str:
    if confidence >= 0.9:
        return "excellent"
    if confidence >= 0.7:
        return "good"
    if confidence >= 0.5:
        return "fair"
    return "poor"


class CalibrationValidator:
    """Reprojection-error based accuracy checks for a fitted homography."""

    def __init__(self, thresholds: ValidationThresholds | None = None):
        self._thresholds = (thresholds or ValidationThresholds()).normalized()

    @property
    def thresholds(self) -> ValidationThresholds:
        return self._thresholds

    def reprojection_error(
        self,
        points: Sequence[CalibrationPoint],
        homography: Homography,
    ) -> float:
        """(Weighted) mean image distance between H @ world and the observed point."""
        if not points:
            return math.inf
        world = np.array([[p.world.x, p.world.y] for p in points], dtype=float)
        image = np.array([[p.image.x, p.image.y] for p in points], dtype=float)
        projected, valid = apply_homography_batch(homography.matrix, world)
        weights = _weights_of(points)[valid]
        if not np.any(valid) or weights.sum() <= 0:
            return math.inf
        err = np.linalg.norm(projected[valid] - image[valid], axis=1)
        return float(np.average(err, weights=weights))

    def world_error(
        self,
        points: Sequence[CalibrationPoint],
        homography: Homography,
    ) -> float:
        """Mean court-plane distance (meters) between H^-1 @ image and the world point."""
        if not points:
            return math.inf
        world = np.array([[p.world.x, p.world.y] for p in points], dtype=float)
        image = np.array([[p.image.x, p.image.y] for p in points], dtype=float)
        mapped, valid = apply_homography_batch(homography.inverse, image)
        if not np.any(valid):
            return math.inf
        return float(np.linalg.norm(mapped[valid] - world[valid], axis=1).mean())

    def confidence(self, error: float) -> float:
        """
        Piecewise-linear confidence against the sport's error bands:
        1.0 up to excellent, 1.0 -> 0.5 up to acceptable, 0.5 -> floor up to
        max, floor beyond.
        """
        t = self._thresholds
        if not math.isfinite(error) or error > t.max_error:
            return t.confidence_floor
        if error <= t.excellent_error:
            return 1.0
        if error <= t.acceptable_error:
            frac = (error - t.excellent_error) / (t.acceptable_error - t.excellent_error)
            return 1.0 - 0.5 * frac
        frac = (error - t.acceptable_error) / (t.max_error - t.acceptable_error)
        return 0.5 - (0.5 - t.confidence_floor) * frac

    def line_alignment_scores(
        self,
        lines: Sequence[LineCorrespondence],
        homography: Homography,
    ) -> list[float]:
        scores: list[float] = []
        for line in lines:
            start = apply_homography(homography.matrix, line.world_start.x, line.world_start.y)
            end = apply_homography(homography.matrix, line.world_end.x, line.world_end.y)
            if start is None or end is None:
                scores.append(0.0)
                continue
            start_err = math.dist(start, (line.image_start.x, line.image_start.y))
            end_err = math.dist(end, (line.image_end.x, line.image_end.y))
            avg_err = 0.5 * (start_err + end_err)
            scores.append(max(0.0, 1.0 - avg_err / LINE_ALIGNMENT_SCALE_PX))
        return scores

    def perspective_accuracy(
        self,
        homography: Homography,
        image_width_px: float,
        image_height_px: float,
    ) -> float:
        """
        1 - coefficient of variation of the local metric scale sampled at four
        probe points (20%/80% of the frame), clamped to [0, 1].
        """
        probes = [
            (image_width_px * fx, image_height_px * fy)
            for fy in (0.2, 0.8)
            for fx in (0.2, 0.8)
        ]
        scales: list[float] = []
        for x, y in probes:
            left = apply_homography(homography.inverse, x - PERSPECTIVE_PROBE_PX, y)
            right = apply_homography(homography.inverse, x + PERSPECTIVE_PROBE_PX, y)
            if left is None or right is None:
                continue
            scales.append(math.dist(left, right) / (2.0 * PERSPECTIVE_PROBE_PX))

        if len(scales) < 2:
            return 0.0
        mean = float(np.mean(scales))
        if mean <= 0:
            return 0.0
        cv = float(np.std(scales)) / mean
        return min(1.0, max(0.0, 1.0 - cv))

    def round_trip_error(
        self,
        homography: Homography,
        test_points: Sequence[Point2D],
    ) -> float:
        """Mean image -> world -> image error (px) over ``test_points``."""
        errors: list[float] = []
        for p in test_points:
            world = apply_homography(homography.inverse, p.x, p.y)
            if world is None:
                continue
            back = apply_homography(homography.matrix, world[0], world[1])
            if back is None:
                continue
            errors.append(math.dist(back, (p.x, p.y)))
        return float(np.mean(errors)) if errors else math.inf

    def _recommendations(
        self,
        reprojection_error: float,
        cond: float,
        perspective: float | None,
        line_score: float | None,
    ) -> tuple[str, ...]:
        recs: list[str] = []
        if reprojection_error > self._thresholds.max_error:
            recs.append(
                "High reprojection error detected. Check that every point is placed "
                "precisely on the court markings."
            )
        if cond > ILL_CONDITIONED:
            recs.append(
                "Matrix instability detected. Spread the correspondences more evenly "
                "across the image."
            )
        if perspective is not None and perspective < 0.7:
            recs.append(
                "High perspective distortion. Recalibrate with correspondences that "
                "cover the whole court."
            )
        if line_score is not None and line_score < 0.7:
            recs.append(
                "Poor line alignment detected. Redraw lines so they follow the court "
                "lines in the video."
            )
        if not recs:
            recs.append("Calibration quality is good. No specific improvements needed.")
        return tuple(recs)

    def validate(
        self,
        homography: Homography,
        points: Sequence[CalibrationPoint],
        lines: Sequence[LineCorrespondence] = (),
        image_size: tuple[float, float] | None = None,
    ) -> ValidationMetrics:
        correspondences = list(points)
        for line in lines:
            correspondences.extend(line.endpoints())

        reproj = self.reprojection_error(correspondences, homography)
        reproj_conf = self.confidence(reproj)

        components = [(reproj_conf, _OVERALL_WEIGHTS["reprojection"])]

        line_scores = self.line_alignment_scores(lines, homography)
        line_score = float(np.mean(line_scores)) if line_scores else None
        if line_score is not None:
            components.append((line_score, _OVERALL_WEIGHTS["lines"]))

        perspective = None
        if image_size is not None:
            perspective = self.perspective_accuracy(homography, image_size[0], image_size[1])
            components.append((perspective, _OVERALL_WEIGHTS["perspective"]))

        total_weight = sum(w for _, w in components)
        overall = sum(score * w for score, w in components) / total_weight
        overall = min(1.0, max(0.0, overall))
        cond = condition_number(homography.matrix)

        metrics = ValidationMetrics(
            reprojection_error=reproj,
            line_alignment_score=0.0 if line_score is None else line_score,
            perspective_accuracy=1.0 if perspective is None else perspective,
            overall_confidence=overall,
            condition_number=cond,
            world_error_m=self.world_error(correspondences, homography),
            quality_grade=quality_grade(overall),
            recommendations=self._recommendations(reproj, cond, perspective, line_score),
        )
        logger.debug(
            "Validation: reprojection_error=%.4f confidence=%.3f grade=%s",
            reproj,
            overall,
            metrics.quality_grade,
        )
        return metrics
