import json
import logging
import math
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numpy as np

from courtkinematics.observers import Observable

from .camera import DecomposerConfig, HomographyDecomposer
from .homography import (
    MIN_LINE_CORRESPONDENCES,
    MIN_POINT_CORRESPONDENCES,
    Homography,
    HomographyEstimator,
)
from .profiles import BADMINTON, SportProfile
from .transform import CoordinateTransformer
from .types import (
    CalibrationError,
    CalibrationPoint,
    CameraParams,
    CourtDimensions,
    LineCorrespondence,
    ValidationMetrics,
)
from .validation import CalibrationValidator

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_SIZE = (1920, 1080)
_STATE_KEYS = (
    "isCalibrated",
    "calibrationPoints",
    "homographyMatrix",
    "inverseHomographyMatrix",
    "courtDimensions",
    "calibrationError",
    "lastCalibrationTime",
)


def _wall_clock_ms() -> float:
    return time.time() * 1000.0


@dataclass(slots=True)
class CalibrationSnapshot:
    is_calibrated: bool
    num_points: int
    num_lines: int
    homography: Homography | None
    camera: CameraParams | None
    metrics: ValidationMetrics | None
    calibration_error: float


class CalibrationSession(Observable[CalibrationSnapshot]):
    """
    Collects correspondences and produces a Homography, CameraParams and
    ValidationMetrics.

    The session is mutable until ``calibrate`` succeeds; after that it is
    frozen and must be ``reset`` before new correspondences are accepted.
    """

    def __init__(
        self,
        profile: SportProfile | None = None,
        image_size: tuple[int, int] = DEFAULT_IMAGE_SIZE,
        use_position_weights: bool = False,
        decomposer_config: DecomposerConfig | None = None,
        clock: Callable[[], float] = _wall_clock_ms,
    ):
        super().__init__()
        self._profile = profile or BADMINTON
        self._image_size = image_size
        self._clock = clock
        self._estimator = HomographyEstimator(
            self._profile.perspective_factors,
            use_position_weights=use_position_weights,
        )
        self._decomposer = HomographyDecomposer(decomposer_config)
        self._validator = CalibrationValidator(self._profile.validation_thresholds)
        self._transformer = CoordinateTransformer()

        self._court: CourtDimensions = self._profile.court_dimensions
        self._points: list[CalibrationPoint] = []
        self._lines: list[LineCorrespondence] = []
        self._homography: Homography | None = None
        self._camera: CameraParams | None = None
        self._metrics: ValidationMetrics | None = None
        self._calibration_error = 0.0
        self._last_calibration_time: float | None = None
        self._frozen = False

    # -- state -------------------------------------------------------------

    @property
    def profile(self) -> SportProfile:
        return self._profile

    @property
    def is_calibrated(self) -> bool:
        return self._frozen and self._homography is not None

    @property
    def points(self) -> tuple[CalibrationPoint, ...]:
        return tuple(self._points)

    @property
    def lines(self) -> tuple[LineCorrespondence, ...]:
        return tuple(self._lines)

    @property
    def court_dimensions(self) -> CourtDimensions:
        return self._court

    @property
    def image_size(self) -> tuple[int, int]:
        return self._image_size

    @property
    def homography(self) -> Homography | None:
        return self._homography

    @property
    def camera(self) -> CameraParams | None:
        return self._camera

    @property
    def metrics(self) -> ValidationMetrics | None:
        return self._metrics

    @property
    def calibration_error(self) -> float:
        return self._calibration_error

    @property
    def last_calibration_time(self) -> float | None:
        return self._last_calibration_time

    @property
    def transformer(self) -> CoordinateTransformer:
        return self._transformer

    def snapshot(self) -> CalibrationSnapshot:
        return CalibrationSnapshot(
            is_calibrated=self.is_calibrated,
            num_points=len(self._points),
            num_lines=len(self._lines),
            homography=self._homography,
            camera=self._camera,
            metrics=self._metrics,
            calibration_error=self._calibration_error,
        )

    def is_trustworthy(self, min_confidence: float = 0.5) -> bool:
        """Gate for driving transforms: calibrated and confident enough."""
        return (
            self.is_calibrated
            and self._metrics is not None
            and self._metrics.overall_confidence >= min_confidence
        )

    def can_calibrate(self) -> bool:
        return (
            len(self._points) >= MIN_POINT_CORRESPONDENCES
            or len(self._lines) >= MIN_LINE_CORRESPONDENCES
        )

    # -- mutation ----------------------------------------------------------

    def _check_mutable(self) -> bool:
        if self._frozen:
            logger.warning("Calibration is finalized; call reset() before editing it")
            return False
        return True

    def add_point(self, point: CalibrationPoint) -> bool:
        if not self._check_mutable():
            return False
        if not point.on_court_plane:
            logger.warning("Rejected calibration point off the court plane (z=%.3f)", point.world.z)
            return False
        self._points.append(point)
        self._notify(self.snapshot())
        return True

    def set_points(self, points: Sequence[CalibrationPoint]) -> bool:
        if not self._check_mutable():
            return False
        if any(not p.on_court_plane for p in points):
            logger.warning("Rejected calibration points off the court plane")
            return False
        self._points = list(points)
        self._notify(self.snapshot())
        return True

    def remove_point(self, index: int) -> bool:
        if not self._check_mutable():
            return False
        if not 0 <= index < len(self._points):
            logger.warning("No calibration point at index %d", index)
            return False
        del self._points[index]
        self._notify(self.snapshot())
        return True

    def add_line(self, line: LineCorrespondence) -> bool:
        if not self._check_mutable():
            return False
        if line.world_start.z != 0.0 or line.world_end.z != 0.0:
            logger.warning("Rejected line correspondence off the court plane")
            return False
        self._lines.append(line)
        self._notify(self.snapshot())
        return True

    def remove_line(self, index: int) -> bool:
        if not self._check_mutable():
            return False
        if not 0 <= index < len(self._lines):
            logger.warning("No line correspondence at index %d", index)
            return False
        del self._lines[index]
        self._notify(self.snapshot())
        return True

    def set_court_dimensions(self, dimensions: CourtDimensions) -> bool:
        if not self._check_mutable():
            return False
        if not dimensions.is_valid():
            logger.warning("Rejected invalid court dimensions: %s", dimensions)
            return False
        self._court = dimensions
        self._notify(self.snapshot())
        return True

    def set_image_size(self, width_px: int, height_px: int) -> bool:
        if not all(math.isfinite(v) and v > 0 for v in (width_px, height_px)):
            logger.warning("Rejected invalid image size: %sx%s", width_px, height_px)
            return False
        self._image_size = (int(width_px), int(height_px))
        return True

    # -- calibration -------------------------------------------------------

    def calibrate(self) -> bool:
        """
        Fit, decompose and validate. Returns False (never raises) when the
        correspondences are insufficient or degenerate.
        """
        if self._frozen:
            logger.debug("Calibration already finalized")
            return self.is_calibrated
        if not self.can_calibrate():
            logger.error(
                "Calibration requires >= %d points or >= %d lines (got %d points, %d lines)",
                MIN_POINT_CORRESPONDENCES,
                MIN_LINE_CORRESPONDENCES,
                len(self._points),
                len(self._lines),
            )
            return False

        if self._lines:
            homography = self._estimator.estimate_from_lines(
                self._lines, self._points, image_size=self._image_size
            )
        else:
            homography = self._estimator.estimate(self._points, image_size=self._image_size)
        if homography is None:
            logger.error("Failed to calculate homography matrix")
            return False

        self._apply_calibration(homography)
        self._calibration_error = self._metrics.reprojection_error
        self._last_calibration_time = self._clock()

        logger.debug(
            "Calibration completed: reprojection_error_px=%.4f, confidence=%.3f, num_points=%d",
            self._calibration_error,
            self._metrics.overall_confidence,
            len(self._points) + 2 * len(self._lines),
        )
        self._notify(self.snapshot())
        return True

    def _apply_calibration(self, homography: Homography) -> None:
        width, height = self._image_size
        self._homography = homography
        self._camera = self._decomposer.decompose(homography, width, height)
        self._metrics = self._validator.validate(
            homography, self._points, self._lines, image_size=self._image_size
        )
        self._transformer.update(homography)
        self._frozen = True

    def validate(self) -> float:
        """Current reprojection error, or inf when not calibrated."""
        if not self.is_calibrated:
            return math.inf
        correspondences = list(self._points)
        for line in self._lines:
            correspondences.extend(line.endpoints())
        return self._validator.reprojection_error(correspondences, self._homography)

    def reset(self) -> None:
        self._clear()
        self._notify(self.snapshot())

    def _clear(self) -> None:
        self._points = []
        self._lines = []
        self._homography = None
        self._camera = None
        self._metrics = None
        self._calibration_error = 0.0
        self._last_calibration_time = None
        self._frozen = False
        self._transformer.clear()

    # -- persistence -------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        matrix, inverse = (None, None)
        if self._homography is not None:
            matrix, inverse = self._homography.as_lists()
        return {
            "isCalibrated": self.is_calibrated,
            "calibrationPoints": [p.as_dict() for p in self._points],
            "homographyMatrix": matrix,
            "inverseHomographyMatrix": inverse,
            "courtDimensions": self._court.as_dict(),
            "calibrationError": self._calibration_error,
            "lastCalibrationTime": self._last_calibration_time,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    def _restore(self, data: dict[str, Any]) -> None:
        """Parse everything first so a failure leaves the session untouched."""
        if not isinstance(data, dict):
            raise CalibrationError("Calibration data must be a JSON object")
        missing = [k for k in _STATE_KEYS if k not in data]
        if missing:
            raise CalibrationError(f"Calibration data is missing keys: {missing}")

        try:
            points = [CalibrationPoint.from_dict(p) for p in data["calibrationPoints"] or []]
            court = CourtDimensions.from_dict(data["courtDimensions"])
            error = float(data["calibrationError"])
            last_time = data["lastCalibrationTime"]
            last_time = None if last_time is None else float(last_time)
        except (KeyError, TypeError, ValueError) as exc:
            raise CalibrationError(f"Malformed calibration data: {exc}") from exc

        homography = None
        if data["homographyMatrix"] is not None:
            try:
                matrix = np.asarray(data["homographyMatrix"], dtype=float)
                inverse = data["inverseHomographyMatrix"]
                inverse = None if inverse is None else np.asarray(inverse, dtype=float)
            except (TypeError, ValueError) as exc:
                raise CalibrationError(f"Malformed homography matrix: {exc}") from exc
            homography = Homography.from_matrices(matrix, inverse)
            if homography is None:
                raise CalibrationError("Stored homography matrix is invalid")

        is_calibrated = bool(data["isCalibrated"])
        if is_calibrated and homography is None:
            raise CalibrationError("Calibration is flagged as calibrated but has no homography")

        self._clear()
        self._points = points
        self._court = court
        if is_calibrated:
            self._apply_calibration(homography)
        else:
            self._homography = homography
        self._calibration_error = error
        self._last_calibration_time = last_time

    @classmethod
    def from_json(cls, text: str, profile: SportProfile | None = None, **kwargs: Any) -> "CalibrationSession":
        """Build a session from persisted JSON; raises CalibrationError on corrupt data."""
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise CalibrationError(f"Calibration data is not valid JSON: {exc}") from exc
        session = cls(profile=profile, **kwargs)
        session._restore(data)
        return session

    def load(self, text: str) -> bool:
        """Restore from JSON; on corrupt data fall back to the uncalibrated state."""
        try:
            data = json.loads(text)
            self._restore(data)
        except (json.JSONDecodeError, CalibrationError) as exc:
            logger.error("Failed to load calibration data: %s", exc)
            self.reset()
            return False
        self._notify(self.snapshot())
        return True


def save_calibration(session: CalibrationSession, path: str) -> None:
    """Persist calibration state as JSON for later reuse."""
    Path(path).write_text(json.dumps(session.to_dict(), indent=2), encoding="utf-8")


def load_calibration(path: str, profile: SportProfile | None = None) -> CalibrationSession:
    """Load calibration state from JSON; raises CalibrationError on corrupt data."""
    return CalibrationSession.from_json(Path(path).read_text(encoding="utf-8"), profile=profile)
