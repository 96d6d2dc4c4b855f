import enum
import logging
import math
from collections import deque
from collections.abc import Sequence
from typing import Any

from courtkinematics.geometry.profiles import BADMINTON, SportProfile
from courtkinematics.observers import Observable

from .landmarks import VISIBILITY_THRESHOLD, center_of_gravity_height, center_of_mass
from .types import (
    ComprehensiveSpeedMetrics,
    Landmark,
    PoseLandmark,
    SpeedCalibrationSettings,
    SpeedEstimatorConfig,
    SpeedSample,
    Vector2D,
    Vector3D,
    as_landmarks,
)

logger = logging.getLogger(__name__)

MIN_DELTA_TIME_S = 1e-6
MIN_SCALING_FACTOR = 0.1
REFERENCE_PIXELS_PER_METER = 100.0
# Fraction of the frame a standing player / the court length is assumed to span.
PLAYER_FRAME_FRACTION = 0.7
COURT_FRAME_FRACTION = 0.8
MIN_REALISTIC_COG_HEIGHT_M = 0.5
DEFAULT_PERSON_HEIGHT_M = 1.7
ACCURACY_PER_MODE = 50.0


class TrackingState(enum.Enum):
    NO_HISTORY = "no_history"
    TRACKING = "tracking"


def _valid_length(value: float) -> bool:
    return isinstance(value, (int, float)) and math.isfinite(value) and value > 0


class SpeedEstimator(Observable[ComprehensiveSpeedMetrics]):
    """
    Per-frame kinematics for a single tracked subject.

    Positions come from normalized pose landmarks and are converted to
    meters with a heuristic scale derived from the player's height and/or
    the court length. When detector world landmarks (already in meters)
    are present in consecutive frames they are used directly.
    """

    def __init__(
        self,
        config: SpeedEstimatorConfig | None = None,
        calibration: SpeedCalibrationSettings | None = None,
    ):
        super().__init__()
        self.config = config or SpeedEstimatorConfig()
        self.config.validate()
        self.calibration = calibration or SpeedCalibrationSettings()
        self._samples: deque[SpeedSample] = deque(maxlen=self.config.smoothing_window)
        self._current_speed = 0.0
        self._state = TrackingState.NO_HISTORY
        self._prev_landmarks: list[Landmark] = []
        self._prev_world: list[Landmark] = []
        self._prev_time = 0.0
        self._metrics = ComprehensiveSpeedMetrics()
        self._update_calibration_status()

    # -- state -------------------------------------------------------------

    @property
    def state(self) -> TrackingState:
        return self._state

    @property
    def metrics(self) -> ComprehensiveSpeedMetrics:
        return self._metrics

    @property
    def samples(self) -> tuple[SpeedSample, ...]:
        return tuple(self._samples)

    @property
    def current_speed(self) -> float:
        return self._current_speed

    @property
    def average_speed(self) -> float:
        if not self._samples:
            return 0.0
        return sum(s.value for s in self._samples) / len(self._samples)

    # -- scale -------------------------------------------------------------

    @property
    def pixels_per_meter(self) -> float:
        """Effective pixels-per-meter from the active calibration modes."""
        cal = self.calibration
        ppm = cal.pixels_per_meter
        height_ppm = None
        if cal.use_height_calibration:
            height_ppm = (self.config.video_height_px * PLAYER_FRAME_FRACTION) / (
                cal.player_height_cm / 100.0
            )
            ppm = height_ppm
        if cal.use_court_calibration:
            court_ppm = (self.config.video_width_px * COURT_FRAME_FRACTION) / cal.court_length_m
            ppm = court_ppm if height_ppm is None else (height_ppm + court_ppm) / 2
        return ppm

    def scaling_factor(self) -> float:
        return max(MIN_SCALING_FACTOR, self.pixels_per_meter / REFERENCE_PIXELS_PER_METER)

    def _to_meters(self, point: Vector3D) -> Vector3D:
        """Normalized image coordinates to meters; z uses the width scale."""
        meters_per_px = 1.0 / (REFERENCE_PIXELS_PER_METER * self.scaling_factor())
        return Vector3D(
            point.x * self.config.video_width_px * meters_per_px,
            point.y * self.config.video_height_px * meters_per_px,
            point.z * self.config.video_width_px * meters_per_px,
        )

    # -- updates -----------------------------------------------------------

    def push_sample(self, frame: int, time_s: float, distance_delta: float) -> float:
        """
        Record a displacement since the previous sample and return the speed.

        The first sample in the window always has speed 0.
        """
        if self._samples:
            dt = max(MIN_DELTA_TIME_S, time_s - self._samples[-1].time)
            speed = distance_delta / dt
        else:
            speed = 0.0
        self._record(frame, time_s, speed)
        return speed

    def _record(self, frame: int, time_s: float, speed: float) -> None:
        self._samples.append(SpeedSample(frame=frame, time=time_s, value=speed))
        self._current_speed = speed

    def update(
        self,
        frame: int,
        time_s: float,
        landmarks: Sequence[Any],
        world_landmarks: Sequence[Any] | None = None,
    ) -> ComprehensiveSpeedMetrics:
        lms = as_landmarks(landmarks)
        world = as_landmarks(world_landmarks)

        com = center_of_mass(lms)
        com_normalized = Vector2D(min(max(com.x, 0.0), 1.0), min(max(com.y, 0.0), 1.0))

        velocity = Vector3D()
        general_speed = 0.0
        foot_speed = 0.0
        overall_speed = 0.0

        if self._state is TrackingState.TRACKING and self._prev_landmarks:
            dt = max(MIN_DELTA_TIME_S, time_s - self._prev_time)
            if world and self._prev_world:
                current = center_of_mass(world)
                previous = center_of_mass(self._prev_world)
            else:
                current = self._to_meters(com)
                previous = self._to_meters(center_of_mass(self._prev_landmarks))

            delta = current - previous
            velocity = delta.scaled(1.0 / dt)
            general_speed = delta.horizontal_norm() / dt
            overall_speed = delta.norm() / dt
            foot_speed = self._right_foot_speed(lms, self._prev_landmarks, dt)
            logger.debug(
                "frame %d: dt=%.4fs speed=%.3f m/s (%s)",
                frame,
                dt,
                overall_speed,
                "world" if world and self._prev_world else "scaled",
            )
            self._record(frame, time_s, overall_speed)
        else:
            self._record(frame, time_s, 0.0)

        self._metrics = ComprehensiveSpeedMetrics(
            is_valid=bool(lms),
            speed=overall_speed,
            general_moving_speed=general_speed,
            right_foot_speed=foot_speed,
            center_of_gravity_height=self._cog_height(com, world),
            velocity=velocity,
            center_of_mass=com,
            center_of_mass_normalized=com_normalized,
            current_speed=self._current_speed,
            average_speed=self.average_speed,
            samples=len(self._samples),
            scaling_factor=self.scaling_factor(),
        )

        self._prev_landmarks = lms
        self._prev_world = world
        self._prev_time = time_s
        if lms:
            self._state = TrackingState.TRACKING
        self._notify(self._metrics)
        return self._metrics

    def _right_foot_speed(
        self, current: Sequence[Landmark], previous: Sequence[Landmark], dt: float
    ) -> float:
        idx = PoseLandmark.RIGHT_FOOT_INDEX
        if len(current) <= idx or len(previous) <= idx or dt <= 0:
            return 0.0
        now, before = current[idx], previous[idx]
        for lm in (now, before):
            if lm.visibility is not None and lm.visibility < VISIBILITY_THRESHOLD:
                return 0.0
        a = self._to_meters(Vector3D(now.x, now.y))
        b = self._to_meters(Vector3D(before.x, before.y))
        return math.hypot(a.x - b.x, a.y - b.y) / dt

    def _cog_height(self, com: Vector3D, world: Sequence[Landmark]) -> float:
        if world:
            height = center_of_gravity_height(world)
            if height >= MIN_REALISTIC_COG_HEIGHT_M:
                return height
            logger.warning(
                "World landmark CoG height %.3f m is unrealistic; estimating from image", height
            )
        from_bottom = min(max(1.0 - com.y, 0.0), 1.0)
        if self.calibration.use_height_calibration:
            person_height = self.calibration.player_height_cm / 100.0
        else:
            person_height = DEFAULT_PERSON_HEIGHT_M
        return from_bottom * person_height

    # -- calibration -------------------------------------------------------

    def _update_calibration_status(self) -> None:
        cal = self.calibration
        accuracy = 0.0
        if cal.use_height_calibration:
            accuracy += ACCURACY_PER_MODE
        if cal.use_court_calibration:
            accuracy += ACCURACY_PER_MODE
        cal.calibration_accuracy = accuracy

    def set_player_height(self, height_cm: float) -> bool:
        if not _valid_length(height_cm):
            logger.warning("Invalid player height: %r", height_cm)
            return False
        self.calibration.player_height_cm = float(height_cm)
        self.calibration.use_height_calibration = True
        self._update_calibration_status()
        return True

    def set_court_length(self, length_m: float) -> bool:
        if not _valid_length(length_m):
            logger.warning("Invalid court length: %r", length_m)
            return False
        self.calibration.court_length_m = float(length_m)
        self.calibration.use_court_calibration = True
        self._update_calibration_status()
        return True

    def set_pixels_per_meter(self, pixels_per_meter: float) -> bool:
        """Use a fixed scale instead of the height/court estimates."""
        if not _valid_length(pixels_per_meter):
            logger.warning("Invalid pixels per meter: %r", pixels_per_meter)
            return False
        self.calibration.pixels_per_meter = float(pixels_per_meter)
        self.calibration.use_height_calibration = False
        self.calibration.use_court_calibration = False
        self._update_calibration_status()
        return True

    def update_video_dimensions(self, width: int, height: int) -> bool:
        if not (_valid_length(width) and _valid_length(height)):
            logger.warning("Ignoring invalid video dimensions %rx%r", width, height)
            return False
        self.config.video_width_px = int(width)
        self.config.video_height_px = int(height)
        self._update_calibration_status()
        return True

    def start_court_calibration(self) -> None:
        self.calibration.use_court_calibration = True
        self._update_calibration_status()

    def auto_calibrate(self, profile: SportProfile = BADMINTON) -> None:
        """Calibrate from a sport's typical player height and court length."""
        self.set_player_height(profile.player_height_cm)
        self.set_court_length(profile.court_dimensions.length_m)
        logger.info(
            "Auto-calibrated for %s: height=%.0f cm, court=%.2f m",
            profile.type,
            self.calibration.player_height_cm,
            self.calibration.court_length_m,
        )

    def reset_calibration(self) -> None:
        self.calibration = SpeedCalibrationSettings()
        self._update_calibration_status()

    def reset(self) -> None:
        self._samples.clear()
        self._current_speed = 0.0
        self._state = TrackingState.NO_HISTORY
        self._prev_landmarks = []
        self._prev_world = []
        self._prev_time = 0.0
        self._metrics = ComprehensiveSpeedMetrics()
        self._notify(self._metrics)

    def cleanup(self) -> None:
        """Drop all history and calibration, e.g. when switching projects."""
        self.reset()
        self.reset_calibration()
