import json
import logging
import math
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, fields, replace
from typing import Any

import cv2
import numpy as np

from courtkinematics.geometry.profiles import BADMINTON
from courtkinematics.geometry.types import CourtDimensions, Point2D, Point3D
from courtkinematics.observers import Observable

from .types import GridF, HeatmapData, HeatmapError, HeatmapSettings, PositionSample
from .zones import COURT_ZONES, classify_normalized

logger = logging.getLogger(__name__)

SPEED_EMA_KEEP = 0.9
DECAY_PERIOD_S = 60.0
DEFAULT_REGENERATE_EVERY = 50
# Beyond this multiple of the court size a world position is treated as bogus.
OUT_OF_RANGE_FACTOR = 2.0


def _wall_clock_ms() -> float:
    return time.time() * 1000.0


def _clamp(value: float, lo: float, hi: float) -> float:
    if not math.isfinite(value):
        return lo
    return min(max(value, lo), hi)


class GaussianKernelCache:
    """Normalized 1-D Gaussian kernels keyed by integer radius (sigma = radius)."""

    def __init__(self) -> None:
        self._kernels: dict[int, np.ndarray] = {}

    def __len__(self) -> int:
        return len(self._kernels)

    def get(self, radius: float) -> tuple[int, np.ndarray]:
        r = max(1, int(round(radius)))
        kernel = self._kernels.get(r)
        if kernel is None:
            offsets = np.arange(-r, r + 1, dtype=np.float64)
            sigma = float(r)
            kernel = np.exp(-(offsets**2) / (2.0 * sigma * sigma))
            kernel /= kernel.sum()
            self._kernels[r] = kernel
        return r, kernel

    def clear(self) -> None:
        self._kernels.clear()


@dataclass(slots=True)
class HeatmapSnapshot:
    is_tracking: bool
    sample_count: int
    current_position: Point3D | None
    total_distance: float
    average_speed: float
    most_visited_zone: str | None


class PositionHeatmapAggregator(Observable[HeatmapSnapshot]):
    """
    Accumulates court positions of one subject and renders an occupancy
    heatmap with zone dwell-time statistics.

    Positions are court-centered meters (origin at the court center). They
    are clamped into the court before being stored.
    """

    def __init__(
        self,
        court: CourtDimensions | None = None,
        settings: HeatmapSettings | None = None,
        clock: Callable[[], float] = _wall_clock_ms,
    ):
        super().__init__()
        self._court = court if court is not None and court.is_valid() else BADMINTON.court_dimensions
        self._settings = (settings or HeatmapSettings()).normalized()
        self._clock = clock
        self._kernels = GaussianKernelCache()

        self._is_tracking = False
        self._history: deque[PositionSample] = deque()
        self._current_position: Point3D | None = None
        self._last_position: Point3D | None = None
        self._last_sample_time: float | None = None
        self._total_distance = 0.0
        self._average_speed = 0.0
        self._time_in_zones: dict[str, float] = {}
        self._most_visited_zone: str | None = None
        self._heatmap: HeatmapData | None = None
        self._samples_since_heatmap = 0
        self._init_zones()

    # -- state -------------------------------------------------------------

    @property
    def is_tracking(self) -> bool:
        return self._is_tracking

    @property
    def settings(self) -> HeatmapSettings:
        return self._settings

    @property
    def court_dimensions(self) -> CourtDimensions:
        return self._court

    @property
    def position_history(self) -> tuple[PositionSample, ...]:
        return tuple(self._history)

    @property
    def current_position(self) -> Point3D | None:
        return self._current_position

    @property
    def heatmap(self) -> HeatmapData | None:
        return self._heatmap

    @property
    def total_distance(self) -> float:
        return self._total_distance

    @property
    def average_speed(self) -> float:
        return self._average_speed

    @property
    def time_in_zones(self) -> dict[str, float]:
        return dict(self._time_in_zones)

    @property
    def most_visited_zone(self) -> str | None:
        return self._most_visited_zone

    @property
    def samples_since_heatmap(self) -> int:
        return self._samples_since_heatmap

    @property
    def kernel_cache(self) -> GaussianKernelCache:
        return self._kernels

    def should_regenerate(self, every: int = DEFAULT_REGENERATE_EVERY) -> bool:
        return self._samples_since_heatmap >= max(1, every)

    def snapshot(self) -> HeatmapSnapshot:
        return HeatmapSnapshot(
            is_tracking=self._is_tracking,
            sample_count=len(self._history),
            current_position=self._current_position,
            total_distance=self._total_distance,
            average_speed=self._average_speed,
            most_visited_zone=self._most_visited_zone,
        )

    # -- lifecycle ---------------------------------------------------------

    def _init_zones(self) -> None:
        self._time_in_zones = {zone: 0.0 for zone in COURT_ZONES}
        self._most_visited_zone = None

    def start_tracking(self) -> None:
        self._is_tracking = True
        self._init_zones()
        self._last_position = None
        self._last_sample_time = None
        logger.debug("Position tracking started")
        self._notify(self.snapshot())

    def stop_tracking(self) -> None:
        self._is_tracking = False
        logger.debug("Position tracking stopped")
        self._notify(self.snapshot())

    def clear_history(self) -> None:
        self._history.clear()
        self._current_position = None
        self._last_position = None
        self._last_sample_time = None
        self._total_distance = 0.0
        self._average_speed = 0.0
        self._heatmap = None
        self._samples_since_heatmap = 0
        self._init_zones()
        logger.debug("Position history cleared")
        self._notify(self.snapshot())

    def reset(self) -> None:
        """Clear history, stop tracking and drop cached kernels."""
        self._is_tracking = False
        self._kernels.clear()
        self.clear_history()

    def update_settings(self, **changes: Any) -> HeatmapSettings:
        """Apply snake_case field overrides; values are clamped into range."""
        known = {f.name for f in fields(HeatmapSettings)}
        unknown = set(changes) - known
        if unknown:
            logger.warning("Ignoring unknown heatmap settings: %s", ", ".join(sorted(unknown)))
        accepted = {k: v for k, v in changes.items() if k in known}
        self._settings = replace(self._settings, **accepted).normalized()
        self._trim_history()
        return self._settings

    def set_court_dimensions(self, court: CourtDimensions) -> bool:
        if not court.is_valid():
            logger.warning("Ignoring invalid court dimensions %r", court)
            return False
        self._court = court
        return True

    # -- coordinates -------------------------------------------------------

    def _to_court_space(self, point: Point3D) -> tuple[float, float]:
        """Court-centered meters to corner-origin meters, clamped into the court."""
        w, l = self._court.width_m, self._court.length_m
        return _clamp(point.x + w / 2, 0.0, w), _clamp(point.y + l / 2, 0.0, l)

    def get_zone_name(self, x: float, y: float) -> str:
        """Zone for a court-centered position; positions off the court are out of bounds."""
        w, l = self._court.width_m, self._court.length_m
        return classify_normalized((x + w / 2) / w, (y + l / 2) / l)

    def _resolve_position(self, world: Point3D | None, image: Point2D) -> Point3D:
        w, l = self._court.width_m, self._court.length_m
        fallback = Point3D(image.x * w - w / 2, image.y * l - l / 2, 0.0)
        if world is None:
            return fallback
        if (
            not math.isfinite(world.x)
            or not math.isfinite(world.y)
            or abs(world.x) > w * OUT_OF_RANGE_FACTOR
            or abs(world.y) > l * OUT_OF_RANGE_FACTOR
        ):
            logger.info("World position %r out of range; using normalized image position", world)
            return fallback
        return world

    # -- sampling ----------------------------------------------------------

    def add_position_sample(
        self,
        world: Point3D | None,
        image: Point2D,
        confidence: float,
        frame: int,
        timestamp: float | None = None,
    ) -> bool:
        """
        Feed one detection. Returns True when the sample entered the history.

        Distance and average speed are updated on every accepted detection;
        history and zone dwell time only once ``sample_interval_ms`` has
        passed since the last recorded sample.
        """
        if not self._is_tracking:
            return False
        if not math.isfinite(confidence) or confidence < self._settings.min_confidence:
            return False

        now = self._clock() if timestamp is None else float(timestamp)
        interval = self._settings.sample_interval_ms

        resolved = self._resolve_position(world, image)
        cx, cy = self._to_court_space(resolved)
        w, l = self._court.width_m, self._court.length_m
        z = resolved.z if math.isfinite(resolved.z) else 0.0
        position = Point3D(cx - w / 2, cy - l / 2, z)
        if not (math.isfinite(position.x) and math.isfinite(position.y)):
            logger.warning("Skipping sample with invalid position %r", position)
            return False

        self._current_position = position

        elapsed = 0.0 if self._last_sample_time is None else now - self._last_sample_time
        delta_s = elapsed / 1000.0 if elapsed > 0 else interval / 1000.0

        previous = self._last_position
        if previous is not None:
            distance = math.sqrt(
                (position.x - previous.x) ** 2
                + (position.y - previous.y) ** 2
                + (position.z - previous.z) ** 2
            )
            self._total_distance += distance
            if delta_s > 0:
                speed = distance / delta_s
                self._average_speed = SPEED_EMA_KEEP * self._average_speed + (
                    1.0 - SPEED_EMA_KEEP
                ) * speed
        self._last_position = position

        if interval > 0 and self._last_sample_time is not None and elapsed < interval:
            self._notify(self.snapshot())
            return False

        zone = self.get_zone_name(resolved.x, resolved.y)
        self._time_in_zones[zone] = self._time_in_zones.get(zone, 0.0) + max(delta_s, 0.0)
        self._update_most_visited()

        self._history.append(
            PositionSample(
                world_position=position,
                image_position=image,
                timestamp=now,
                frame_number=frame,
                confidence=float(confidence),
            )
        )
        self._trim_history()
        self._samples_since_heatmap += 1
        self._last_sample_time = now

        if len(self._history) % 30 == 0:
            logger.debug(
                "%d samples, distance=%.2f m, avg speed=%.2f m/s, zone=%s",
                len(self._history),
                self._total_distance,
                self._average_speed,
                zone,
            )
        self._notify(self.snapshot())
        return True

    def _trim_history(self) -> None:
        while len(self._history) > self._settings.max_history_size:
            self._history.popleft()

    def _update_most_visited(self) -> None:
        best, best_time = None, 0.0
        for zone, seconds in self._time_in_zones.items():
            if seconds > best_time:
                best, best_time = zone, seconds
        self._most_visited_zone = best

    # -- rendering ---------------------------------------------------------

    def _smooth(self, grid: GridF) -> GridF:
        radius = self._settings.smoothing_radius
        if radius <= 0 or not math.isfinite(radius):
            return grid
        _, kernel = self._kernels.get(radius)
        return cv2.sepFilter2D(
            grid, cv2.CV_64F, kernel, kernel, borderType=cv2.BORDER_CONSTANT
        )

    def generate_heatmap(self, now: float | None = None) -> HeatmapData:
        res = self._settings.grid_resolution
        w, l = self._court.width_m, self._court.length_m
        grid_w = max(1, math.ceil(w * res))
        grid_h = max(1, math.ceil(l * res))
        grid = np.zeros((grid_h, grid_w), dtype=np.float64)

        now = self._clock() if now is None else float(now)
        decay = self._settings.decay_factor
        for sample in self._history:
            weight = 1.0
            if decay < 1.0:
                age_s = max(0.0, (now - sample.timestamp) / 1000.0)
                weight = decay ** (age_s / DECAY_PERIOD_S)
            if not math.isfinite(weight):
                continue
            cx, cy = self._to_court_space(sample.world_position)
            gx = min(int(math.floor(cx * res)), grid_w - 1)
            gy = min(int(math.floor(cy * res)), grid_h - 1)
            grid[gy, gx] += weight

        counts = self._smooth(grid)
        counts = np.where(np.isfinite(counts), counts, 0.0)
        max_count = float(counts.max()) if counts.size else 0.0
        intensities = counts / max_count if max_count > 0 else np.zeros_like(counts)

        self._heatmap = HeatmapData(
            counts=counts,
            intensities=intensities,
            max_count=max_count,
            total_samples=len(self._history),
            court_dimensions=self._court,
        )
        self._samples_since_heatmap = 0
        logger.debug(
            "Heatmap regenerated: %dx%d cells from %d samples", grid_w, grid_h, len(self._history)
        )
        return self._heatmap

    # -- persistence -------------------------------------------------------

    def export_json(self) -> str:
        return json.dumps(
            {
                "settings": self._settings.as_dict(),
                "positionHistory": [s.as_dict() for s in self._history],
                "statistics": {
                    "totalDistance": self._total_distance,
                    "averageSpeed": self._average_speed,
                    "timeInZones": [[zone, t] for zone, t in self._time_in_zones.items()],
                    "mostVisitedZone": self._most_visited_zone,
                },
                "heatmapData": None if self._heatmap is None else self._heatmap.as_dict(),
            }
        )

    def import_json(self, text: str) -> None:
        """
        Replace settings, history and statistics with an export.

        Missing sections keep their current values. Raises HeatmapError on
        malformed input, in which case nothing is modified.
        """
        try:
            data = json.loads(text)
            if not isinstance(data, dict):
                raise TypeError("top-level value must be an object")
            settings = self._settings
            if data.get("settings"):
                settings = self._settings.merged(data["settings"])
            history = None
            if data.get("positionHistory") is not None:
                history = [PositionSample.from_dict(s) for s in data["positionHistory"]]
            stats = data.get("statistics")
            zones = None
            if stats:
                total = float(stats.get("totalDistance") or 0.0)
                speed = float(stats.get("averageSpeed") or 0.0)
                if stats.get("timeInZones") is not None:
                    zones = {str(zone): float(t) for zone, t in stats["timeInZones"]}
                most = stats.get("mostVisitedZone") or None
            heatmap = None
            if data.get("heatmapData"):
                heatmap = HeatmapData.from_dict(data["heatmapData"])
        except (ValueError, TypeError, KeyError, AttributeError) as exc:
            raise HeatmapError(f"Corrupt heatmap export: {exc}") from exc

        self._settings = settings
        if history is not None:
            self._history = deque(history)
            self._trim_history()
        if stats:
            self._total_distance = total
            self._average_speed = speed
            if zones is not None:
                self._time_in_zones = zones
            self._most_visited_zone = most
        if heatmap is not None:
            self._heatmap = heatmap
        self._notify(self.snapshot())

    def import_data(self, text: str) -> bool:
        try:
            self.import_json(text)
        except HeatmapError:
            logger.error("Failed to import position tracking data", exc_info=True)
            self.clear_history()
            return False
        return True
