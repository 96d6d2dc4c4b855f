import json
import math

import numpy as np
import pytest

from courtkinematics.geometry import CourtDimensions, Point2D, Point3D
from courtkinematics.heatmap import (
    COURT_ZONES,
    OUT_OF_BOUNDS,
    GaussianKernelCache,
    HeatmapError,
    HeatmapSettings,
    PositionHeatmapAggregator,
    classify_normalized,
)

CENTER_IMAGE = Point2D(0.5, 0.5)


def _tracking(**settings) -> PositionHeatmapAggregator:
    agg = PositionHeatmapAggregator(settings=HeatmapSettings(**settings), clock=lambda: 0.0)
    agg.start_tracking()
    return agg


def _feed(agg, positions, step_ms=100.0, confidence=0.9):
    for i, (x, y) in enumerate(positions):
        agg.add_position_sample(Point3D(x, y, 0.0), CENTER_IMAGE, confidence, i, timestamp=i * step_ms)


def test_settings_are_clamped():
    s = HeatmapSettings(
        grid_resolution=0.1,
        smoothing_radius=-2.0,
        min_confidence=1.5,
        sample_interval_ms=-10.0,
        max_history_size=0,
        decay_factor=float("nan"),
    ).normalized()
    assert s.grid_resolution == 0.5
    assert s.smoothing_radius == 0.0
    assert s.min_confidence == 1.0
    assert s.sample_interval_ms == 0.0
    assert s.max_history_size == 1
    assert s.decay_factor == 1.0


def test_settings_from_camel_case():
    s = HeatmapSettings.from_dict({"gridResolution": 2, "maxHistorySize": 99.7, "decayFactor": 3})
    assert s.grid_resolution == 2.0
    assert s.max_history_size == 99
    assert s.decay_factor == 1.0
    assert s.as_dict()["gridResolution"] == 2.0


def test_samples_ignored_when_not_tracking_or_low_confidence():
    agg = PositionHeatmapAggregator()
    assert not agg.add_position_sample(Point3D(0, 0), CENTER_IMAGE, 0.9, 0, timestamp=0)
    agg.start_tracking()
    assert not agg.add_position_sample(Point3D(0, 0), CENTER_IMAGE, 0.2, 0, timestamp=0)
    assert not agg.add_position_sample(Point3D(0, 0), CENTER_IMAGE, float("nan"), 0, timestamp=0)
    assert agg.current_position is None
    assert agg.position_history == ()


def test_sample_interval_gates_history_but_not_distance():
    agg = _tracking(sample_interval_ms=50.0)
    assert agg.add_position_sample(Point3D(0, 0), CENTER_IMAGE, 0.9, 0, timestamp=0)
    assert not agg.add_position_sample(Point3D(1, 0), CENTER_IMAGE, 0.9, 1, timestamp=10)
    assert agg.add_position_sample(Point3D(2, 0), CENTER_IMAGE, 0.9, 2, timestamp=60)
    assert len(agg.position_history) == 2
    assert agg.total_distance == pytest.approx(2.0)
    assert agg.current_position.x == pytest.approx(2.0)
    assert agg.current_position.y == pytest.approx(0.0)


def test_average_speed_is_exponential_moving_average():
    agg = _tracking(sample_interval_ms=0.0)
    _feed(agg, [(0.0, 0.0), (1.0, 0.0)], step_ms=1000.0)
    assert agg.average_speed == pytest.approx(0.1)


def test_world_positions_are_clamped_into_court():
    agg = _tracking()
    agg.add_position_sample(Point3D(4.0, -9.0), CENTER_IMAGE, 0.9, 0, timestamp=0)
    assert agg.current_position.x == pytest.approx(3.05)
    assert agg.current_position.y == pytest.approx(-6.7)


def test_bogus_world_positions_fall_back_to_image():
    agg = _tracking(sample_interval_ms=0.0)
    agg.add_position_sample(Point3D(float("nan"), 0.0), Point2D(0.25, 0.75), 0.9, 0, timestamp=0)
    assert agg.current_position.x == pytest.approx(0.25 * 6.1 - 3.05)
    assert agg.current_position.y == pytest.approx(0.75 * 13.4 - 6.7)

    agg.add_position_sample(Point3D(100.0, 0.0), Point2D(0.5, 0.5), 0.9, 1, timestamp=100)
    assert agg.current_position.x == pytest.approx(0.0)

    agg.add_position_sample(None, Point2D(1.0, 0.0), 0.9, 2, timestamp=200)
    assert agg.current_position.x == pytest.approx(3.05)


def test_history_is_capped_fifo():
    agg = _tracking(max_history_size=3, sample_interval_ms=0.0)
    _feed(agg, [(0.0, float(i)) for i in range(6)])
    frames = [s.frame_number for s in agg.position_history]
    assert frames == [3, 4, 5]
    agg.update_settings(max_history_size=2)
    assert [s.frame_number for s in agg.position_history] == [4, 5]


def test_grid_dimensions():
    heatmap = _tracking().generate_heatmap(now=0.0)
    assert heatmap.grid_width == math.ceil(6.1 * 4)
    assert heatmap.grid_height == math.ceil(13.4 * 4)
    assert heatmap.max_count == 0.0
    assert np.all(heatmap.intensities == 0.0)


def test_mass_is_conserved_without_smoothing_or_decay():
    agg = _tracking(smoothing_radius=0.0, sample_interval_ms=0.0)
    rng = np.random.default_rng(7)
    positions = rng.uniform([-3.05, -6.7], [3.05, 6.7], size=(200, 2))
    _feed(agg, positions.tolist())
    # Corners land in the last row/column.
    _feed(agg, [(3.05, 6.7), (-3.05, -6.7)])
    heatmap = agg.generate_heatmap(now=0.0)
    assert heatmap.counts.sum() == pytest.approx(len(agg.position_history))
    assert heatmap.total_samples == len(agg.position_history)


def test_intensities_are_normalized():
    agg = _tracking(sample_interval_ms=0.0)
    _feed(agg, [(0.0, 0.0)] * 5 + [(2.0, 4.0)] * 2)
    heatmap = agg.generate_heatmap(now=0.0)
    assert heatmap.intensities.max() == pytest.approx(1.0)
    assert heatmap.intensities.min() >= 0.0
    np.testing.assert_allclose(heatmap.intensities, heatmap.counts / heatmap.max_count)


def test_smoothing_spreads_symmetrically():
    agg = _tracking(sample_interval_ms=0.0, smoothing_radius=1.0)
    agg.add_position_sample(Point3D(0.0, 0.0), CENTER_IMAGE, 0.9, 0, timestamp=0)
    heatmap = agg.generate_heatmap(now=0.0)
    gy, gx = np.unravel_index(np.argmax(heatmap.counts), heatmap.counts.shape)
    center = heatmap.counts[gy, gx]
    assert center < 1.0
    assert heatmap.counts[gy, gx - 1] == pytest.approx(heatmap.counts[gy, gx + 1])
    assert heatmap.counts[gy - 1, gx] == pytest.approx(heatmap.counts[gy + 1, gx])
    assert heatmap.counts.sum() == pytest.approx(1.0)


def test_time_decay_weights_old_samples():
    agg = _tracking(smoothing_radius=0.0, sample_interval_ms=0.0, decay_factor=0.5)
    agg.add_position_sample(Point3D(-2.0, -5.0), CENTER_IMAGE, 0.9, 0, timestamp=0.0)
    agg.add_position_sample(Point3D(2.0, 5.0), CENTER_IMAGE, 0.9, 1, timestamp=60_000.0)
    heatmap = agg.generate_heatmap(now=60_000.0)
    assert sorted(heatmap.counts[heatmap.counts > 0].tolist()) == pytest.approx([0.5, 1.0])


def test_zero_decay_tolerates_samples_newer_than_now():
    agg = _tracking(smoothing_radius=0.0, sample_interval_ms=0.0, decay_factor=0.0)
    agg.add_position_sample(Point3D(0.0, 0.0), CENTER_IMAGE, 0.9, 0, timestamp=5000.0)
    heatmap = agg.generate_heatmap(now=0.0)
    assert heatmap.counts.sum() == pytest.approx(1.0)


def test_kernel_cache():
    cache = GaussianKernelCache()
    radius, kernel = cache.get(1.4)
    assert radius == 1
    assert kernel.shape == (3,)
    assert kernel.sum() == pytest.approx(1.0)
    assert cache.get(0.2)[1] is kernel
    assert cache.get(2.6)[0] == 3
    assert len(cache) == 2
    cache.clear()
    assert len(cache) == 0


def test_reset_clears_kernel_cache():
    agg = _tracking(sample_interval_ms=0.0)
    _feed(agg, [(0.0, 0.0)])
    agg.generate_heatmap(now=0.0)
    assert len(agg.kernel_cache) == 1
    agg.reset()
    assert len(agg.kernel_cache) == 0
    assert not agg.is_tracking
    assert agg.position_history == ()


def test_zone_coverage():
    grid = np.linspace(0.0, 1.0, 101)
    for x in grid:
        for y in grid:
            zone = classify_normalized(float(x), float(y))
            assert zone in COURT_ZONES
            (x_lo, x_hi), (y_lo, y_hi) = COURT_ZONES[zone]
            assert x_lo <= x <= x_hi and y_lo <= y <= y_hi
    for x, y in [(-0.01, 0.5), (0.5, 1.01), (2.0, 2.0), (float("nan"), 0.5)]:
        assert classify_normalized(x, y) == OUT_OF_BOUNDS
    assert len(COURT_ZONES) == 9


def test_zone_boundaries_are_half_open():
    assert classify_normalized(0.33, 0.5) == "mid-center"
    assert classify_normalized(0.0, 0.0) == "front-left"
    assert classify_normalized(1.0, 1.0) == "back-right"
    assert classify_normalized(0.67, 0.7) == "back-right"


def test_get_zone_name_on_court_coordinates():
    agg = PositionHeatmapAggregator()
    assert agg.get_zone_name(-3.0, -6.5) == "front-left"
    assert agg.get_zone_name(0.0, 6.0) == "back-center"
    assert agg.get_zone_name(10.0, 0.0) == OUT_OF_BOUNDS


def test_time_in_zones_and_most_visited():
    agg = _tracking(sample_interval_ms=0.0)
    _feed(agg, [(-3.0, -6.0), (-3.0, -6.0), (2.5, 6.0)], step_ms=500.0)
    zones = agg.time_in_zones
    assert set(COURT_ZONES) <= set(zones)
    assert agg.most_visited_zone == "front-left"
    assert zones["back-right"] == pytest.approx(0.5)


def test_off_court_samples_count_as_out_of_bounds():
    agg = _tracking(sample_interval_ms=0.0)
    _feed(agg, [(4.0, 0.0), (4.0, 0.0)], step_ms=500.0)
    assert agg.current_position.x == pytest.approx(3.05)
    assert agg.time_in_zones[OUT_OF_BOUNDS] == pytest.approx(0.5)


def test_should_regenerate_every_fifty_samples():
    agg = _tracking(sample_interval_ms=0.0)
    _feed(agg, [(0.0, 0.0)] * 49)
    assert not agg.should_regenerate()
    _feed(agg, [(0.0, 0.0)])
    assert agg.should_regenerate()
    agg.generate_heatmap(now=0.0)
    assert agg.samples_since_heatmap == 0


def test_export_import_round_trip():
    agg = _tracking(sample_interval_ms=0.0, grid_resolution=2.0)
    _feed(agg, [(0.0, 0.0), (1.0, 1.0), (-1.0, 2.0)])
    agg.generate_heatmap(now=0.0)
    text = agg.export_json()

    data = json.loads(text)
    assert set(data) == {"settings", "positionHistory", "statistics", "heatmapData"}
    assert set(data["statistics"]) == {"totalDistance", "averageSpeed", "timeInZones", "mostVisitedZone"}
    assert all(len(entry) == 2 for entry in data["statistics"]["timeInZones"])

    other = PositionHeatmapAggregator()
    assert other.import_data(text)
    assert other.settings.grid_resolution == 2.0
    assert other.position_history == agg.position_history
    assert other.total_distance == pytest.approx(agg.total_distance)
    assert other.time_in_zones == agg.time_in_zones
    assert other.most_visited_zone == agg.most_visited_zone
    np.testing.assert_allclose(other.heatmap.counts, agg.heatmap.counts)


def _heatmap_data(x, y):
    return {
        "heatmapData": {
            "cells": [[{"x": x, "y": y, "count": 1.0, "intensity": 1.0}]],
            "maxCount": 1.0,
            "totalSamples": 1,
            "gridWidth": 1,
            "gridHeight": 1,
            "courtDimensions": {"length": 13.4, "width": 6.1},
        }
    }


@pytest.mark.parametrize(
    "text",
    [
        "{nope",
        "[1, 2]",
        json.dumps({"positionHistory": [{"timestamp": 1}]}),
        json.dumps(_heatmap_data(99, 0)),
        json.dumps(_heatmap_data(0, -1)),
    ],
)
def test_import_corrupt_data(text):
    agg = _tracking(sample_interval_ms=0.0)
    _feed(agg, [(0.0, 0.0)])
    with pytest.raises(HeatmapError):
        agg.import_json(text)
    assert len(agg.position_history) == 1

    assert not agg.import_data(text)
    assert agg.position_history == ()


def test_custom_court_dimensions():
    agg = PositionHeatmapAggregator(court=CourtDimensions(23.77, 8.23))
    assert agg.generate_heatmap(now=0.0).grid_width == math.ceil(8.23 * 4)
    assert not agg.set_court_dimensions(CourtDimensions(0.0, 1.0))


def test_unknown_setting_is_ignored(caplog):
    agg = PositionHeatmapAggregator()
    agg.update_settings(grid_resolution=8.0, colour="red")
    assert agg.settings.grid_resolution == 8.0
    assert "colour" in caplog.text
