"""Tests for the GPS noise filter."""

from __future__ import annotations

import pytest

from tracker.config import FilterConfig
from tracker.core.geo import haversine_m, is_valid_coordinate, offset_m
from tracker.core.geofilter import FixVerdict, GeoFilter


@pytest.fixture
def gf() -> GeoFilter:
    return GeoFilter(FilterConfig())


def test_first_fix_seeds_smoother(gf):
    assert gf.position is None
    assert gf.smooth(45.0, 4.8, 5.0) == (45.0, 4.8)
    assert gf.position == (45.0, 4.8)


def test_accurate_fix_pulls_harder(gf):
    gf.smooth(45.0, 4.8, 5.0)
    tight_lat, _ = gf.smooth(45.001, 4.8, 5.0)

    gf.reset()
    gf.smooth(45.0, 4.8, 5.0)
    loose_lat, _ = gf.smooth(45.001, 4.8, 100.0)

    assert 45.0 < loose_lat < tight_lat < 45.001
    assert tight_lat == pytest.approx(45.0 + 0.42 * 0.001)
    assert loose_lat == pytest.approx(45.0 + 0.20 * 0.001)


def test_weight_interpolates_between_thresholds(gf):
    assert gf.weight_for(10.0) == 0.42
    assert gf.weight_for(20.0) == 0.42
    assert gf.weight_for(40.0) == pytest.approx(0.31)
    assert gf.weight_for(60.0) == 0.20
    assert gf.weight_for(500.0) == 0.20
    assert gf.weight_for(None) == pytest.approx(0.31)


def test_reset_forgets_position(gf):
    gf.smooth(45.0, 4.8)
    gf.reset()
    assert gf.position is None
    assert gf.smooth(46.0, 5.0) == (46.0, 5.0)


def test_jitter_floor_scales_with_accuracy(gf):
    assert gf.min_move_for(None) == 5.0
    assert gf.min_move_for(4.0) == 5.0
    assert gf.min_move_for(30.0) == 15.0


@pytest.mark.parametrize("moved,speed,acc,expected", [
    (1.0, 3.0, 10.0, FixVerdict.JITTER),
    (4.9, None, None, FixVerdict.JITTER),
    (12.0, 20.0, 30.0, FixVerdict.JITTER),
    (20.0, 10.0, 70.0, FixVerdict.POOR_ACCURACY),
    (150.0, 30.0, 5.0, FixVerdict.TELEPORT),
    (150.0, 30.0, 90.0, FixVerdict.TELEPORT),
    (20.0, 1.0, 30.0, FixVerdict.DRIFT),
    (20.0, 1.0, 10.0, FixVerdict.ACCEPT),
    (20.0, None, 30.0, FixVerdict.ACCEPT),
    (50.0, 6.0, 5.0, FixVerdict.ACCEPT),
    (100.0, 36.0, 5.0, FixVerdict.ACCEPT),
])
def test_classify(gf, moved, speed, acc, expected):
    assert gf.classify(moved, speed, acc) is expected
    assert gf.should_accept_for_distance(moved, speed, acc) is (expected is FixVerdict.ACCEPT)


def test_thresholds_come_from_config():
    gf = GeoFilter(FilterConfig(min_move_m=2.0, max_jump_m=500.0))
    assert gf.classify(3.0, 5.0, 2.0) is FixVerdict.ACCEPT
    assert gf.classify(300.0, 100.0, 2.0) is FixVerdict.ACCEPT


# ======= geo helpers =======


def test_haversine_known_distance():
    # Lyon to Paris, roughly 392 km.
    d = haversine_m(45.764043, 4.835659, 48.856613, 2.352222)
    assert d == pytest.approx(392_000, rel=0.01)


def test_offset_round_trips_through_haversine():
    lat, lng = offset_m(45.0, 4.8, 30.0, 40.0)
    assert haversine_m(45.0, 4.8, lat, lng) == pytest.approx(50.0, abs=0.01)


@pytest.mark.parametrize("lat,lng,ok", [
    (0.0, 0.0, True),
    (90.0, 180.0, True),
    (-90.0, -180.0, True),
    (90.1, 0.0, False),
    (0.0, 180.5, False),
    (float("nan"), 0.0, False),
    (0.0, float("-inf"), False),
])
def test_is_valid_coordinate(lat, lng, ok):
    assert is_valid_coordinate(lat, lng) is ok
