"""Unit tests for ble_fingerprint_locator.filters."""

import pytest

from ble_fingerprint_locator.filters import clamp_unit, ema_smooth, median_rssi, round_half_up
from ble_fingerprint_locator.models import PositionEstimate


class TestMedianRssi:
    """Test suite for median_rssi()."""

    def test_odd_count_takes_middle(self):
        assert median_rssi([-60, -65, -70]) == -65

    def test_even_count_averages_middles(self):
        assert median_rssi([-60, -70]) == -65

    def test_even_count_rounds_half_up(self):
        # (-65 + -66) / 2 = -65.5 -> -65
        assert median_rssi([-65, -66]) == -65
        # middles -62, -61 -> -61.5 -> -61
        assert median_rssi([-60, -61, -62, -63]) == -61

    def test_order_independent(self):
        assert median_rssi([-70, -60, -65]) == median_rssi([-65, -70, -60])

    def test_empty_is_none(self):
        assert median_rssi([]) is None

    def test_single_value(self):
        assert median_rssi([-80]) == -80


class TestRoundHalfUp:
    def test_positive_and_negative_halves(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(-2.5) == -2
        assert round_half_up(-2.6) == -3


class TestSmoothing:
    def test_no_previous_returns_raw(self):
        assert ema_smooth(None, 0.7, 0.2, 0.35) == (0.7, 0.2)

    def test_smoothing_moves_towards_raw(self):
        prev = PositionEstimate(x=0.0, y=0.0, confidence=1.0)
        x, y = ema_smooth(prev, 1.0, 1.0, 0.35)
        assert x == pytest.approx(0.35)
        assert y == pytest.approx(0.35)

    def test_clamp_unit(self):
        assert clamp_unit(-0.2) == 0.0
        assert clamp_unit(1.7) == 1.0
        assert clamp_unit(0.4) == 0.4
