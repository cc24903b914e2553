import pytest

from config import DAY_MS
from time_window import is_within, normalize_time_window, positive_modulo


HOUR = 3_600_000


class TestPositiveModulo:
    def test_negative_value_wraps_into_range(self):
        assert positive_modulo(-1, 10) == 9

    def test_positive_value(self):
        assert positive_modulo(25, 10) == 5

    def test_zero_modulus_returns_value(self):
        assert positive_modulo(42, 0) == 42

    def test_result_never_equals_modulus(self):
        result = positive_modulo(-1e-20, DAY_MS)
        assert 0 <= result < DAY_MS


class TestNormalizeTimeWindow:
    def test_same_day_window_uses_one_day_cycle(self):
        window = normalize_time_window(DAY_MS * 3 + HOUR, 0, 2 * HOUR)
        assert window.cycle == DAY_MS
        assert window.time_ms == HOUR
        assert (window.start_ms, window.end_ms) == (0, 2 * HOUR)

    def test_window_crossing_midnight_is_unwrapped(self):
        window = normalize_time_window(0, 23 * HOUR, 1 * HOUR)
        assert window.start_ms == 23 * HOUR
        assert window.end_ms == 25 * HOUR
        assert window.cycle == 2 * DAY_MS

    def test_time_is_always_inside_cycle(self):
        for timestamp in (-5, -DAY_MS * 7 - 1, 0, DAY_MS * 2 + 17, 10**13 + 3):
            window = normalize_time_window(timestamp, 23 * HOUR, 1 * HOUR)
            assert 0 <= window.time_ms < window.cycle

    def test_negative_timestamp(self):
        window = normalize_time_window(-5, 0, HOUR)
        assert window.time_ms == DAY_MS - 5


class TestIsWithin:
    def test_endpoints_are_inclusive(self):
        assert is_within(HOUR, HOUR, 2 * HOUR)
        assert is_within(2 * HOUR, HOUR, 2 * HOUR)
        assert not is_within(2 * HOUR + 1, HOUR, 2 * HOUR)

    @pytest.mark.parametrize("k", [-3, -1, 1, 2, 50])
    def test_periodic_over_cycle(self, k):
        start, end = 23 * HOUR, 1 * HOUR
        cycle = normalize_time_window(0, start, end).cycle
        for t in (22 * HOUR, 23 * HOUR + 30 * 60_000, 24 * HOUR + 10, 2 * HOUR):
            assert is_within(t, start, end) == is_within(t + k * cycle, start, end)

    def test_overnight_window_matches_on_first_night(self):
        assert is_within(23 * HOUR + 30 * 60_000, 23 * HOUR, 1 * HOUR)
        assert is_within(DAY_MS + 30 * 60_000, 23 * HOUR, 1 * HOUR)

    def test_overnight_window_repeats_every_cycle_not_every_day(self):
        # 2日周期のため、翌日の同じ時刻は窓の外になる
        assert not is_within(DAY_MS + 23 * HOUR + 30 * 60_000, 23 * HOUR, 1 * HOUR)
