"""Tests for strength scoring."""

import pytest

from levelhunter.config import DetectorConfig
from levelhunter.core.models import Level, LevelType
from levelhunter.core.strength import (
    calculate_strength_score,
    level_age_days,
    price_action_factor,
    resolve_reference_time,
    reversal_potential,
    score_level,
    time_factor,
    touch_factor,
    volume_factor,
)

from factories import BASE_TS, DAY, make_candle, series_of


class TestFactors:
    """Tests for the individual strength factors."""

    @pytest.mark.parametrize("age_days, expected", [
        (0.5, 0.3),
        (1.0, 0.3),
        (4.0, 0.65),
        (7.0, 1.0),
        (10.0, 1.0),
        (14.0, 1.0),
        (22.0, 0.55),
        (30.0, 0.1),
        (45.0, 0.1),
    ])
    def test_time_factor_curve(self, age_days, expected):
        """Test the piecewise time factor."""
        assert time_factor(age_days) == pytest.approx(expected)

    def test_level_age(self):
        """Test level age in days."""
        assert level_age_days(BASE_TS, BASE_TS + 3 * DAY) == pytest.approx(3.0)

    def test_touch_factor(self):
        """Test touch factor capping and volatility damping."""
        assert touch_factor(5, 0.0) == 1.0
        assert touch_factor(2, 0.0) == pytest.approx(0.4)
        assert touch_factor(2, 2.5) == pytest.approx(0.2)
        assert touch_factor(0, 0.0) == 0.0

    def test_volume_factor_share(self):
        """Test volume factor as the touching candles' share of volume."""
        series = series_of([
            make_candle(0, 100.5, 101.5, 100.0, 101.0, 1000.0),
            make_candle(1, 110.5, 111.5, 110.0, 111.0, 3000.0),
        ])
        level = Level(price=100.0, level_type=LevelType.SUPPORT, touches=1, last_touch=BASE_TS)

        assert volume_factor(series, level, 0.5) == pytest.approx(0.25)

    def test_volume_factor_zero_volume(self):
        """Test volume factor on a zero-volume window."""
        series = series_of([make_candle(i, 100.5, 101.5, 100.0, 101.0, 0.0) for i in range(3)])
        level = Level(price=100.0, level_type=LevelType.SUPPORT, touches=3, last_touch=BASE_TS)

        assert volume_factor(series, level, 0.5) == 0.0

    def test_price_action_long_lower_wick(self):
        """Test a long lower wick at support."""
        # body 0.5, lower wick 1.0 -> capped at 1
        series = series_of([make_candle(0, 101.0, 101.6, 100.0, 101.5)])
        level = Level(price=100.0, level_type=LevelType.SUPPORT, touches=1, last_touch=BASE_TS)

        assert price_action_factor(series, level, 0.5) == 1.0

    def test_price_action_partial_upper_wick(self):
        """Test a partial upper wick at resistance."""
        # body 2.0, upper wick 0.5 -> 0.25
        series = series_of([make_candle(0, 100.0, 102.5, 99.5, 102.0)])
        level = Level(price=102.5, level_type=LevelType.RESISTANCE, touches=1, last_touch=BASE_TS)

        assert price_action_factor(series, level, 0.5) == pytest.approx(0.25)

    def test_price_action_zero_body(self):
        """Test zero-body candles with and without a wick."""
        with_wick = series_of([make_candle(0, 101.0, 101.0, 100.0, 101.0)])
        without_wick = series_of([make_candle(0, 100.0, 101.0, 100.0, 100.0)])
        level = Level(price=100.0, level_type=LevelType.SUPPORT, touches=1, last_touch=BASE_TS)

        assert price_action_factor(with_wick, level, 0.5) == 1.0
        assert price_action_factor(without_wick, level, 0.5) == 0.0

    def test_price_action_without_touches(self):
        """Test that no touching candles give zero price action."""
        series = series_of([make_candle(0, 110.5, 111.5, 110.0, 111.0)])
        level = Level(price=100.0, level_type=LevelType.SUPPORT, touches=0, last_touch=BASE_TS)

        assert price_action_factor(series, level, 0.5) == 0.0


class TestStrengthScore:
    """Tests for the weighted strength score."""

    def _series(self):
        candles = []
        for i in range(10):
            if i in (2, 5):
                candles.append(make_candle(i, 97.0, 98.8, 95.0, 98.5, 2000.0))
            else:
                candles.append(make_candle(i, 100.0, 101.0, 99.0, 100.5, 1000.0))
        return series_of(candles)

    def test_weighted_sum(self):
        """Test the weighted sum of factors."""
        series = self._series()
        level = Level(price=95.0, level_type=LevelType.SUPPORT, touches=5, last_touch=int(series.timestamps[5]))

        breakdown = calculate_strength_score(level, series, 0.0, DetectorConfig(), int(series.timestamps[-1]))

        assert breakdown.touches == 1.0
        assert breakdown.volume == pytest.approx(4000.0 / 12000.0)
        assert breakdown.time == pytest.approx(0.3 + 3 / 6 * 0.7)
        assert breakdown.price_action == 1.0
        assert breakdown.rejection == 1.0

        expected = 0.25 * 1.0 + 0.20 * (1 / 3) + 0.15 * 0.65 + 0.20 + 0.20
        assert breakdown.score == pytest.approx(expected)

    def test_score_in_range_with_heavy_weights(self):
        """Test that oversized weights still clip to [0, 1]."""
        from levelhunter.config import StrengthWeights

        series = self._series()
        config = DetectorConfig(strength_weights=StrengthWeights(touches=2.0))
        level = Level(price=95.0, level_type=LevelType.SUPPORT, touches=5, last_touch=int(series.timestamps[5]))

        breakdown = calculate_strength_score(level, series, 0.0, config, int(series.timestamps[-1]))

        assert breakdown.score == 1.0

    def test_score_level_attaches_metrics(self):
        """Test that score_level fills in the derived metrics."""
        series = self._series()
        level = Level(price=95.0, level_type=LevelType.SUPPORT, touches=5, last_touch=int(series.timestamps[5]))

        enhanced = score_level(level, series, 0.0, DetectorConfig(), int(series.timestamps[-1]), liquidity_grab=True)

        assert enhanced.price == 95.0
        assert enhanced.liquidity_grab is True
        assert enhanced.volume_confirmation == pytest.approx(1 / 3)
        assert enhanced.time_strength == pytest.approx(0.65)
        assert enhanced.price_action_strength == 1.0
        assert 0.0 <= enhanced.reversal_potential <= 1.0

    def test_score_level_explicit_volume_confirmation(self):
        """Test that an explicit volume_confirmation is clipped and kept."""
        series = self._series()
        level = Level(price=95.0, level_type=LevelType.SUPPORT, touches=5, last_touch=int(series.timestamps[5]))

        enhanced = score_level(
            level, series, 0.0, DetectorConfig(), int(series.timestamps[-1]), volume_confirmation=1.7
        )

        assert enhanced.volume_confirmation == 1.0


class TestReversalPotential:
    """Tests for the reversal potential metric."""

    def test_price_at_level_moving_toward_it(self):
        """Test high reversal potential near a level price approaches."""
        series = series_of([make_candle(i, 110.0 - i, 111.0 - i, 109.0 - i, 110.0 - i) for i in range(11)])

        assert reversal_potential(series, 100.0) == 1.0

    def test_far_from_level(self):
        """Test low reversal potential far from the level."""
        series = series_of([make_candle(i, 120.0, 121.0, 119.0, 120.0) for i in range(5)])

        assert reversal_potential(series, 100.0) == 0.0


class TestReferenceTime:
    """Tests for the level-age clock."""

    def test_candle_reference(self):
        """Test measuring age from the last candle."""
        series = series_of([make_candle(i, 100.0, 101.0, 99.0, 100.5) for i in range(3)])

        assert resolve_reference_time(series, DetectorConfig()) == BASE_TS + 2 * DAY

    def test_wall_clock_reference(self, monkeypatch):
        """Test measuring age from the current time."""
        import levelhunter.core.strength as strength

        series = series_of([make_candle(i, 100.0, 101.0, 99.0, 100.5) for i in range(3)])
        monkeypatch.setattr(strength.time, "time", lambda: 1_800_000_000.5)

        config = DetectorConfig(time_reference="wall_clock")

        assert resolve_reference_time(series, config) == 1_800_000_000
