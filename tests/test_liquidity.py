"""Tests for liquidity grab detection (batch and streaming)."""

import numpy as np
import pytest

from levelhunter.config import DetectorConfig
from levelhunter.core.liquidity import (
    LiquidityGrabStream,
    ReversalConfirmationTracker,
    calculate_volume_spike,
    confirm_reversal,
    detect_liquidity_grabs,
    has_recent_liquidity_grab,
)
from levelhunter.core.models import EnhancedLevel, LevelType, LiquidityGrab
from levelhunter.errors import InsufficientDataError, InvalidInputError

from factories import BASE_TS, DAY, grab_candles, make_candle, series_of

SUPPORT_95 = EnhancedLevel(
    price=95.0, level_type=LevelType.SUPPORT, touches=3, last_touch=BASE_TS, strength_score=0.6
)


class TestVolumeSpike:
    """Tests for volume spike measurement."""

    def test_spike_against_prior_mean(self):
        """Test spike against the mean of prior candles."""
        volume = np.array([1000.0] * 10 + [2500.0])
        assert calculate_volume_spike(volume, 10) == pytest.approx(2.5)

    def test_uses_at_most_ten_prior(self):
        """Test that only the last ten prior candles count."""
        volume = np.array([9000.0] + [1000.0] * 10 + [3000.0])
        assert calculate_volume_spike(volume, 11) == pytest.approx(3.0)

    def test_first_candle(self):
        """Test that the first candle has no spike."""
        assert calculate_volume_spike(np.array([1000.0]), 0) == 0.0

    def test_zero_prior_volume(self):
        """Test that zero prior volume gives no spike."""
        assert calculate_volume_spike(np.array([0.0, 0.0, 500.0]), 2) == 0.0


class TestConfirmReversal:
    """Tests for the reversal confirmation window."""

    def test_confirmed(self):
        """Test a reversal held for the full window."""
        close = np.array([95.3, 96.0, 96.5, 96.2, 96.8, 97.0])
        assert confirm_reversal(close, 0, 95.0, LevelType.SUPPORT, 5) is True

    def test_rejected(self):
        """Test a reversal broken inside the window."""
        close = np.array([95.3, 96.0, 94.8, 96.2, 96.8, 97.0])
        assert confirm_reversal(close, 0, 95.0, LevelType.SUPPORT, 5) is False

    def test_undecided_past_end(self):
        """Test that a window running past the data is undecided."""
        close = np.array([95.3, 96.0, 96.5])
        assert confirm_reversal(close, 0, 95.0, LevelType.SUPPORT, 5) is None

    def test_rejection_decided_before_end(self):
        """Test that an unsafe close decides before the window completes."""
        close = np.array([95.3, 94.0])
        assert confirm_reversal(close, 0, 95.0, LevelType.SUPPORT, 5) is False

    def test_resistance_safe_side_is_below(self):
        """Test that resistance reversals hold below the level."""
        close = np.array([104.5, 104.0, 103.0])
        assert confirm_reversal(close, 0, 105.0, LevelType.RESISTANCE, 2) is True


class TestBatchDetection:
    """Tests for detect_liquidity_grabs."""

    def test_support_grab(self):
        """Test a confirmed support sweep on 2x volume."""
        grabs = detect_liquidity_grabs(grab_candles(), [SUPPORT_95])

        assert len(grabs) == 1
        grab = grabs[0]
        assert grab.grab_type == LevelType.SUPPORT
        assert grab.price == 95.0
        assert grab.index == 20
        assert grab.timestamp == BASE_TS + 20 * DAY
        assert grab.volume_spike == pytest.approx(2.0)
        assert grab.strength == pytest.approx(1.0)
        assert grab.reversal_confirmed is True
        assert grab.volume_confirmed is True

    def test_failed_reversal(self):
        """Test a sweep followed by closes under support."""
        grabs = detect_liquidity_grabs(grab_candles(follow_close=94.8), [SUPPORT_95])

        assert len(grabs) == 1
        assert grabs[0].reversal_confirmed is False

    def test_pending_near_end(self):
        """Test that a sweep near the end stays undecided."""
        grabs = detect_liquidity_grabs(grab_candles(n=23), [SUPPORT_95])

        assert len(grabs) == 1
        assert grabs[0].reversal_confirmed is None

    def test_volume_threshold(self):
        """Test that volume_confirmed follows liquidity_grab_threshold."""
        config = DetectorConfig(liquidity_grab_threshold=2.5)

        grabs = detect_liquidity_grabs(grab_candles(), [SUPPORT_95], config)

        assert grabs[0].volume_confirmed is False

    def test_resistance_grab(self):
        """Test a confirmed resistance sweep."""
        candles = [make_candle(i, 103.8, 104.2, 103.0, 103.4) for i in range(15)]
        candles.append(make_candle(15, 104.0, 105.8, 103.9, 104.5, 3000.0))
        candles += [make_candle(16 + i, 104.0, 104.3, 103.5, 103.8) for i in range(5)]
        resistance = EnhancedLevel(
            price=105.0, level_type=LevelType.RESISTANCE, touches=2, last_touch=BASE_TS, strength_score=0.2
        )

        grabs = detect_liquidity_grabs(candles, [resistance])

        assert len(grabs) == 1
        assert grabs[0].grab_type == LevelType.RESISTANCE
        assert grabs[0].volume_spike == pytest.approx(3.0)
        assert grabs[0].strength == pytest.approx(0.6)
        assert grabs[0].reversal_confirmed is True

    def test_sorted_by_strength(self):
        """Test that grabs come back strongest first."""
        weak = EnhancedLevel(
            price=95.0, level_type=LevelType.SUPPORT, touches=3, last_touch=BASE_TS, strength_score=0.1
        )
        strong = EnhancedLevel(
            price=95.1, level_type=LevelType.SUPPORT, touches=3, last_touch=BASE_TS, strength_score=0.45
        )

        grabs = detect_liquidity_grabs(grab_candles(), [weak, strong])

        assert [g.price for g in grabs] == [95.1, 95.0]
        assert grabs[0].strength >= grabs[1].strength

    def test_no_levels(self):
        """Test that no levels give no grabs."""
        assert detect_liquidity_grabs(grab_candles(), []) == []

    def test_insufficient_candles(self):
        """Test that one candle is not enough."""
        with pytest.raises(InsufficientDataError):
            detect_liquidity_grabs(grab_candles(n=1, grab_at=5), [SUPPORT_95])

    def test_invalid_candles(self):
        """Test that invalid candles raise."""
        candles = grab_candles()
        candles[3] = make_candle(3, 96.2, 97.0, 95.8, 96.6, -1.0)

        with pytest.raises(InvalidInputError):
            detect_liquidity_grabs(candles, [SUPPORT_95])

    def test_recent_grab_flag(self):
        """Test the recent-grab flag and its window."""
        series = series_of(grab_candles())
        config = DetectorConfig()

        assert has_recent_liquidity_grab(series, 95.0, LevelType.SUPPORT, config) is True
        assert has_recent_liquidity_grab(series, 95.0, LevelType.SUPPORT, config, window=5) is False
        assert has_recent_liquidity_grab(series, 90.0, LevelType.SUPPORT, config) is False


class TestReversalConfirmationTracker:
    """Tests for the pending-confirmation state machine."""

    def _grab(self):
        return LiquidityGrab(
            timestamp=BASE_TS, price=95.0, grab_type=LevelType.SUPPORT,
            strength=0.8, reversal_confirmed=None, volume_spike=2.0,
        )

    def test_confirms_after_horizon(self):
        """Test confirmation after the horizon of safe closes."""
        tracker = ReversalConfirmationTracker(horizon=3)
        tracker.register(self._grab())

        assert tracker.update(make_candle(1, 96.0, 96.5, 95.5, 96.2)) == []
        assert tracker.update(make_candle(2, 96.0, 96.5, 95.5, 96.2)) == []
        resolved = tracker.update(make_candle(3, 96.0, 96.5, 95.5, 96.2))

        assert len(resolved) == 1
        assert resolved[0].reversal_confirmed is True
        assert len(tracker) == 0

    def test_rejects_on_unsafe_close(self):
        """Test rejection on the first unsafe close."""
        tracker = ReversalConfirmationTracker(horizon=3)
        tracker.register(self._grab())

        resolved = tracker.update(make_candle(1, 95.5, 95.6, 94.5, 94.8))

        assert len(resolved) == 1
        assert resolved[0].reversal_confirmed is False
        assert tracker.pending == []

    def test_ignores_candle_of_the_grab(self):
        """Test that the grab's own candle is not counted."""
        tracker = ReversalConfirmationTracker(horizon=1)
        tracker.register(self._grab())

        assert tracker.update(make_candle(0, 95.5, 95.6, 94.5, 94.8)) == []
        assert len(tracker) == 1

    def test_duplicate_registration(self):
        """Test that a grab is tracked only once."""
        tracker = ReversalConfirmationTracker(horizon=3)

        assert tracker.register(self._grab()) is True
        assert tracker.register(self._grab()) is False
        assert len(tracker) == 1

    def test_invalid_horizon(self):
        """Test that the horizon must be positive."""
        with pytest.raises(InvalidInputError):
            ReversalConfirmationTracker(horizon=0)


class TestLiquidityGrabStream:
    """Tests for incremental detection."""

    def test_detects_then_confirms(self):
        """Test that a stream detects a grab and later confirms it."""
        stream = LiquidityGrabStream([SUPPORT_95])
        detected = []
        resolved_at = {}

        for i, candle in enumerate(grab_candles()):
            update = stream.on_candle(candle)
            detected.extend(update.detected)
            for grab in update.resolved:
                resolved_at[i] = grab

        assert len(detected) == 1
        assert detected[0].reversal_confirmed is None
        assert detected[0].volume_spike == pytest.approx(2.0)
        assert detected[0].index == 20

        assert list(resolved_at) == [25]
        assert resolved_at[25].reversal_confirmed is True
        assert stream.pending == []

    def test_matches_batch_result(self):
        """Test that streaming and batch agree on the outcome."""
        candles = grab_candles(follow_close=94.8)
        stream = LiquidityGrabStream([SUPPORT_95])
        resolved = []

        for candle in candles:
            resolved.extend(stream.on_candle(candle).resolved)

        batch = detect_liquidity_grabs(candles, [SUPPORT_95])

        assert len(resolved) == 1
        assert resolved[0].reversal_confirmed == batch[0].reversal_confirmed
        assert resolved[0].timestamp == batch[0].timestamp

    def test_pending_until_horizon(self):
        """Test that a grab stays pending until the horizon passes."""
        stream = LiquidityGrabStream([SUPPORT_95])

        for candle in grab_candles(n=23):
            stream.on_candle(candle)

        assert len(stream.pending) == 1

    def test_out_of_order_candle(self):
        """Test that an older candle is rejected."""
        stream = LiquidityGrabStream([SUPPORT_95])
        stream.on_candle(make_candle(5, 96.2, 97.0, 95.8, 96.6))

        with pytest.raises(InvalidInputError):
            stream.on_candle(make_candle(4, 96.2, 97.0, 95.8, 96.6))

    def test_invalid_candle(self):
        """Test that an invalid candle is rejected."""
        stream = LiquidityGrabStream([SUPPORT_95])

        with pytest.raises(InvalidInputError):
            stream.on_candle(make_candle(0, 96.2, 97.0, 95.8, float("nan")))

    def test_update_levels(self):
        """Test that swapped-in levels apply to later candles."""
        stream = LiquidityGrabStream([])
        candles = grab_candles()
        detected = []

        for i, candle in enumerate(candles):
            if i == 10:
                stream.update_levels([SUPPORT_95])
            detected.extend(stream.on_candle(candle).detected)

        assert len(detected) == 1
