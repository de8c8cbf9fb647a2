from datetime import date, timedelta

import pytest

from signal_engine.schemas import RawScore
from signal_engine.services.smart_score import band_multiplier, calculate_smart_score

D0 = date(2026, 10, 16)


def _day(i: int) -> date:
    return D0 - timedelta(days=i)


def _scores(*pairs) -> list[RawScore]:
    return [RawScore(day=_day(i), raw_value=raw, max_value=mx) for i, (raw, mx) in enumerate(pairs)]


def test_empty_input_scores_zero():
    result = calculate_smart_score([], 30)
    assert result.smart_score == 0
    assert result.top_band_days == []


def test_single_perfect_day_is_halved():
    result = calculate_smart_score(_scores((10, 10)), 30)
    assert result.smart_score == 50
    assert result.top_band_days == [_day(0)]


@pytest.mark.parametrize("count, expected", [(1, 50), (2, 70), (3, 85), (4, 85), (5, 100), (6, 100), (9, 100)])
def test_band_size_multiplier_table(count, expected):
    result = calculate_smart_score(_scores(*[(100, 100)] * count), 30)
    assert result.smart_score == expected
    assert len(result.top_band_days) == min(count, 5)


@pytest.mark.parametrize("count, multiplier", [(0, 0.5), (1, 0.5), (2, 0.7), (3, 0.85), (4, 0.85), (5, 1.0), (7, 1.0)])
def test_band_multiplier(count, multiplier):
    assert band_multiplier(count) == multiplier


def test_band_keeps_top_five_by_normalized_value_stably():
    scores = _scores((90, 100), (100, 100), (90, 100), (90, 100), (90, 100), (90, 100))
    result = calculate_smart_score(scores, 30)
    assert result.top_band_days == [_day(1), _day(0), _day(2), _day(3), _day(4)]
    assert result.smart_score == 92


def test_first_max_wins_on_ties():
    # both normalize to 0.5; the first entry's threshold (5 - 3 = 2) keeps the second one too
    scores = _scores((5, 10), (50, 100))
    result = calculate_smart_score(scores, 30)
    assert result.top_band_days == [_day(0), _day(1)]
    assert result.smart_score == 35


def test_days_below_threshold_are_excluded():
    scores = _scores((80, 100), (40, 100))
    result = calculate_smart_score(scores, 30)
    assert result.top_band_days == [_day(0)]
    assert result.smart_score == 40


def test_threshold_never_drops_below_zero():
    scores = _scores((1, 10), (0, 10))
    result = calculate_smart_score(scores, 30)
    assert result.top_band_days == [_day(0), _day(1)]


def test_half_rounds_up():
    # 0.25 * 100 * 0.5 == 12.5
    assert calculate_smart_score(_scores((25, 100)), 30).smart_score == 13


def test_mixed_max_values_are_normalized():
    scores = _scores((8, 10), (60, 100))
    result = calculate_smart_score(scores, 30)
    # threshold 8 - 3 = 5 keeps both; mean 0.7, two days
    assert result.top_band_days == [_day(0), _day(1)]
    assert result.smart_score == 49


def test_is_deterministic():
    scores = _scores((33, 100), (71, 100), (12, 50), (64, 80))
    assert calculate_smart_score(scores, 30) == calculate_smart_score(scores, 30)
