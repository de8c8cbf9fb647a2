"""
Deterministic smart-score aggregation.

Turns a window of per-day raw scores into one bounded score (0-100):
the days within 30% of the best normalized day form the top band (at most 5),
their mean normalized value is scaled by a band-size multiplier.

No I/O and no clock: identical inputs always give identical outputs.
"""
from __future__ import annotations

import math
from collections.abc import Sequence

from signal_engine.schemas import RawScore, SmartScoreOutput

TOP_BAND_TOLERANCE = 0.3
TOP_BAND_MAX_DAYS = 5


def band_multiplier(count: int) -> float:
    if count >= 5:
        return 1.0
    if count in (3, 4):
        return 0.85
    if count == 2:
        return 0.7
    return 0.5


def calculate_smart_score(raw_scores: Sequence[RawScore], lookback_days: int | None = None) -> SmartScoreOutput:
    """Aggregate raw scores into a smart score.

    `lookback_days` is accepted for call-site parity; callers pass an already
    windowed list.
    """
    if not raw_scores:
        return SmartScoreOutput(smart_score=0, top_band_days=[])

    normalized = [score.raw_value / score.max_value for score in raw_scores]

    # first max wins on ties
    top_index = 0
    for i, value in enumerate(normalized):
        if value > normalized[top_index]:
            top_index = i
    top_entry = raw_scores[top_index]
    top_threshold = max(0.0, top_entry.raw_value - top_entry.max_value * TOP_BAND_TOLERANCE)

    band = [i for i, score in enumerate(raw_scores) if score.raw_value >= top_threshold]
    if len(band) > TOP_BAND_MAX_DAYS:
        # sorted() is stable, so ties keep input order
        band = sorted(band, key=lambda i: normalized[i], reverse=True)[:TOP_BAND_MAX_DAYS]

    if not band:
        return SmartScoreOutput(smart_score=0, top_band_days=[])

    average = sum(normalized[i] for i in band) / len(band)
    smart_score = _round_half_up(average * 100 * band_multiplier(len(band)))
    return SmartScoreOutput(smart_score=smart_score, top_band_days=[raw_scores[i].day for i in band])


def _round_half_up(value: float) -> int:
    # .5 rounds towards +inf, not to even
    return math.floor(value + 0.5)
